# Integration services for POS platforms
from .base import BasePOSProvider
from .errors import (
    POSIntegrationError,
    ConfigurationError,
    ProviderNotRegisteredError,
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    ProviderApiError,
    DecryptionError,
    DuplicateEventError,
)
from .oauth import OAuthStateManager
from .square import SquareIntegration
from .shopify import ShopifyIntegration
from .lightspeed import LightspeedIntegration
from .registry import ProviderRegistry, build_registry
from .types import POSProvider, TransactionStatus, WebhookEventStatus

__all__ = [
    "BasePOSProvider",
    "POSIntegrationError",
    "ConfigurationError",
    "ProviderNotRegisteredError",
    "AuthenticationError",
    "InvalidStateError",
    "NotFoundError",
    "ProviderApiError",
    "DecryptionError",
    "DuplicateEventError",
    "OAuthStateManager",
    "SquareIntegration",
    "ShopifyIntegration",
    "LightspeedIntegration",
    "ProviderRegistry",
    "build_registry",
    "POSProvider",
    "TransactionStatus",
    "WebhookEventStatus",
]
