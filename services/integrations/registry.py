"""Runtime catalog of configured POS providers"""
import logging
from typing import Dict, List, Optional

import httpx

from settings import Settings
from .base import BasePOSProvider
from .errors import ProviderNotRegisteredError
from .lightspeed import LightspeedIntegration
from .shopify import ShopifyIntegration
from .square import SquareIntegration
from .types import POSProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Maps provider identifiers to adapters.

    Built once at startup and passed explicitly to the services that need it;
    never mutated while requests are being served.
    """

    def __init__(self):
        self._providers: Dict[POSProvider, BasePOSProvider] = {}

    def register(self, provider: BasePOSProvider) -> None:
        if provider.PROVIDER in self._providers:
            logger.warning(f"Overwriting existing provider registration: {provider.name}")
        self._providers[provider.PROVIDER] = provider
        logger.info(f"Registered POS provider {provider.name}")

    def get(self, provider: str) -> BasePOSProvider:
        """
        Get a provider adapter

        Raises:
            ProviderNotRegisteredError: unknown or unconfigured provider
        """
        key = self._coerce(provider)
        if key is None or key not in self._providers:
            raise ProviderNotRegisteredError(str(provider), self.list_supported())
        return self._providers[key]

    def is_supported(self, provider: Optional[str]) -> bool:
        key = self._coerce(provider)
        return key is not None and key in self._providers

    def list_supported(self) -> List[str]:
        return [p.value for p in self._providers]

    @staticmethod
    def _coerce(provider: Optional[str]) -> Optional[POSProvider]:
        if isinstance(provider, POSProvider):
            return provider
        if not provider:
            return None
        try:
            return POSProvider(str(provider).upper())
        except ValueError:
            return None


def build_registry(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> ProviderRegistry:
    """Register every provider whose credentials are configured"""
    registry = ProviderRegistry()
    common = {
        "timeout": settings.POS_HTTP_TIMEOUT_SECONDS,
        "refresh_window_hours": settings.TOKEN_REFRESH_WINDOW_HOURS,
        "transport": transport,
    }

    if settings.SQUARE_APP_ID and settings.SQUARE_APP_SECRET and settings.SQUARE_WEBHOOK_SIGNATURE_KEY:
        registry.register(SquareIntegration(
            settings.SQUARE_APP_ID,
            settings.SQUARE_APP_SECRET,
            webhook_secret=settings.SQUARE_WEBHOOK_SIGNATURE_KEY,
            environment=settings.SQUARE_ENVIRONMENT,
            **common
        ))
    else:
        logger.info("Square not configured; skipping registration")

    if settings.SHOPIFY_CLIENT_ID and settings.SHOPIFY_CLIENT_SECRET:
        registry.register(ShopifyIntegration(
            settings.SHOPIFY_CLIENT_ID,
            settings.SHOPIFY_CLIENT_SECRET,
            webhook_secret=settings.SHOPIFY_WEBHOOK_SECRET or settings.SHOPIFY_CLIENT_SECRET,
            api_version=settings.SHOPIFY_API_VERSION,
            **common
        ))
    else:
        logger.info("Shopify not configured; skipping registration")

    if settings.LIGHTSPEED_CLIENT_ID and settings.LIGHTSPEED_CLIENT_SECRET:
        registry.register(LightspeedIntegration(
            settings.LIGHTSPEED_CLIENT_ID,
            settings.LIGHTSPEED_CLIENT_SECRET,
            webhook_secret=settings.LIGHTSPEED_WEBHOOK_SECRET,
            **common
        ))
    else:
        logger.info("Lightspeed not configured; skipping registration")

    return registry
