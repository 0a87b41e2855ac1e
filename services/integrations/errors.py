"""Error taxonomy for the POS integration layer"""
from typing import Optional


class POSIntegrationError(Exception):
    """Base class; status_code is what the HTTP boundary responds with"""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(POSIntegrationError):
    """Provider not registered or not configured"""

    status_code = 400


class ProviderNotRegisteredError(ConfigurationError):
    def __init__(self, provider: str, supported: Optional[list] = None):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider
        self.supported = supported or []


class AuthenticationError(POSIntegrationError):
    """Invalid webhook signature"""

    status_code = 401


class InvalidStateError(AuthenticationError):
    """OAuth state could not be decoded, did not match, or expired"""

    status_code = 400


class NotFoundError(POSIntegrationError):
    status_code = 404


class ProviderApiError(POSIntegrationError):
    """An upstream OAuth/API call failed"""

    status_code = 502

    def __init__(self, provider: str, message: str, upstream_status: Optional[int] = None):
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.upstream_status = upstream_status


class DecryptionError(POSIntegrationError):
    """Stored token ciphertext is corrupted or was tampered with"""

    status_code = 500


class DuplicateEventError(POSIntegrationError):
    """Lost the insert race on (provider, event_id); reported as success"""

    status_code = 200

    def __init__(self, provider: str, event_id: str):
        super().__init__(f"Duplicate event {event_id} from {provider}")
        self.provider = provider
        self.event_id = event_id
