"""Base class for all POS provider adapters"""
import base64
import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from .errors import ProviderApiError
from .oauth import OAuthStateManager
from .types import (
    MerchantInfo,
    NormalizedOrder,
    NormalizedTransaction,
    OAuthTokens,
    POSProvider,
    WebhookValidationResult,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a provider into naive UTC"""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def signatures_match(provided: Optional[str], expected: str) -> bool:
    """Length check first, then a constant-time comparison"""
    if not provided:
        return False
    provided_bytes = provided.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    if len(provided_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(provided_bytes, expected_bytes)


def hmac_sha256(secret: str, message: bytes, encoding: str = "base64") -> str:
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256)
    if encoding == "hex":
        return digest.hexdigest()
    return base64.b64encode(digest.digest()).decode("ascii")


class BasePOSProvider(ABC):
    """Abstract base class for all POS provider adapters"""

    PROVIDER: POSProvider
    # Providers with permanent tokens set this to False
    TOKENS_EXPIRE: bool = True

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_secret: Optional[str] = None,
        timeout: float = 30.0,
        refresh_window_hours: int = 24,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.refresh_window = timedelta(hours=refresh_window_hours)
        self._transport = transport

    @property
    def name(self) -> str:
        return self.PROVIDER.value

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _make_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict] = None,
        json: Optional[Dict] = None,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        action: str = "request"
    ) -> Dict[str, Any]:
        """
        Make HTTP request to provider API

        Transport failures, timeouts and non-2xx responses all surface as
        ProviderApiError. Never retried here.
        """
        try:
            async with self._client() as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=json,
                    data=data,
                    params=params
                )
        except httpx.TimeoutException:
            logger.error(f"{self.name} {action} timed out after {self.timeout}s")
            raise ProviderApiError(self.name, f"{action} timed out")
        except httpx.HTTPError as e:
            logger.error(f"{self.name} {action} failed: {e.__class__.__name__}")
            raise ProviderApiError(self.name, f"{action} failed")

        if response.status_code >= 400:
            logger.error(f"{self.name} {action} returned HTTP {response.status_code}: {response.text[:500]}")
            raise ProviderApiError(
                self.name,
                self._translate_error(response, action),
                upstream_status=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            raise ProviderApiError(self.name, f"{action} returned a non-JSON body", response.status_code)

    def _translate_error(self, response: httpx.Response, action: str) -> str:
        """Turn an error response into a short message"""
        return f"{action} failed with HTTP {response.status_code}"

    # ============ OAuth ============

    def encode_state(
        self,
        store_public_id: str,
        shop_domain: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        return OAuthStateManager.encode_state(store_public_id, self.PROVIDER, shop_domain, return_url)

    @abstractmethod
    def get_authorization_url(
        self,
        store_public_id: str,
        redirect_uri: str,
        shop: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        """Generate OAuth authorization URL; state embeds the store reference"""
        pass

    @abstractmethod
    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str,
        shop: Optional[str] = None
    ) -> OAuthTokens:
        """One-shot authorization code exchange"""
        pass

    @abstractmethod
    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Refresh an expiring access token"""
        pass

    def needs_token_refresh(self, expires_at: Optional[datetime]) -> bool:
        """Refresh when the token expires within the refresh window"""
        if not self.TOKENS_EXPIRE or expires_at is None:
            return False
        return expires_at - datetime.utcnow() <= self.refresh_window

    # ============ API ============

    @abstractmethod
    async def get_merchant_info(self, access_token: str, shop: Optional[str] = None) -> MerchantInfo:
        pass

    @abstractmethod
    async def get_order(self, access_token: str, order_id: str, shop: Optional[str] = None) -> NormalizedOrder:
        """Fetch one order; amounts converted to integer minor units"""
        pass

    # ============ Webhooks ============

    @abstractmethod
    def validate_webhook(
        self,
        raw_body: bytes,
        headers: Dict[str, str],
        secret: Optional[str]
    ) -> WebhookValidationResult:
        """Verify the signature and parse the payload; headers have lowercase keys"""
        pass

    @abstractmethod
    def parse_transaction(self, payload: Dict[str, Any]) -> Optional[NormalizedTransaction]:
        """Return None for events that are not completed-payment events"""
        pass

    def _parse_body(self, raw_body: bytes) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.error(f"{self.name} webhook body is not valid JSON")
            return None
        if not isinstance(payload, dict):
            logger.error(f"{self.name} webhook body is not a JSON object")
            return None
        return payload

    @classmethod
    def get_required_scopes(cls) -> List[str]:
        """Get required OAuth scopes for this provider"""
        return []
