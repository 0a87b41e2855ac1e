"""Square POS integration"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
from urllib.parse import urlencode

from utils.money import minor_units, parse_quantity
from .base import BasePOSProvider, hmac_sha256, parse_timestamp, signatures_match
from .errors import ProviderApiError
from .types import (
    Location,
    MerchantInfo,
    NormalizedOrder,
    NormalizedTransaction,
    OAuthTokens,
    OrderLineItem,
    POSProvider,
    TransactionStatus,
    WebhookValidationResult,
)

logger = logging.getLogger(__name__)

# Square access tokens last 30 days
DEFAULT_TOKEN_LIFETIME = timedelta(days=30)

PAYMENT_EVENT_TYPES = {"payment.created", "payment.updated", "payment.completed"}

PAYMENT_STATUS_MAP = {
    "COMPLETED": TransactionStatus.COMPLETED,
    "APPROVED": TransactionStatus.COMPLETED,
    "PENDING": TransactionStatus.PENDING,
    "CANCELED": TransactionStatus.FAILED,
    "FAILED": TransactionStatus.FAILED,
}

SIGNATURE_HEADER = "x-square-hmacsha256-signature"
NOTIFICATION_URL_HEADER = "x-notification-url"


class SquareIntegration(BasePOSProvider):
    """Square POS integration for payments and orders"""

    PROVIDER = POSProvider.SQUARE
    BASE_URL = "https://connect.squareup.com"
    SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
    API_VERSION = "2025-01-23"

    def __init__(self, *args, environment: str = "sandbox", **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment
        self.base_url = self.BASE_URL if environment == "production" else self.SANDBOX_BASE_URL

    @classmethod
    def get_required_scopes(cls) -> List[str]:
        return [
            "MERCHANT_PROFILE_READ",
            "ORDERS_READ",
            "ORDERS_WRITE",
            "PAYMENTS_READ"
        ]

    def _api_headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Square-Version": self.API_VERSION
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _translate_error(self, response, action: str) -> str:
        # Square error bodies: {"errors": [{"code": ..., "detail": ...}]}
        try:
            errors = response.json().get("errors") or []
        except ValueError:
            errors = []
        if errors:
            return f"{action} failed: {errors[0].get('code', 'UNKNOWN')}"
        return super()._translate_error(response, action)

    def get_authorization_url(
        self,
        store_public_id: str,
        redirect_uri: str,
        shop: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        """Generate Square OAuth authorization URL"""
        params = {
            "client_id": self.client_id,
            "scope": " ".join(self.get_required_scopes()),
            "session": "false",
            "state": self.encode_state(store_public_id, return_url=return_url),
            "redirect_uri": redirect_uri
        }
        logger.debug(f"Generated Square OAuth URL for store {store_public_id}")
        return f"{self.base_url}/oauth2/authorize?{urlencode(params)}"

    def _tokens_from_response(self, data: Dict[str, Any], action: str) -> OAuthTokens:
        if not data.get("access_token"):
            raise ProviderApiError(self.name, f"Missing access token in {action} response")

        expires_at = parse_timestamp(data.get("expires_at"))
        if expires_at is None:
            expires_at = datetime.utcnow() + DEFAULT_TOKEN_LIFETIME

        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            additional_data={"merchant_id": data.get("merchant_id")}
        )

    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str,
        shop: Optional[str] = None
    ) -> OAuthTokens:
        """Exchange authorization code for tokens"""
        data = await self._make_request(
            "POST",
            f"{self.base_url}/oauth2/token",
            headers=self._api_headers(),
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri
            },
            action="code exchange"
        )
        tokens = self._tokens_from_response(data, "OAuth")
        logger.info("Exchanged Square OAuth code for tokens")
        return tokens

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Refresh Square access token"""
        data = await self._make_request(
            "POST",
            f"{self.base_url}/oauth2/token",
            headers=self._api_headers(),
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token"
            },
            action="token refresh"
        )
        tokens = self._tokens_from_response(data, "refresh")
        logger.info("Refreshed Square access token")
        return tokens

    async def get_merchant_info(self, access_token: str, shop: Optional[str] = None) -> MerchantInfo:
        """Fetch the merchant profile and its locations"""
        merchant_data = await self._make_request(
            "GET",
            f"{self.base_url}/v2/merchants/me",
            headers=self._api_headers(access_token),
            action="merchant lookup"
        )
        merchant = merchant_data.get("merchant")
        if not merchant or not merchant.get("id"):
            raise ProviderApiError(self.name, "Merchant not found in response")

        locations_data = await self._make_request(
            "GET",
            f"{self.base_url}/v2/locations",
            headers=self._api_headers(access_token),
            action="location lookup"
        )

        logger.info(f"Retrieved Square merchant profile {merchant['id']}")
        return MerchantInfo(
            merchant_id=merchant["id"],
            business_name=merchant.get("business_name") or "Unknown Business",
            locations=[
                Location(id=loc["id"], name=loc.get("name") or "Unnamed Location")
                for loc in locations_data.get("locations", [])
                if loc.get("id")
            ]
        )

    async def get_order(self, access_token: str, order_id: str, shop: Optional[str] = None) -> NormalizedOrder:
        """Fetch an order; Square money amounts are already minor units"""
        data = await self._make_request(
            "GET",
            f"{self.base_url}/v2/orders/{order_id}",
            headers=self._api_headers(access_token),
            action="order lookup"
        )
        order = data.get("order")
        if not order:
            raise ProviderApiError(self.name, f"Order {order_id} not found")

        line_items = [
            OrderLineItem(
                name=item.get("name") or "Unknown Item",
                quantity=parse_quantity(item.get("quantity")),
                amount=minor_units((item.get("total_money") or {}).get("amount"))
            )
            for item in order.get("line_items", [])
        ]
        total_money = order.get("total_money") or {}

        logger.info(f"Retrieved Square order {order_id}")
        return NormalizedOrder(
            external_order_id=order["id"],
            total_amount=minor_units(total_money.get("amount")),
            currency=total_money.get("currency") or "USD",
            line_items=line_items,
            created_at=parse_timestamp(order.get("created_at")) or datetime.utcnow(),
            raw_payload=order
        )

    def validate_webhook(
        self,
        raw_body: bytes,
        headers: Dict[str, str],
        secret: Optional[str]
    ) -> WebhookValidationResult:
        """
        Square signs HMAC-SHA256(notification URL + raw body), base64 encoded,
        in the x-square-hmacsha256-signature header.
        """
        signature = headers.get(SIGNATURE_HEADER)
        notification_url = headers.get(NOTIFICATION_URL_HEADER)

        if not signature or not notification_url or not secret:
            logger.warning("Square webhook missing signature, notification URL or signing key")
            return WebhookValidationResult(is_valid=False)

        expected = hmac_sha256(secret, notification_url.encode("utf-8") + raw_body)
        if not signatures_match(signature, expected):
            logger.warning("Square webhook signature validation failed")
            return WebhookValidationResult(is_valid=False)

        payload = self._parse_body(raw_body)
        if payload is None:
            return WebhookValidationResult(is_valid=False)

        return WebhookValidationResult(
            is_valid=True,
            event_id=payload.get("event_id"),
            event_type=payload.get("type"),
            payload=payload
        )

    def parse_transaction(self, payload: Dict[str, Any]) -> Optional[NormalizedTransaction]:
        """Only payment events carry a transaction"""
        if payload.get("type") not in PAYMENT_EVENT_TYPES:
            return None

        payment = ((payload.get("data") or {}).get("object") or {}).get("payment")
        if not payment:
            logger.warning("No payment object in Square webhook payload")
            return None

        amount_money = payment.get("amount_money") or {}
        return NormalizedTransaction(
            external_transaction_id=payment.get("id") or "",
            external_order_id=payment.get("order_id") or "",
            status=PAYMENT_STATUS_MAP.get(payment.get("status") or "", TransactionStatus.PENDING),
            amount=minor_units(amount_money.get("amount")),
            currency=amount_money.get("currency") or "USD",
            location_id=payment.get("location_id"),
            merchant_id=payload.get("merchant_id") or payment.get("merchant_id")
        )
