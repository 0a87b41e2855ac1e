"""Shopify e-commerce integration"""
import logging
import re
from datetime import datetime
from typing import Dict, List, Any, Optional
from urllib.parse import urlencode

from utils.money import to_minor_units
from .base import BasePOSProvider, hmac_sha256, parse_timestamp, signatures_match
from .errors import ConfigurationError, ProviderApiError
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

SIGNATURE_HEADER = "x-shopify-hmac-sha256"
WEBHOOK_TOPICS = ["orders/paid", "orders/fulfilled"]


def normalize_shop_domain(shop: Optional[str]) -> str:
    """'https://my-store/' -> 'my-store.myshopify.com'"""
    if not shop:
        raise ConfigurationError("Shop domain is required for Shopify")
    domain = re.sub(r"^https?://", "", shop.strip(), flags=re.IGNORECASE).rstrip("/").lower()
    if not domain:
        raise ConfigurationError("Shop domain is required for Shopify")
    if not domain.endswith(".myshopify.com"):
        domain = f"{domain}.myshopify.com"
    return domain


class ShopifyIntegration(BasePOSProvider):
    """
    Shopify integration for paid orders

    OAuth runs against the merchant's own shop domain and yields a permanent
    access token, so there is no refresh flow.
    """

    PROVIDER = POSProvider.SHOPIFY
    TOKENS_EXPIRE = False

    def __init__(self, *args, api_version: str = "2025-01", **kwargs):
        super().__init__(*args, **kwargs)
        self.api_version = api_version

    @classmethod
    def get_required_scopes(cls) -> List[str]:
        return [
            "read_orders",
            "read_products"
        ]

    def _api_url(self, shop_domain: str, path: str) -> str:
        return f"https://{shop_domain}/admin/api/{self.api_version}/{path}"

    def _api_headers(self, access_token: str) -> Dict[str, str]:
        """Get Shopify-specific headers"""
        return {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json"
        }

    def get_authorization_url(
        self,
        store_public_id: str,
        redirect_uri: str,
        shop: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        """Generate Shopify OAuth authorization URL on the shop's own domain"""
        shop_domain = normalize_shop_domain(shop)

        params = {
            "client_id": self.client_id,
            "scope": ",".join(self.get_required_scopes()),
            "redirect_uri": redirect_uri,
            # Shop domain rides in state so the callback can reach the right shop
            "state": self.encode_state(store_public_id, shop_domain=shop_domain, return_url=return_url)
        }
        logger.debug(f"Generated Shopify OAuth URL for store {store_public_id} ({shop_domain})")
        return f"https://{shop_domain}/admin/oauth/authorize?{urlencode(params)}"

    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str,
        shop: Optional[str] = None
    ) -> OAuthTokens:
        """Exchange authorization code for a permanent access token"""
        shop_domain = normalize_shop_domain(shop)

        data = await self._make_request(
            "POST",
            f"https://{shop_domain}/admin/oauth/access_token",
            headers={"Content-Type": "application/json"},
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code
            },
            action="code exchange"
        )
        if not data.get("access_token"):
            raise ProviderApiError(self.name, "Missing access token in OAuth response")

        logger.info(f"Exchanged Shopify OAuth code for tokens ({shop_domain})")
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=None,  # Shopify doesn't use refresh tokens
            expires_at=None,  # Shopify tokens don't expire
            additional_data={
                "scope": data.get("scope") or "",
                "shop_domain": shop_domain
            }
        )

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        raise ConfigurationError("Shopify access tokens are permanent and do not require refresh")

    def needs_token_refresh(self, expires_at: Optional[datetime]) -> bool:
        """Shopify tokens never need refresh"""
        return False

    async def get_merchant_info(self, access_token: str, shop: Optional[str] = None) -> MerchantInfo:
        """Fetch shop info from Shopify"""
        shop_domain = normalize_shop_domain(shop)
        data = await self._make_request(
            "GET",
            self._api_url(shop_domain, "shop.json"),
            headers=self._api_headers(access_token),
            action="shop lookup"
        )
        shop_info = data.get("shop") or {}
        if not shop_info.get("id"):
            raise ProviderApiError(self.name, "Shop not found in response")

        shop_id = str(shop_info["id"])
        logger.info(f"Retrieved Shopify shop {shop_id} ({shop_domain})")
        return MerchantInfo(
            merchant_id=shop_id,
            business_name=shop_info.get("name") or shop_info.get("domain") or "Unknown",
            # The shop itself is the default location for online sales
            locations=[Location(id=shop_id, name=shop_info.get("name") or "Online Store")]
        )

    async def get_order(self, access_token: str, order_id: str, shop: Optional[str] = None) -> NormalizedOrder:
        """Fetch an order; Shopify amounts are decimal strings"""
        shop_domain = normalize_shop_domain(shop)
        data = await self._make_request(
            "GET",
            self._api_url(shop_domain, f"orders/{order_id}.json"),
            headers=self._api_headers(access_token),
            action="order lookup"
        )
        order = data.get("order")
        if not order:
            raise ProviderApiError(self.name, f"Order {order_id} not found")

        line_items = [
            OrderLineItem(
                name=item.get("title") or item.get("name") or "Unknown Item",
                quantity=item.get("quantity") or 1,
                # price is per unit
                amount=to_minor_units(item.get("price")) * (item.get("quantity") or 1)
            )
            for item in order.get("line_items", [])
        ]

        logger.info(f"Retrieved Shopify order {order_id}")
        return NormalizedOrder(
            external_order_id=str(order["id"]),
            total_amount=to_minor_units(order.get("total_price")),
            currency=order.get("currency") or "USD",
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
        """Shopify signs HMAC-SHA256(raw body), base64, in x-shopify-hmac-sha256"""
        signature = headers.get(SIGNATURE_HEADER)

        if not signature or not secret:
            logger.warning("Shopify webhook missing signature or secret")
            return WebhookValidationResult(is_valid=False)

        expected = hmac_sha256(secret, raw_body)
        if not signatures_match(signature, expected):
            logger.warning("Shopify webhook signature validation failed")
            return WebhookValidationResult(is_valid=False)

        payload = self._parse_body(raw_body)
        if payload is None:
            return WebhookValidationResult(is_valid=False)

        topic = headers.get("x-shopify-topic") or "unknown"
        return WebhookValidationResult(
            is_valid=True,
            event_id=self._event_id(payload, headers, topic),
            event_type=topic,
            payload=payload,
            shop_domain=headers.get("x-shopify-shop-domain")
        )

    @staticmethod
    def _event_id(payload: Dict[str, Any], headers: Dict[str, str], topic: str) -> Optional[str]:
        """
        Shopify keeps X-Shopify-Event-Id / X-Shopify-Webhook-Id stable across
        redeliveries. Older deliveries without them fall back to order id + topic.
        """
        header_id = headers.get("x-shopify-event-id") or headers.get("x-shopify-webhook-id")
        if header_id:
            return header_id
        if payload.get("id"):
            return f"{payload['id']}-{topic}"
        return None

    def parse_transaction(self, payload: Dict[str, Any]) -> Optional[NormalizedTransaction]:
        """Only paid orders are actionable"""
        if payload.get("financial_status") != "paid":
            return None

        if not payload.get("id"):
            logger.warning("No order ID in Shopify webhook payload")
            return None

        order_id = str(payload["id"])
        return NormalizedTransaction(
            external_transaction_id=order_id,
            external_order_id=order_id,  # the order is the transaction reference
            status=TransactionStatus.COMPLETED,
            amount=to_minor_units(payload.get("total_price")),
            currency=payload.get("currency") or "USD",
            location_id=str(payload["location_id"]) if payload.get("location_id") else None,
            merchant_id=str(payload["shop_id"]) if payload.get("shop_id") else None
        )

    async def register_webhooks(self, access_token: str, shop: str, webhook_url: str) -> None:
        """
        Subscribe the shop to order webhooks

        Failures are logged, never raised; 422 means the subscription exists.
        """
        shop_domain = normalize_shop_domain(shop)

        for topic in WEBHOOK_TOPICS:
            try:
                await self._make_request(
                    "POST",
                    self._api_url(shop_domain, "webhooks.json"),
                    headers=self._api_headers(access_token),
                    json={"webhook": {"topic": topic, "address": webhook_url, "format": "json"}},
                    action=f"webhook registration ({topic})"
                )
                logger.info(f"Registered Shopify webhook {topic} for {shop_domain}")
            except ProviderApiError as e:
                if e.upstream_status == 422:
                    logger.info(f"Shopify webhook {topic} already exists for {shop_domain}")
                else:
                    logger.warning(f"Failed to register Shopify webhook {topic} for {shop_domain}: {e.message}")
