"""Lightspeed POS integration"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
from urllib.parse import urlencode

from utils.money import parse_quantity, to_minor_units
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

# Lightspeed access tokens typically expire in one hour
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

SIGNATURE_HEADERS = ("x-lightspeed-signature", "x-ls-signature")


class LightspeedIntegration(BasePOSProvider):
    """Lightspeed integration for completed sales"""

    PROVIDER = POSProvider.LIGHTSPEED
    AUTH_URL = "https://cloud.lightspeedapp.com/oauth/authorize"
    TOKEN_URL = "https://cloud.lightspeedapp.com/oauth/access_token"
    API_BASE_URL = "https://api.lightspeedapp.com/API/V3"

    @classmethod
    def get_required_scopes(cls) -> List[str]:
        return [
            "employee:orders:read",
            "employee:inventory:read"
        ]

    def _api_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json"
        }

    def get_authorization_url(
        self,
        store_public_id: str,
        redirect_uri: str,
        shop: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        """Generate Lightspeed OAuth authorization URL"""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "scope": " ".join(self.get_required_scopes()),
            "redirect_uri": redirect_uri,
            "state": self.encode_state(store_public_id, return_url=return_url)
        }
        logger.debug(f"Generated Lightspeed OAuth URL for store {store_public_id}")
        return f"{self.AUTH_URL}?{urlencode(params)}"

    def _tokens_from_response(
        self,
        data: Dict[str, Any],
        previous_refresh_token: Optional[str] = None
    ) -> OAuthTokens:
        if not data.get("access_token"):
            raise ProviderApiError(self.name, "Missing access token in OAuth response")

        expires_in = data.get("expires_in")
        try:
            lifetime = timedelta(seconds=int(float(expires_in))) if expires_in else DEFAULT_TOKEN_LIFETIME
        except (TypeError, ValueError, OverflowError):
            raise ProviderApiError(self.name, f"Invalid expires_in in OAuth response: {expires_in!r}")

        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=datetime.utcnow() + lifetime,
            additional_data={"account_id": data.get("account_id")}
        )

    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str,
        shop: Optional[str] = None
    ) -> OAuthTokens:
        """Exchange authorization code for tokens (form-encoded)"""
        data = await self._make_request(
            "POST",
            self.TOKEN_URL,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri
            },
            action="code exchange"
        )
        logger.info("Exchanged Lightspeed OAuth code for tokens")
        return self._tokens_from_response(data)

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Refresh Lightspeed access token, keeping the old refresh token if none is issued"""
        data = await self._make_request(
            "POST",
            self.TOKEN_URL,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token"
            },
            action="token refresh"
        )
        logger.info("Refreshed Lightspeed access token")
        return self._tokens_from_response(data, previous_refresh_token=refresh_token)

    async def get_merchant_info(self, access_token: str, shop: Optional[str] = None) -> MerchantInfo:
        """Fetch the account and its shops (locations)"""
        data = await self._make_request(
            "GET",
            f"{self.API_BASE_URL}/Account.json",
            headers=self._api_headers(access_token),
            action="account lookup"
        )
        account = data.get("Account") or {}
        account_id = account.get("accountID")
        if not account_id:
            raise ProviderApiError(self.name, "Account not found in response")

        # Locations are optional; a failed listing leaves them empty
        locations: List[Location] = []
        try:
            shops_data = await self._make_request(
                "GET",
                f"{self.API_BASE_URL}/Account/{account_id}/Shop.json",
                headers=self._api_headers(access_token),
                action="shop listing"
            )
            shops = shops_data.get("Shop") or []
            if isinstance(shops, dict):
                # Single results come back as an object rather than a list
                shops = [shops]
            locations = [
                Location(id=str(shop["shopID"]), name=shop.get("name") or "Unnamed Location")
                for shop in shops
                if shop.get("shopID")
            ]
        except ProviderApiError as e:
            logger.warning(f"Could not list Lightspeed shops for account {account_id}: {e.message}")

        logger.info(f"Retrieved Lightspeed account {account_id}")
        return MerchantInfo(
            merchant_id=str(account_id),
            business_name=account.get("name") or "Lightspeed Business",
            locations=locations
        )

    async def get_order(self, access_token: str, order_id: str, shop: Optional[str] = None) -> NormalizedOrder:
        """Fetch a Sale; Lightspeed amounts are decimal strings"""
        data = await self._make_request(
            "GET",
            f"{self.API_BASE_URL}/Account/~/Sale/{order_id}.json",
            headers=self._api_headers(access_token),
            params={"load_relations": '["SaleLines"]'},
            action="sale lookup"
        )
        sale = data.get("Sale")
        if not sale:
            raise ProviderApiError(self.name, f"Sale {order_id} not found")

        lines = (sale.get("SaleLines") or {}).get("SaleLine") or []
        if isinstance(lines, dict):
            lines = [lines]

        line_items = [
            OrderLineItem(
                name=line.get("itemDescription") or "Unknown Item",
                quantity=parse_quantity(line.get("unitQuantity")),
                amount=to_minor_units(line.get("calcSubtotal"))
            )
            for line in lines
        ]

        logger.info(f"Retrieved Lightspeed sale {order_id}")
        return NormalizedOrder(
            external_order_id=str(sale["saleID"]),
            total_amount=to_minor_units(sale.get("calcTotal")),
            currency=sale.get("currency") or "USD",
            line_items=line_items,
            created_at=parse_timestamp(sale.get("completeTime") or sale.get("createTime")) or datetime.utcnow(),
            raw_payload=sale
        )

    def validate_webhook(
        self,
        raw_body: bytes,
        headers: Dict[str, str],
        secret: Optional[str]
    ) -> WebhookValidationResult:
        """Lightspeed signs HMAC-SHA256(raw body), hex, in x-lightspeed-signature or x-ls-signature"""
        signature = next((headers[h] for h in SIGNATURE_HEADERS if headers.get(h)), None)

        if not signature or not secret:
            logger.warning("Lightspeed webhook missing signature or secret")
            return WebhookValidationResult(is_valid=False)

        expected = hmac_sha256(secret, raw_body, encoding="hex")
        if not signatures_match(signature, expected):
            logger.warning("Lightspeed webhook signature validation failed")
            return WebhookValidationResult(is_valid=False)

        payload = self._parse_body(raw_body)
        if payload is None:
            return WebhookValidationResult(is_valid=False)

        event_type = payload.get("type") or "sale.completed"
        return WebhookValidationResult(
            is_valid=True,
            event_id=self._event_id(payload, event_type),
            event_type=event_type,
            payload=payload
        )

    @staticmethod
    def _event_id(payload: Dict[str, Any], event_type: str) -> Optional[str]:
        if payload.get("id"):
            return str(payload["id"])
        if payload.get("saleID"):
            return f"sale-{payload['saleID']}-{event_type}"
        return None

    def parse_transaction(self, payload: Dict[str, Any]) -> Optional[NormalizedTransaction]:
        """Only completed sales are actionable"""
        completed = payload.get("completed")
        if isinstance(completed, str):
            # The Retail API serializes booleans as "true"/"false"
            completed = completed.lower() == "true"
        if not completed or not payload.get("saleID"):
            return None

        sale_id = str(payload["saleID"])
        return NormalizedTransaction(
            external_transaction_id=sale_id,
            external_order_id=sale_id,
            status=TransactionStatus.COMPLETED,
            amount=to_minor_units(payload.get("calcTotal")),
            currency=payload.get("currency") or "USD",
            location_id=str(payload["shopID"]) if payload.get("shopID") else None,
            merchant_id=str(payload["accountID"]) if payload.get("accountID") else None
        )
