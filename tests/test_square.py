"""
Tests for the Square adapter.

Covers:
- Webhook signature over notification URL + raw body (base64 HMAC-SHA256)
- Payment status mapping and non-payment events
- OAuth URL, code exchange (default 30 day lifetime), refresh window
- Order normalization and upstream error translation
"""

from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from services.integrations.errors import ProviderApiError
from services.integrations.oauth import OAuthStateManager
from services.integrations.types import POSProvider, TransactionStatus
from tests.conftest import (
    SQUARE_SIGNATURE_KEY,
    sign_square,
    square_order_response,
    square_payment_event,
    to_body,
)

NOTIFICATION_URL = "https://pos.test/api/v1/pos/webhook/SQUARE"


@pytest.fixture
def square(registry):
    return registry.get("SQUARE")


def _headers(body: bytes, url: str = NOTIFICATION_URL, signature: str = None):
    return {
        "x-square-hmacsha256-signature": signature or sign_square(url, body),
        "x-notification-url": url,
    }


# =============================================================================
# Webhook validation
# =============================================================================

class TestSquareWebhookValidation:
    def test_valid_signature(self, square):
        body = to_body(square_payment_event())
        result = square.validate_webhook(body, _headers(body), SQUARE_SIGNATURE_KEY)

        assert result.is_valid
        assert result.event_id == "evt_square_001"
        assert result.event_type == "payment.updated"
        assert result.payload["merchant_id"] == "MERCHANT_001"

    def test_single_bit_change_in_body_fails(self, square):
        body = to_body(square_payment_event())
        headers = _headers(body)
        mutated = bytearray(body)
        mutated[10] ^= 0x01

        assert not square.validate_webhook(bytes(mutated), headers, SQUARE_SIGNATURE_KEY).is_valid

    def test_single_bit_change_in_signature_fails(self, square):
        body = to_body(square_payment_event())
        signature = sign_square(NOTIFICATION_URL, body)
        tampered = chr(ord(signature[0]) ^ 0x01) + signature[1:]

        result = square.validate_webhook(body, _headers(body, signature=tampered), SQUARE_SIGNATURE_KEY)
        assert not result.is_valid

    def test_signature_is_bound_to_notification_url(self, square):
        body = to_body(square_payment_event())
        headers = _headers(body)
        headers["x-notification-url"] = "https://attacker.test/api/v1/pos/webhook/SQUARE"

        assert not square.validate_webhook(body, headers, SQUARE_SIGNATURE_KEY).is_valid

    def test_wrong_key_fails(self, square):
        body = to_body(square_payment_event())
        headers = _headers(body, signature=sign_square(NOTIFICATION_URL, body, key="other-key"))

        assert not square.validate_webhook(body, headers, SQUARE_SIGNATURE_KEY).is_valid

    def test_missing_signature_header_fails(self, square):
        body = to_body(square_payment_event())
        assert not square.validate_webhook(body, {"x-notification-url": NOTIFICATION_URL}, SQUARE_SIGNATURE_KEY).is_valid

    def test_missing_secret_fails(self, square):
        body = to_body(square_payment_event())
        assert not square.validate_webhook(body, _headers(body), None).is_valid

    def test_non_json_body_is_invalid(self, square):
        body = b"not json"
        assert not square.validate_webhook(body, _headers(body), SQUARE_SIGNATURE_KEY).is_valid


# =============================================================================
# Transaction parsing
# =============================================================================

class TestSquareParseTransaction:
    @pytest.mark.parametrize("square_status,expected", [
        ("COMPLETED", TransactionStatus.COMPLETED),
        ("APPROVED", TransactionStatus.COMPLETED),
        ("PENDING", TransactionStatus.PENDING),
        ("CANCELED", TransactionStatus.FAILED),
        ("FAILED", TransactionStatus.FAILED),
        ("SOMETHING_NEW", TransactionStatus.PENDING),
    ])
    def test_status_mapping(self, square, square_status, expected):
        transaction = square.parse_transaction(square_payment_event(status=square_status))
        assert transaction.status == expected

    def test_fields_are_normalized(self, square):
        transaction = square.parse_transaction(square_payment_event())

        assert transaction.external_transaction_id == "PAYMENT_001"
        assert transaction.external_order_id == "ORDER_001"
        assert transaction.amount == 2599
        assert transaction.currency == "USD"
        assert transaction.location_id == "LOC_001"
        assert transaction.merchant_id == "MERCHANT_001"

    @pytest.mark.parametrize("event_type", ["payment.created", "payment.completed"])
    def test_other_payment_event_types(self, square, event_type):
        assert square.parse_transaction(square_payment_event(event_type=event_type)) is not None

    def test_non_payment_event_is_ignored(self, square):
        assert square.parse_transaction(square_payment_event(event_type="refund.created")) is None

    def test_payment_event_without_payment_object(self, square):
        payload = square_payment_event()
        payload["data"]["object"] = {}
        assert square.parse_transaction(payload) is None


# =============================================================================
# OAuth and tokens
# =============================================================================

class TestSquareOAuth:
    def test_authorization_url(self, square):
        url = square.get_authorization_url(
            "store_demo123456",
            "https://pos.test/api/v1/pos/oauth/SQUARE/callback",
            return_url="https://app.test/settings"
        )
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert parsed.netloc == "connect.squareupsandbox.com"
        assert parsed.path == "/oauth2/authorize"
        assert query["client_id"] == ["sq0idp-test-app"]
        assert "PAYMENTS_READ" in query["scope"][0]

        state = OAuthStateManager.decode_state(query["state"][0])
        assert state.storePublicId == "store_demo123456"
        assert state.provider == POSProvider.SQUARE
        assert state.frontendRedirectUrl == "https://app.test/settings"

    @pytest.mark.asyncio
    async def test_exchange_code_defaults_to_thirty_day_lifetime(self, square, fake_api):
        fake_api.add("POST", "/oauth2/token", {
            "access_token": "EAAA-new",
            "refresh_token": "EQAA-refresh",
            "merchant_id": "MERCHANT_001",
        })

        tokens = await square.exchange_code_for_tokens("auth-code", "https://pos.test/cb")

        assert tokens.access_token == "EAAA-new"
        assert tokens.refresh_token == "EQAA-refresh"
        assert tokens.additional_data["merchant_id"] == "MERCHANT_001"
        remaining = tokens.expires_at - datetime.utcnow()
        assert timedelta(days=29) < remaining <= timedelta(days=30)

    @pytest.mark.asyncio
    async def test_exchange_code_uses_reported_expiry(self, square, fake_api):
        fake_api.add("POST", "/oauth2/token", {
            "access_token": "EAAA-new",
            "expires_at": "2026-11-18T12:00:00Z",
        })

        tokens = await square.exchange_code_for_tokens("auth-code", "https://pos.test/cb")
        assert tokens.expires_at == datetime(2026, 11, 18, 12, 0, 0)

    @pytest.mark.asyncio
    async def test_missing_access_token_is_an_api_error(self, square, fake_api):
        fake_api.add("POST", "/oauth2/token", {"refresh_token": "only"})

        with pytest.raises(ProviderApiError):
            await square.exchange_code_for_tokens("auth-code", "https://pos.test/cb")

    def test_needs_refresh_within_window(self, square):
        assert square.needs_token_refresh(datetime.utcnow() + timedelta(hours=2))
        assert square.needs_token_refresh(datetime.utcnow() - timedelta(hours=1))

    def test_no_refresh_outside_window(self, square):
        assert not square.needs_token_refresh(datetime.utcnow() + timedelta(days=10))

    def test_no_refresh_without_expiry(self, square):
        assert not square.needs_token_refresh(None)


# =============================================================================
# API calls
# =============================================================================

class TestSquareApi:
    @pytest.mark.asyncio
    async def test_get_order(self, square, fake_api):
        fake_api.add("GET", "/v2/orders/ORDER_001", square_order_response())

        order = await square.get_order("sq-access-token", "ORDER_001")

        assert order.external_order_id == "ORDER_001"
        assert order.total_amount == 2599
        assert order.currency == "USD"
        assert [(i.name, i.quantity, i.amount) for i in order.line_items] == [
            ("Silk Scarf", 1, 1999),
            ("Gift Wrap", 2, 600),
        ]
        assert order.created_at == datetime(2026, 10, 1, 11, 59, 0)

        request = fake_api.calls("GET", "/v2/orders/ORDER_001")[0]
        assert request.headers["Authorization"] == "Bearer sq-access-token"
        assert request.headers["Square-Version"] == square.API_VERSION

    @pytest.mark.asyncio
    async def test_get_merchant_info(self, square, fake_api):
        fake_api.add("GET", "/v2/merchants/me", {"merchant": {"id": "MERCHANT_001", "business_name": "Demo Boutique"}})
        fake_api.add("GET", "/v2/locations", {"locations": [{"id": "LOC_001", "name": "Main St"}, {"id": "LOC_002"}]})

        info = await square.get_merchant_info("sq-access-token")

        assert info.merchant_id == "MERCHANT_001"
        assert info.business_name == "Demo Boutique"
        assert [(loc.id, loc.name) for loc in info.locations] == [
            ("LOC_001", "Main St"),
            ("LOC_002", "Unnamed Location"),
        ]

    @pytest.mark.asyncio
    async def test_error_response_is_translated(self, square, fake_api):
        fake_api.add("GET", "/v2/orders/ORDER_X", {"errors": [{"code": "UNAUTHORIZED", "detail": "raw"}]}, status_code=401)

        with pytest.raises(ProviderApiError) as exc_info:
            await square.get_order("bad-token", "ORDER_X")

        assert exc_info.value.upstream_status == 401
        assert "UNAUTHORIZED" in exc_info.value.message
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout_is_an_api_error(self, square, fake_api):
        fake_api.add("GET", "/v2/orders/ORDER_SLOW", httpx.ReadTimeout("timed out"))

        with pytest.raises(ProviderApiError) as exc_info:
            await square.get_order("sq-access-token", "ORDER_SLOW")

        assert "timed out" in exc_info.value.message
