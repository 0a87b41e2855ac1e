"""
Tests for ConnectionService.

Covers:
- Upsert keyed on (store, provider): one row, latest data wins, tokens encrypted
- Refresh-on-read in get_access_token, including refresh token carry-forward
- Tampered ciphertext surfaces as DecryptionError
- Lookup precedence: location, merchant, shop domain; active only
- Soft disconnect, location selection, listing
"""

from datetime import datetime, timedelta

import pytest

from db_models import POSConnection
from services.integrations.errors import DecryptionError, NotFoundError, ProviderApiError
from services.integrations.types import POSProvider
from tests.conftest import create_store


class TestUpsert:
    def test_second_upsert_updates_the_same_row(self, db_session, connections, store):
        first = connections.upsert(store.id, POSProvider.SQUARE, "token-1", merchant_id="M1", location_id="L1")
        connections.disconnect(store.id, POSProvider.SQUARE)
        second = connections.upsert(store.id, "SQUARE", "token-2", merchant_id="M2")

        rows = db_session.query(POSConnection).filter(POSConnection.store_id == store.id).all()
        assert len(rows) == 1
        assert second.id == first.id
        assert second.merchant_id == "M2"
        assert second.location_id == "L1"
        assert second.is_active is True

    def test_tokens_are_stored_encrypted(self, connections, vault, store):
        connection = connections.upsert(
            store.id, POSProvider.SQUARE, "plain-access", refresh_token="plain-refresh"
        )

        assert "plain-access" not in connection.access_token_enc
        assert vault.decrypt(connection.access_token_enc) == "plain-access"
        assert vault.decrypt(connection.refresh_token_enc) == "plain-refresh"

    def test_one_connection_per_provider(self, db_session, connections, store):
        connections.upsert(store.id, POSProvider.SQUARE, "sq")
        connections.upsert(store.id, POSProvider.LIGHTSPEED, "ls")

        assert db_session.query(POSConnection).count() == 2


class TestGetAccessToken:
    @pytest.mark.asyncio
    async def test_returns_decrypted_token_when_fresh(self, connections, square_connection, fake_api):
        token = await connections.get_access_token(square_connection.id)

        assert token == "sq-access-token"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_refreshes_when_close_to_expiry(self, db_session, connections, vault, store, fake_api):
        connection = connections.upsert(
            store.id,
            POSProvider.SQUARE,
            "old-access",
            refresh_token="old-refresh",
            token_expires_at=datetime.utcnow() + timedelta(hours=3)
        )
        fake_api.add("POST", "/oauth2/token", {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_at": "2030-01-01T00:00:00Z",
        })

        token = await connections.get_access_token(connection.id)

        assert token == "new-access"
        db_session.refresh(connection)
        assert vault.decrypt(connection.access_token_enc) == "new-access"
        assert vault.decrypt(connection.refresh_token_enc) == "new-refresh"
        assert connection.token_expires_at == datetime(2030, 1, 1)

    @pytest.mark.asyncio
    async def test_refresh_token_carried_forward(self, db_session, connections, vault, store, fake_api):
        connection = connections.upsert(
            store.id,
            POSProvider.LIGHTSPEED,
            "old-access",
            refresh_token="keep-me",
            token_expires_at=datetime.utcnow() + timedelta(minutes=10)
        )
        fake_api.add("POST", "/oauth/access_token", {"access_token": "new-access"})

        assert await connections.get_access_token(connection.id) == "new-access"
        db_session.refresh(connection)
        assert vault.decrypt(connection.refresh_token_enc) == "keep-me"

    @pytest.mark.asyncio
    async def test_no_refresh_without_refresh_token(self, connections, store, fake_api):
        connection = connections.upsert(
            store.id,
            POSProvider.SQUARE,
            "access-only",
            token_expires_at=datetime.utcnow() + timedelta(hours=1)
        )

        assert await connections.get_access_token(connection.id) == "access-only"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_shopify_never_refreshes(self, connections, store, fake_api):
        connection = connections.upsert(
            store.id, POSProvider.SHOPIFY, "shpat_123", shop_domain="demo-boutique.myshopify.com"
        )

        assert await connections.get_access_token(connection.id) == "shpat_123"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_failed_refresh_propagates(self, connections, store, fake_api):
        connection = connections.upsert(
            store.id,
            POSProvider.SQUARE,
            "old-access",
            refresh_token="revoked",
            token_expires_at=datetime.utcnow() + timedelta(hours=1)
        )
        fake_api.add("POST", "/oauth2/token", {"errors": [{"code": "INVALID_GRANT"}]}, status_code=400)

        with pytest.raises(ProviderApiError):
            await connections.get_access_token(connection.id)

    @pytest.mark.asyncio
    async def test_tampered_token_raises(self, db_session, connections, square_connection):
        square_connection.access_token_enc = square_connection.access_token_enc[:-4] + "AAAA"
        db_session.commit()

        with pytest.raises(DecryptionError):
            await connections.get_access_token(square_connection.id)

    @pytest.mark.asyncio
    async def test_unknown_connection(self, connections):
        with pytest.raises(NotFoundError):
            await connections.get_access_token(9999)


class TestFindByProviderIdentifier:
    def test_location_takes_precedence(self, db_session, connections, store):
        other_store = create_store(db_session, "Second Store")
        first_location = connections.upsert(store.id, POSProvider.SQUARE, "a", merchant_id="M1", location_id="L1")
        by_location = connections.upsert(other_store.id, POSProvider.SQUARE, "b", merchant_id="M1", location_id="L2")

        found = connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1", location_id="L2")
        assert found.id == by_location.id

        found = connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1", location_id="L1")
        assert found.id == first_location.id

    def test_other_location_of_same_merchant_does_not_match(self, db_session, connections, store):
        connections.upsert(store.id, POSProvider.SQUARE, "a", merchant_id="M1", location_id="L1")

        found = connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1", location_id="L9")
        assert found is None

    def test_merchant_fallback_for_connection_without_location(self, db_session, connections, store):
        other_store = create_store(db_session, "Second Store")
        connections.upsert(store.id, POSProvider.SQUARE, "a", merchant_id="M1", location_id="L1")
        unbound = connections.upsert(other_store.id, POSProvider.SQUARE, "b", merchant_id="M1")
        assert other_store.public_id.startswith("store_")

        found = connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1", location_id="L9")
        assert found.id == unbound.id

        # Without a location on the event, the oldest merchant match wins
        found = connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1")
        assert found.location_id == "L1"

    def test_shop_domain_match(self, connections, store):
        connection = connections.upsert(
            store.id, POSProvider.SHOPIFY, "shpat", merchant_id="9001", shop_domain="demo-boutique.myshopify.com"
        )

        found = connections.find_by_provider_identifier(
            POSProvider.SHOPIFY, shop_domain="demo-boutique.myshopify.com"
        )
        assert found.id == connection.id

    def test_inactive_connections_are_ignored(self, connections, store):
        connections.upsert(store.id, POSProvider.SQUARE, "a", merchant_id="M1", location_id="L1")
        connections.disconnect(store.id, POSProvider.SQUARE)

        assert connections.find_by_provider_identifier(POSProvider.SQUARE, merchant_id="M1", location_id="L1") is None

    def test_provider_must_match(self, connections, store):
        connections.upsert(store.id, POSProvider.SQUARE, "a", merchant_id="M1")

        assert connections.find_by_provider_identifier(POSProvider.LIGHTSPEED, merchant_id="M1") is None

    def test_no_identifiers(self, connections, square_connection):
        assert connections.find_by_provider_identifier(POSProvider.SQUARE) is None


class TestConnectionManagement:
    def test_disconnect_is_soft(self, db_session, connections, store, square_connection):
        connections.disconnect(store.id, POSProvider.SQUARE)

        db_session.refresh(square_connection)
        assert square_connection.is_active is False
        assert connections.list_for_store(store.id) == []
        assert connections.get_for_store(store.id, POSProvider.SQUARE).id == square_connection.id

    def test_set_location_id(self, connections, square_connection):
        updated = connections.set_location_id(square_connection.id, "LOC_NEW")
        assert updated.location_id == "LOC_NEW"

    def test_set_location_on_unknown_connection(self, connections):
        with pytest.raises(NotFoundError):
            connections.set_location_id(9999, "LOC")

    def test_list_for_store(self, connections, store, square_connection):
        connections.upsert(store.id, POSProvider.LIGHTSPEED, "ls")

        providers = sorted(c.provider for c in connections.list_for_store(store.id))
        assert providers == ["LIGHTSPEED", "SQUARE"]
