"""Lifecycle of (store, provider) POS connections"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import safe_commit
from db_models import POSConnection
from services.integrations.errors import NotFoundError
from services.integrations.registry import ProviderRegistry
from services.integrations.types import POSProvider
from services.token_vault import TokenVault

logger = logging.getLogger(__name__)


class ConnectionService:
    """
    Owns POSConnection rows. Tokens are encrypted on the way in and
    decrypted only inside get_access_token.
    """

    def __init__(self, db: Session, registry: ProviderRegistry, vault: TokenVault):
        self.db = db
        self.registry = registry
        self.vault = vault

    def upsert(
        self,
        store_id: int,
        provider: POSProvider,
        access_token: str,
        merchant_id: Optional[str] = None,
        location_id: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
        shop_domain: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> POSConnection:
        """
        Create or update the connection for (store, provider) and mark it active.

        Used for first connection and reconnect alike; the latest call wins.
        """
        provider = POSProvider(provider).value
        connection = self.db.query(POSConnection).filter(
            POSConnection.store_id == store_id,
            POSConnection.provider == provider
        ).first()

        if connection is None:
            connection = POSConnection(store_id=store_id, provider=provider)
            self.db.add(connection)

        connection.merchant_id = merchant_id
        if location_id is not None:
            connection.location_id = location_id
        connection.shop_domain = shop_domain
        connection.access_token_enc = self.vault.encrypt(access_token)
        connection.refresh_token_enc = self.vault.encrypt(refresh_token) if refresh_token else None
        connection.token_expires_at = token_expires_at
        connection.provider_metadata = metadata or {}
        connection.is_active = True

        safe_commit(self.db)
        self.db.refresh(connection)

        logger.info(f"Upserted {provider} connection {connection.id} for store {store_id}")
        return connection

    def get(self, connection_id: int) -> POSConnection:
        connection = self.db.query(POSConnection).filter(POSConnection.id == connection_id).first()
        if not connection:
            raise NotFoundError("Connection not found")
        return connection

    async def get_access_token(self, connection_id: int) -> str:
        """
        Return a usable plaintext access token, refreshing it first when the
        provider says it is close to expiry.
        """
        connection = self.get(connection_id)
        if not connection.access_token_enc:
            raise NotFoundError("Connection has no access token")

        provider = self.registry.get(connection.provider)

        if connection.refresh_token_enc and provider.needs_token_refresh(connection.token_expires_at):
            refresh_token = self.vault.decrypt(connection.refresh_token_enc)
            new_tokens = await provider.refresh_tokens(refresh_token)

            connection.access_token_enc = self.vault.encrypt(new_tokens.access_token)
            if new_tokens.refresh_token:
                connection.refresh_token_enc = self.vault.encrypt(new_tokens.refresh_token)
            connection.token_expires_at = new_tokens.expires_at
            safe_commit(self.db)

            logger.info(f"Refreshed access token for {connection.provider} connection {connection.id}")
            return new_tokens.access_token

        return self.vault.decrypt(connection.access_token_enc)

    def find_by_provider_identifier(
        self,
        provider: POSProvider,
        merchant_id: Optional[str] = None,
        location_id: Optional[str] = None,
        shop_domain: Optional[str] = None
    ) -> Optional[POSConnection]:
        """
        Map vendor-side identifiers from a webhook back to an active connection.

        Tried in order: location, merchant, shop domain. Multi-location
        merchants are disambiguated by location: when the event names a
        location, the merchant and shop fallbacks only consider connections
        that have no location selected yet.
        """
        base = self.db.query(POSConnection).filter(
            POSConnection.provider == POSProvider(provider).value,
            POSConnection.is_active.is_(True)
        )

        if location_id:
            connection = base.filter(
                POSConnection.location_id == location_id
            ).order_by(POSConnection.id).first()
            if connection:
                return connection
            # Connections bound to another location never take this event
            base = base.filter(POSConnection.location_id.is_(None))

        candidates = [
            (POSConnection.merchant_id, merchant_id),
            (POSConnection.shop_domain, shop_domain),
        ]
        for column, value in candidates:
            if not value:
                continue
            connection = base.filter(column == value).order_by(POSConnection.id).first()
            if connection:
                return connection

        return None

    def set_location_id(self, connection_id: int, location_id: str) -> POSConnection:
        connection = self.get(connection_id)
        connection.location_id = location_id
        safe_commit(self.db)
        logger.info(f"Set location {location_id} on connection {connection_id}")
        return connection

    def disconnect(self, store_id: int, provider: POSProvider) -> None:
        """Soft delete; rows stay for historical orders and webhook events"""
        updated = self.db.query(POSConnection).filter(
            POSConnection.store_id == store_id,
            POSConnection.provider == POSProvider(provider).value
        ).update({POSConnection.is_active: False}, synchronize_session="fetch")
        safe_commit(self.db)
        logger.info(f"Disconnected {provider} for store {store_id} ({updated} row(s))")

    def list_for_store(self, store_id: int) -> List[POSConnection]:
        return self.db.query(POSConnection).filter(
            POSConnection.store_id == store_id,
            POSConnection.is_active.is_(True)
        ).all()

    def get_for_store(self, store_id: int, provider: POSProvider) -> Optional[POSConnection]:
        return self.db.query(POSConnection).filter(
            POSConnection.store_id == store_id,
            POSConnection.provider == POSProvider(provider).value
        ).first()
