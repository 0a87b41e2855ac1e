"""Unified webhook processing for all POS providers"""
import logging
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import safe_commit
from db_models import POSConnection, WebhookEvent
from services.audit import AuditService
from services.connection_service import ConnectionService
from services.integrations.base import BasePOSProvider
from services.integrations.errors import AuthenticationError, DuplicateEventError, POSIntegrationError
from services.integrations.registry import ProviderRegistry
from services.integrations.types import (
    NormalizedTransaction,
    TransactionStatus,
    WebhookEventStatus,
    WebhookValidationResult,
)
from services.review_sessions import ReviewSessionService

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Duplicate event"


class MissingEventIdError(POSIntegrationError):
    """Signature was valid but no event id could be derived"""

    status_code = 400


class WebhookResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    message: Optional[str] = None


class WebhookService:
    """
    Verify, deduplicate and route inbound provider events.

    Each event row goes RECEIVED -> PROCESSED | SKIPPED | FAILED. The row is
    committed before any business side effect, so a redelivery after a crash
    is seen as a duplicate and the stuck row stays visible.
    """

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        connections: ConnectionService,
        sessions: Optional[ReviewSessionService] = None,
        audit: Optional[AuditService] = None
    ):
        self.db = db
        self.registry = registry
        self.connections = connections
        self.sessions = sessions or ReviewSessionService(db)
        self.audit = audit or AuditService(db)

    async def process_webhook(
        self,
        provider_name: str,
        raw_body: bytes,
        headers: Dict[str, str],
        webhook_secret: Optional[str]
    ) -> WebhookResult:
        """
        Raises:
            ProviderNotRegisteredError: unsupported provider
            AuthenticationError: invalid signature (nothing is written)
            MissingEventIdError: no event id (nothing is written)
            Exception: any processing failure, after the event is marked FAILED
        """
        provider = self.registry.get(provider_name)
        provider_key = provider.name

        validation = provider.validate_webhook(raw_body, headers, webhook_secret)
        if not validation.is_valid:
            logger.warning(f"{provider_key} webhook signature validation failed")
            raise AuthenticationError("Invalid signature")

        event_id = validation.event_id
        if not event_id:
            logger.warning(f"{provider_key} webhook missing event ID")
            raise MissingEventIdError("Missing event ID")

        if self._find_event(provider_key, event_id):
            logger.debug(f"Duplicate {provider_key} webhook event {event_id}, skipping")
            return WebhookResult(success=True, event_id=event_id, message=DUPLICATE_MESSAGE)

        try:
            event = self._record_event(provider_key, event_id, validation)
        except DuplicateEventError:
            logger.info(f"Concurrent duplicate {provider_key} webhook event {event_id}")
            return WebhookResult(success=True, event_id=event_id, message=DUPLICATE_MESSAGE)

        try:
            return await self._process_event(provider, event, validation)
        except Exception as e:
            self.db.rollback()
            self._finish(event, WebhookEventStatus.FAILED, str(e) or e.__class__.__name__)
            logger.error(
                f"{provider_key} webhook {event_id} processing failed "
                f"(connection {event.pos_connection_id}): {e}"
            )
            raise

    def _find_event(self, provider_key: str, event_id: str) -> Optional[WebhookEvent]:
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.provider == provider_key,
            WebhookEvent.event_id == event_id
        ).first()

    def _record_event(
        self,
        provider_key: str,
        event_id: str,
        validation: WebhookValidationResult
    ) -> WebhookEvent:
        """Write-ahead insert; losing the unique-key race means duplicate"""
        event = WebhookEvent(
            provider=provider_key,
            event_id=event_id,
            event_type=validation.event_type or "unknown",
            payload=validation.payload,
            status=WebhookEventStatus.RECEIVED.value
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateEventError(provider_key, event_id)
        self.db.refresh(event)
        return event

    async def _process_event(
        self,
        provider: BasePOSProvider,
        event: WebhookEvent,
        validation: WebhookValidationResult
    ) -> WebhookResult:
        event_id = event.event_id

        transaction = provider.parse_transaction(validation.payload or {})
        if transaction is None:
            self._finish(event, WebhookEventStatus.SKIPPED, "Not a transaction event")
            return WebhookResult(success=True, event_id=event_id, message="Not a transaction event")

        if transaction.status != TransactionStatus.COMPLETED:
            self._finish(event, WebhookEventStatus.SKIPPED, f"Transaction status: {transaction.status.value}")
            return WebhookResult(success=True, event_id=event_id, message="Non-completed transaction")

        if not transaction.external_order_id:
            self._finish(event, WebhookEventStatus.SKIPPED, "No order reference")
            return WebhookResult(success=True, event_id=event_id, message="No order reference")

        connection = self.connections.find_by_provider_identifier(
            provider.PROVIDER,
            merchant_id=transaction.merchant_id,
            location_id=transaction.location_id,
            shop_domain=validation.shop_domain
        )
        if connection is None:
            logger.warning(
                f"No {provider.name} connection for location={transaction.location_id} "
                f"merchant={transaction.merchant_id}"
            )
            self._finish(event, WebhookEventStatus.SKIPPED, "No matching connection")
            return WebhookResult(success=True, event_id=event_id, message="No matching connection")

        event.pos_connection_id = connection.id
        safe_commit(self.db)

        created = await self._process_completed_transaction(provider, connection, transaction)

        self._finish(event, WebhookEventStatus.PROCESSED)
        if not created:
            return WebhookResult(success=True, event_id=event_id, message="Order already exists")
        return WebhookResult(success=True, event_id=event_id)

    async def _process_completed_transaction(
        self,
        provider: BasePOSProvider,
        connection: POSConnection,
        transaction: NormalizedTransaction
    ) -> bool:
        """Create order + pending review session; False if the order already exists"""
        if self.sessions.order_exists(provider.name, transaction.external_order_id):
            logger.debug(f"{provider.name} order {transaction.external_order_id} already exists")
            return False

        access_token = await self.connections.get_access_token(connection.id)
        order = await provider.get_order(
            access_token,
            transaction.external_order_id,
            shop=connection.shop_domain
        )

        db_order, session = self.sessions.create_order_with_session(connection, order)
        safe_commit(self.db)

        self.audit.log_event(
            connection.store_id,
            "SESSION_CREATED",
            {"orderId": db_order.id, "provider": provider.name},
            session_id=session.id
        )
        return True

    def _finish(self, event: WebhookEvent, status: WebhookEventStatus, message: Optional[str] = None) -> None:
        event.status = status.value
        event.error_message = message
        if status == WebhookEventStatus.PROCESSED:
            event.processed_at = datetime.utcnow()
        safe_commit(self.db)
