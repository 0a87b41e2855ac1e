"""Audit event logging; failures here never break the calling flow"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from db_models import AuditEvent

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def log_event(
        self,
        store_id: int,
        event_type: str,
        payload: Dict[str, Any],
        session_id: Optional[int] = None
    ) -> None:
        """
        Record an audit event in its own commit.

        Callers commit their own work first, so a rollback here only
        discards the audit row.
        """
        try:
            self.db.add(AuditEvent(
                store_id=store_id,
                review_session_id=session_id,
                event_type=event_type,
                payload=payload
            ))
            self.db.commit()
            logger.info(f"Audit event {event_type} logged for store {store_id}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to log audit event {event_type} for store {store_id}: {e}")
