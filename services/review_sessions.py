"""Order and review session creation for completed POS transactions"""
import logging
from typing import Tuple

from sqlalchemy.orm import Session

from db_models import Order, POSConnection, ReviewSession
from services.integrations.types import NormalizedOrder
from utils.ids import generate_session_id

logger = logging.getLogger(__name__)


class ReviewSessionService:
    def __init__(self, db: Session):
        self.db = db

    def order_exists(self, provider: str, external_order_id: str) -> bool:
        return self.db.query(Order.id).filter(
            Order.provider == provider,
            Order.external_order_id == external_order_id
        ).first() is not None

    def create_order_with_session(
        self,
        connection: POSConnection,
        order: NormalizedOrder
    ) -> Tuple[Order, ReviewSession]:
        """Create the order and a PENDING review session; the caller commits"""
        db_order = Order(
            store_id=connection.store_id,
            pos_connection_id=connection.id,
            provider=connection.provider,
            external_order_id=order.external_order_id,
            total_amount=order.total_amount,
            currency=order.currency,
            line_items=[item.model_dump() for item in order.line_items],
            raw_payload=order.raw_payload,
            ordered_at=order.created_at
        )
        self.db.add(db_order)
        self.db.flush()

        session = ReviewSession(
            public_id=generate_session_id(),
            store_id=connection.store_id,
            order_id=db_order.id,
            status="PENDING"
        )
        self.db.add(session)
        self.db.flush()

        logger.info(
            f"Created order {db_order.id} and review session {session.public_id} "
            f"for store {connection.store_id}"
        )
        return db_order, session
