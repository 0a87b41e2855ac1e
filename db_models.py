# db_models.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
from utils.ids import generate_store_id


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String, unique=True, nullable=False, index=True, default=generate_store_id)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    pos_connections = relationship("POSConnection", back_populates="store")
    orders = relationship("Order", back_populates="store")
    review_sessions = relationship("ReviewSession", back_populates="store")


class POSConnection(Base):
    """OAuth linkage between one store and one POS provider"""
    __tablename__ = "pos_connections"
    __table_args__ = (
        UniqueConstraint("store_id", "provider", name="uq_pos_connections_store_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    provider = Column(String, nullable=False)  # 'SQUARE', 'SHOPIFY', 'LIGHTSPEED'

    # Provider-specific identifiers
    merchant_id = Column(String, nullable=True, index=True)
    location_id = Column(String, nullable=True, index=True)  # Set after location selection
    shop_domain = Column(String, nullable=True, index=True)  # Shopify store domain

    # OAuth tokens (encrypted, never plaintext)
    access_token_enc = Column(Text, nullable=True)
    refresh_token_enc = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    provider_metadata = Column(JSON, nullable=True)  # business name, available locations
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    store = relationship("Store", back_populates="pos_connections")
    webhook_events = relationship("WebhookEvent", back_populates="pos_connection")
    orders = relationship("Order", back_populates="pos_connection")


class WebhookEvent(Base):
    """One inbound provider notification, written before processing"""
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False)
    event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="RECEIVED", index=True)  # RECEIVED, PROCESSED, SKIPPED, FAILED
    pos_connection_id = Column(Integer, ForeignKey("pos_connections.id"), nullable=True)
    error_message = Column(Text, nullable=True)
    received_at = Column(DateTime, default=func.now())
    processed_at = Column(DateTime, nullable=True)

    pos_connection = relationship("POSConnection", back_populates="webhook_events")


class Order(Base):
    """Orders created from completed POS transactions"""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("provider", "external_order_id", name="uq_orders_provider_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    pos_connection_id = Column(Integer, ForeignKey("pos_connections.id"), nullable=True)
    provider = Column(String, nullable=False)
    external_order_id = Column(String, nullable=False)

    total_amount = Column(Integer, nullable=False)  # minor currency units
    currency = Column(String, nullable=False, default="USD")
    line_items = Column(JSON, nullable=True)
    raw_payload = Column(JSON, nullable=True)
    ordered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    store = relationship("Store", back_populates="orders")
    pos_connection = relationship("POSConnection", back_populates="orders")
    review_session = relationship("ReviewSession", back_populates="order", uselist=False)


class ReviewSession(Base):
    __tablename__ = "review_sessions"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String, unique=True, nullable=False, index=True)  # sess_xxxxxxxxxxxx
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    status = Column(String, nullable=False, default="PENDING")  # PENDING, APPROVED, DECLINED, POSTED_INTENT
    star_rating = Column(Integer, nullable=True)
    generated_review_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    store = relationship("Store", back_populates="review_sessions")
    order = relationship("Order", back_populates="review_session")


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    review_session_id = Column(Integer, ForeignKey("review_sessions.id"), nullable=True)
    event_type = Column(String, nullable=False)  # SESSION_CREATED, ...
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())
