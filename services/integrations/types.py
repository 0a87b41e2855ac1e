"""Provider-agnostic shapes produced by the POS adapters"""
from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class POSProvider(str, Enum):
    SQUARE = "SQUARE"
    SHOPIFY = "SHOPIFY"
    LIGHTSPEED = "LIGHTSPEED"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class WebhookEventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None  # naive UTC
    additional_data: Dict[str, Any] = Field(default_factory=dict)


class Location(BaseModel):
    id: str
    name: str


class MerchantInfo(BaseModel):
    merchant_id: str
    business_name: str
    locations: List[Location] = Field(default_factory=list)


class OrderLineItem(BaseModel):
    name: str
    quantity: int
    amount: int  # minor units


class NormalizedOrder(BaseModel):
    external_order_id: str
    total_amount: int  # minor units
    currency: str
    line_items: List[OrderLineItem] = Field(default_factory=list)
    created_at: datetime
    raw_payload: Optional[Dict[str, Any]] = None


class NormalizedTransaction(BaseModel):
    external_transaction_id: str
    external_order_id: str
    status: TransactionStatus
    amount: int  # minor units
    currency: str
    location_id: Optional[str] = None
    merchant_id: Optional[str] = None


class WebhookValidationResult(BaseModel):
    is_valid: bool
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    # Shopify identifies the sending shop only through a header
    shop_domain: Optional[str] = None


class OAuthState(BaseModel):
    """Non-secret routing data carried across the OAuth redirect"""
    storePublicId: str
    provider: POSProvider
    timestamp: int  # epoch milliseconds
    shopDomain: Optional[str] = None
    frontendRedirectUrl: Optional[str] = None
