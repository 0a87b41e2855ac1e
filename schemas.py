# schemas.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# Provider schemas
class ProvidersResponse(BaseModel):
    providers: List[str]


class AuthUrlResponse(BaseModel):
    authorization_url: str


# Connection schemas
class ConnectionResponse(BaseModel):
    """Sanitized connection; token material is never exposed"""
    id: int
    provider: str
    merchant_id: Optional[str] = None
    location_id: Optional[str] = None
    shop_domain: Optional[str] = None
    is_active: bool
    has_access_token: bool
    token_expires_at: Optional[datetime] = None
    provider_metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_connection(cls, connection) -> "ConnectionResponse":
        return cls(
            id=connection.id,
            provider=connection.provider,
            merchant_id=connection.merchant_id,
            location_id=connection.location_id,
            shop_domain=connection.shop_domain,
            is_active=connection.is_active,
            has_access_token=bool(connection.access_token_enc),
            token_expires_at=connection.token_expires_at,
            provider_metadata=connection.provider_metadata,
            created_at=connection.created_at,
            updated_at=connection.updated_at
        )


class ConnectionListResponse(BaseModel):
    connections: List[ConnectionResponse]


class SetLocationRequest(BaseModel):
    location_id: str = Field(..., alias="locationId", min_length=1)

    class Config:
        populate_by_name = True


# OAuth schemas
class CallbackResponse(BaseModel):
    ok: bool = True
    provider: str
    connection_id: int
    business_name: str


# Webhook schemas
class WebhookResponse(BaseModel):
    ok: bool
    eventId: Optional[str] = None
    message: Optional[str] = None
