# dependencies.py - Request-scoped wiring of the POS services
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from services.connection_service import ConnectionService
from services.integrations.registry import ProviderRegistry
from services.oauth_flow import OAuthFlowService
from services.token_vault import TokenVault
from services.webhook_service import WebhookService
from settings import Settings, get_settings


def get_provider_registry(request: Request) -> ProviderRegistry:
    """Registry built once at startup and kept on app.state"""
    return request.app.state.provider_registry


def get_token_vault(request: Request) -> TokenVault:
    return request.app.state.token_vault


def get_connection_service(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    vault: TokenVault = Depends(get_token_vault)
) -> ConnectionService:
    return ConnectionService(db, registry, vault)


def get_webhook_service(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    connections: ConnectionService = Depends(get_connection_service)
) -> WebhookService:
    return WebhookService(db, registry, connections)


def get_oauth_flow(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    connections: ConnectionService = Depends(get_connection_service),
    settings: Settings = Depends(get_settings)
) -> OAuthFlowService:
    return OAuthFlowService(
        db,
        registry,
        connections,
        base_url=settings.APP_BASE_URL,
        state_max_age_seconds=settings.OAUTH_STATE_MAX_AGE_SECONDS
    )
