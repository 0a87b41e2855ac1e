# routers/pos.py - Unified POS endpoints (OAuth, webhooks, connections)
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from database import get_db
from dependencies import (
    get_connection_service,
    get_oauth_flow,
    get_provider_registry,
    get_webhook_service,
)
from schemas import (
    AuthUrlResponse,
    CallbackResponse,
    ConnectionListResponse,
    ConnectionResponse,
    ProvidersResponse,
    SetLocationRequest,
    WebhookResponse,
)
from services.connection_service import ConnectionService
from services.integrations.errors import ConfigurationError, NotFoundError, POSIntegrationError
from services.integrations.registry import ProviderRegistry
from services.oauth_flow import OAuthFlowService
from services.stores import get_store_by_public_id
from services.webhook_service import WebhookService
from settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/pos", tags=["POS"])

CALLBACK_FAILED_MESSAGE = "Failed to complete authorization. Please try again."


# ============ Providers ============

@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(registry: ProviderRegistry = Depends(get_provider_registry)):
    """Providers that are configured on this deployment"""
    return ProvidersResponse(providers=registry.list_supported())


# ============ OAuth Flow Endpoints ============

@router.get("/oauth/{provider}/start")
async def oauth_start(
    provider: str,
    storePublicId: str = Query(..., description="Public ID of the store to connect"),
    shop: Optional[str] = Query(None, description="Shopify store domain (required for Shopify)"),
    returnUrl: Optional[str] = Query(None, description="Front-end URL to return to afterwards"),
    flow: OAuthFlowService = Depends(get_oauth_flow)
):
    """
    Step 1: Redirect the merchant to the provider's consent screen
    """
    url = flow.get_authorization_url(provider, storePublicId, shop=shop, return_url=returnUrl)
    return RedirectResponse(url=url)


@router.get("/oauth/{provider}/url", response_model=AuthUrlResponse)
async def oauth_url(
    provider: str,
    storePublicId: str = Query(...),
    shop: Optional[str] = Query(None),
    returnUrl: Optional[str] = Query(None),
    flow: OAuthFlowService = Depends(get_oauth_flow)
):
    """Same as /start, but returns the URL for front-ends that open a popup"""
    url = flow.get_authorization_url(provider, storePublicId, shop=shop, return_url=returnUrl)
    return AuthUrlResponse(authorization_url=url)


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    shop: Optional[str] = Query(None, description="Shopify shop domain"),
    flow: OAuthFlowService = Depends(get_oauth_flow)
):
    """
    Step 2: OAuth callback handler
    Exchanges code for tokens and stores the connection.
    Redirects to the return URL from state when one was given.
    """
    # Handle OAuth errors
    if error:
        message = f"Authorization failed: {error_description or error}"
        logger.warning(f"OAuth error from {provider}: {error}")
        redirect_url = flow.error_redirect_url(state, message)
        if redirect_url:
            return RedirectResponse(url=redirect_url)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    if not code or not state:
        detail = "Authorization code is missing" if not code else "State parameter is missing"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    try:
        result = await flow.handle_callback(provider, code, state, shop=shop)
    except Exception as e:
        logger.error(f"OAuth callback for {provider} failed: {e}")
        redirect_url = flow.error_redirect_url(state, CALLBACK_FAILED_MESSAGE)
        if redirect_url:
            return RedirectResponse(url=redirect_url)
        raise

    if result.redirect_url:
        return RedirectResponse(url=result.redirect_url)

    return CallbackResponse(
        provider=result.provider.value,
        connection_id=result.connection.id,
        business_name=result.merchant_info.business_name
    )


# ============ Webhooks ============

@router.post("/webhook/{provider}", response_model=WebhookResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    registry: ProviderRegistry = Depends(get_provider_registry),
    webhooks: WebhookService = Depends(get_webhook_service)
):
    """
    Inbound provider notifications. Signatures are checked against the raw body.
    """
    adapter = registry.get(provider)
    if not adapter.webhook_secret:
        logger.error(f"No webhook secret configured for {adapter.name}")
        raise ConfigurationError(f"{adapter.name} webhooks are not configured")

    raw_body = await request.body()
    headers = {key.lower(): value for key, value in request.headers.items()}

    # Square signs the full notification URL it was configured with
    notification_url = f"{settings.APP_BASE_URL.rstrip('/')}{request.url.path}"
    if request.url.query:
        notification_url = f"{notification_url}?{request.url.query}"
    headers["x-notification-url"] = notification_url

    try:
        result = await webhooks.process_webhook(adapter.name, raw_body, headers, adapter.webhook_secret)
    except POSIntegrationError as e:
        if e.status_code < 500:
            raise
        logger.error(f"{adapter.name} webhook processing failed: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")
    except Exception as e:
        logger.error(f"{adapter.name} webhook processing failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")

    return WebhookResponse(ok=result.success, eventId=result.event_id, message=result.message)


# ============ Connection Management ============

@router.get("/connections/{store_public_id}", response_model=ConnectionListResponse)
async def list_connections(
    store_public_id: str,
    db: Session = Depends(get_db),
    connections: ConnectionService = Depends(get_connection_service)
):
    """List active POS connections for a store"""
    store = get_store_by_public_id(db, store_public_id)
    return ConnectionListResponse(
        connections=[ConnectionResponse.from_connection(c) for c in connections.list_for_store(store.id)]
    )


@router.delete("/connections/{store_public_id}/{provider}")
async def disconnect(
    store_public_id: str,
    provider: str,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    connections: ConnectionService = Depends(get_connection_service)
):
    """Deactivate a provider for a store; history is kept"""
    adapter = registry.get(provider)
    store = get_store_by_public_id(db, store_public_id)
    connections.disconnect(store.id, adapter.PROVIDER)
    return {"ok": True, "message": f"{adapter.name} disconnected"}


@router.patch("/connections/{store_public_id}/{provider}/location", response_model=ConnectionResponse)
async def set_location(
    store_public_id: str,
    provider: str,
    body: SetLocationRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    connections: ConnectionService = Depends(get_connection_service)
):
    """Pick which provider location this store's webhooks resolve to"""
    adapter = registry.get(provider)
    store = get_store_by_public_id(db, store_public_id)

    connection = connections.get_for_store(store.id, adapter.PROVIDER)
    if not connection:
        raise NotFoundError("Connection not found")

    connection = connections.set_location_id(connection.id, body.location_id)
    return ConnectionResponse.from_connection(connection)
