"""OAuth connect flow shared by every POS provider"""
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from db_models import POSConnection
from services.connection_service import ConnectionService
from services.integrations.errors import InvalidStateError
from services.integrations.oauth import OAuthStateManager
from services.integrations.registry import ProviderRegistry
from services.integrations.shopify import ShopifyIntegration
from services.integrations.types import MerchantInfo, POSProvider
from services.stores import get_store_by_public_id

logger = logging.getLogger(__name__)


def callback_redirect_uri(base_url: str, provider: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/pos/oauth/{provider}/callback"


def webhook_url(base_url: str, provider: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/pos/webhook/{provider}"


def with_query_params(url: str, **params: str) -> str:
    """Append params to a URL, replacing any existing values"""
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query))
    query.update(params)
    return urlunparse(parts._replace(query=urlencode(query)))


class OAuthCallbackResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider: POSProvider
    connection: POSConnection
    merchant_info: MerchantInfo
    redirect_url: Optional[str] = None


class OAuthFlowService:
    """
    Builds authorization URLs and completes callbacks.

    The state parameter carries only routing data; proof of the grant is the
    code exchange with the provider.
    """

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        connections: ConnectionService,
        base_url: str,
        state_max_age_seconds: Optional[int] = None
    ):
        self.db = db
        self.registry = registry
        self.connections = connections
        self.base_url = base_url
        self.state_max_age_seconds = state_max_age_seconds

    def get_authorization_url(
        self,
        provider_name: str,
        store_public_id: str,
        shop: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        provider = self.registry.get(provider_name)
        # Fails with NotFoundError before the merchant is sent anywhere
        get_store_by_public_id(self.db, store_public_id)

        url = provider.get_authorization_url(
            store_public_id,
            callback_redirect_uri(self.base_url, provider.name),
            shop=shop,
            return_url=return_url
        )
        logger.info(f"Starting {provider.name} OAuth for store {store_public_id}")
        return url

    async def handle_callback(
        self,
        provider_name: str,
        code: str,
        state: str,
        shop: Optional[str] = None
    ) -> OAuthCallbackResult:
        """
        Raises:
            ProviderNotRegisteredError: unsupported provider
            InvalidStateError: undecodable, expired or mismatched state
            NotFoundError: store in state does not exist
            ProviderApiError: code exchange or merchant lookup failed
        """
        provider = self.registry.get(provider_name)
        state_data = OAuthStateManager.decode_state(state, max_age_seconds=self.state_max_age_seconds)

        if state_data.provider != provider.PROVIDER:
            logger.warning(
                f"OAuth state provider {state_data.provider.value} does not match callback {provider.name}"
            )
            raise InvalidStateError("Provider mismatch in state")

        store = get_store_by_public_id(self.db, state_data.storePublicId)
        redirect_uri = callback_redirect_uri(self.base_url, provider.name)

        # Shopify echoes the shop in the callback query as well
        shop_domain = state_data.shopDomain or shop

        tokens = await provider.exchange_code_for_tokens(code, redirect_uri, shop=shop_domain)
        shop_domain = tokens.additional_data.get("shop_domain") or shop_domain

        merchant_info = await provider.get_merchant_info(tokens.access_token, shop=shop_domain)

        connection = self.connections.upsert(
            store.id,
            provider.PROVIDER,
            tokens.access_token,
            merchant_id=merchant_info.merchant_id,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            shop_domain=shop_domain if provider.PROVIDER == POSProvider.SHOPIFY else None,
            metadata={
                "businessName": merchant_info.business_name,
                "locations": [loc.model_dump() for loc in merchant_info.locations],
            }
        )

        if isinstance(provider, ShopifyIntegration) and shop_domain:
            await provider.register_webhooks(
                tokens.access_token,
                shop_domain,
                webhook_url(self.base_url, provider.name)
            )

        logger.info(
            f"{provider.name} OAuth completed for store {store.id}: "
            f"merchant {merchant_info.merchant_id}, connection {connection.id}"
        )

        redirect_url = None
        if state_data.frontendRedirectUrl:
            redirect_url = with_query_params(
                state_data.frontendRedirectUrl,
                status="success",
                provider=provider.name
            )

        return OAuthCallbackResult(
            provider=provider.PROVIDER,
            connection=connection,
            merchant_info=merchant_info,
            redirect_url=redirect_url
        )

    @staticmethod
    def error_redirect_url(state: Optional[str], message: str) -> Optional[str]:
        """Front-end redirect for a failed callback, if the state carried one"""
        return_url = OAuthStateManager.peek_return_url(state)
        if not return_url:
            return None
        return with_query_params(return_url, status="error", message=message)
