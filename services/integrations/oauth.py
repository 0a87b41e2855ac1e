"""OAuth state encoding utilities"""
import base64
import binascii
import json
import time
from typing import Optional

from pydantic import ValidationError

from .errors import InvalidStateError
from .types import OAuthState, POSProvider


class OAuthStateManager:
    """
    Encode and decode the opaque state parameter of the OAuth redirect.

    The state is base64(JSON) and readable by anyone holding the URL, so it
    only ever carries routing data (store, provider, shop domain, return URL).
    The authorization code exchange is what actually proves the grant.
    """

    @staticmethod
    def encode_state(
        store_public_id: str,
        provider: POSProvider,
        shop_domain: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> str:
        """
        Build a state token for the authorization URL

        Args:
            store_public_id: Public ID of the store connecting the provider
            provider: Provider being connected
            shop_domain: Normalized Shopify domain, echoed back on callback
            return_url: Front-end URL to redirect to once the callback completes

        Returns:
            Base64 encoded JSON string
        """
        data = {
            "storePublicId": store_public_id,
            "provider": POSProvider(provider).value,
            "timestamp": int(time.time() * 1000),
        }
        if shop_domain:
            data["shopDomain"] = shop_domain
        if return_url:
            data["frontendRedirectUrl"] = return_url
        return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")

    @staticmethod
    def decode_state(state: str, max_age_seconds: Optional[int] = None) -> OAuthState:
        """
        Decode a state token from the OAuth callback

        Raises:
            InvalidStateError: state is not base64 JSON of the expected shape,
                or is older than max_age_seconds
        """
        try:
            raw = base64.b64decode(state.encode("ascii"), validate=True)
            parsed = OAuthState.model_validate(json.loads(raw.decode("utf-8")))
        except (binascii.Error, UnicodeError, ValueError, ValidationError):
            raise InvalidStateError("Invalid state parameter")

        if max_age_seconds is not None:
            age_ms = int(time.time() * 1000) - parsed.timestamp
            if age_ms > max_age_seconds * 1000:
                raise InvalidStateError("OAuth state has expired")

        return parsed

    @staticmethod
    def peek_return_url(state: Optional[str]) -> Optional[str]:
        """Best-effort read of the return URL, used when the callback has failed"""
        if not state:
            return None
        try:
            return OAuthStateManager.decode_state(state).frontendRedirectUrl
        except InvalidStateError:
            return None
