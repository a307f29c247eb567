"""OAuth2 authorization and token lifecycle."""

from lumen.oauth.lifecycle import TokenLifecycle
from lumen.oauth.session import GOOGLE, CallbackListener, OAuthSession, ProviderEndpoints
from lumen.oauth.tokens import TokenSet, is_expired

__all__ = [
    "GOOGLE",
    "CallbackListener",
    "OAuthSession",
    "ProviderEndpoints",
    "TokenLifecycle",
    "TokenSet",
    "is_expired",
]
