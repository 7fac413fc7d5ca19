from .base import OAuthProviderBase, OAuthProviderConfig
from .models import OAuthFlowError, OAuthToken, OAuthUserInfo, ProviderEmail

__all__ = [
    "OAuthFlowError",
    "OAuthProviderBase",
    "OAuthProviderConfig",
    "OAuthToken",
    "OAuthUserInfo",
    "ProviderEmail",
]
