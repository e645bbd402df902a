"""Token acquisition and persistence."""

from .oauth import OAuthTokenProvider
from .token_store import EncryptedFileTokenStore, KeyringTokenStore, TokenStore, build_token_store

__all__ = [
    "EncryptedFileTokenStore",
    "KeyringTokenStore",
    "OAuthTokenProvider",
    "TokenStore",
    "build_token_store",
]
