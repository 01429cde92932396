"""OAuth2 credentials — live pair, refresh grant and persistence."""

from teamleader_client.auth.credential_store import CredentialStore
from teamleader_client.auth.oauth_state import OAuthStateRegistry
from teamleader_client.auth.token_client import AuthorizationClient
from teamleader_client.auth.token_storage import (
    FileTokenStorage,
    InMemoryTokenStorage,
    create_token_storage,
)

__all__ = [
    "AuthorizationClient",
    "CredentialStore",
    "FileTokenStorage",
    "InMemoryTokenStorage",
    "OAuthStateRegistry",
    "create_token_storage",
]
