"""Expose provider client and token store backends."""

from .dynamodb_store import DynamoDBTokenStore
from .file_store import FileTokenStore
from .memory_store import MemoryTokenStore
from .spotify_auth import SpotifyOAuthClient
from .token_store import PersistenceError, TokenStore, TokenStoreError

__all__ = [
    "DynamoDBTokenStore",
    "FileTokenStore",
    "MemoryTokenStore",
    "PersistenceError",
    "SpotifyOAuthClient",
    "TokenStore",
    "TokenStoreError",
]
