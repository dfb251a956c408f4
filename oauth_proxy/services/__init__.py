"""Service layer exports."""

from .oauth_flow import OAuthFlowService
from .sessions import MemorySessionStore, SessionStore
from .sweeper import TransactionSweeper
from .token_cipher import TokenCipherService
from .token_refresh import RefreshResult, TokenRefreshCoordinator

__all__ = [
    "MemorySessionStore",
    "OAuthFlowService",
    "RefreshResult",
    "SessionStore",
    "TokenCipherService",
    "TokenRefreshCoordinator",
    "TransactionSweeper",
]
