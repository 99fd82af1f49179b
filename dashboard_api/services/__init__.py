"""
Data-access layer - caching, credential persistence and session recovery
for calls to the dashboard backend.

Provides:
- ResponseCache: TTL cache for read responses with a debounced janitor
- PersistentStore: Expiring key/value storage for the credential pair
- TokenRefresher: Single-flight access token renewal
- SessionInvalidator: Credential teardown and navigation to login
- ApiClient: Request executor combining all of the above
- AuthService: Login, logout, session restore and password reset
"""

from dashboard_api.services.errors import (
    RequestError,
    RequestTimeoutError,
    NetworkError,
    ApplicationError,
    SessionExpiredError,
    RefreshFailedError,
)
from dashboard_api.services.cache import ResponseCache, CacheEntry, make_cache_key
from dashboard_api.services.storage import (
    PersistentStore,
    JsonFileStorage,
    MemoryStorage,
)
from dashboard_api.services.singleflight import SingleFlight
from dashboard_api.services.session import (
    Credentials,
    FailureClass,
    SessionInfo,
    SessionInvalidator,
    TokenPair,
    TokenRefresher,
    classify,
    token_claims,
)
from dashboard_api.services.client import ApiClient, get_api_client, close_api_client
from dashboard_api.services.auth import AuthService

__all__ = [
    # Errors
    "RequestError",
    "RequestTimeoutError",
    "NetworkError",
    "ApplicationError",
    "SessionExpiredError",
    "RefreshFailedError",
    # Cache
    "ResponseCache",
    "CacheEntry",
    "make_cache_key",
    # Storage
    "PersistentStore",
    "JsonFileStorage",
    "MemoryStorage",
    # Session
    "SingleFlight",
    "Credentials",
    "FailureClass",
    "SessionInfo",
    "SessionInvalidator",
    "TokenPair",
    "TokenRefresher",
    "classify",
    "token_claims",
    # Client
    "ApiClient",
    "get_api_client",
    "close_api_client",
    "AuthService",
]
