"""
Credential lifecycle: the persisted token pair, failure classification,
session teardown and single-flight token renewal.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
import jwt
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dashboard_api.services.singleflight import SingleFlight
from dashboard_api.services.storage import PersistentStore

TOKEN_KEY = "token"
SESSION_KEY = "sessionInfo"
REFRESH_PATH = "/api/session/refresh"

# Server wording that means the session itself is gone. Matched lowercased
# as substrings of the 401 error message; keep in sync with the backend.
SESSION_FATAL_PHRASES = (
    "session is inactive",
    "invalid token",
    "token expired",
    "unauthorized",
)


class SessionInfo(BaseModel):
    """Persisted refresh-side half of the credential pair."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken", min_length=1)
    expires_in: int | None = Field(default=None, alias="expiresIn")
    session_id: str | None = Field(default=None, alias="sessionId")
    last_refresh: float | None = Field(default=None, alias="lastRefresh")


class TokenPair(BaseModel):
    """Login or renewal response body."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_in: int | None = Field(default=None, alias="expiresIn")
    session_id: str | None = Field(default=None, alias="sessionId")


@dataclass(frozen=True)
class FailureClass:
    """How a failed response should be handled."""

    retryable: bool  # a credential renewal may recover it
    session_fatal: bool  # the session is gone once renewal is exhausted


def classify(status: int | None, message: str | None) -> FailureClass:
    """
    Classify a failed response by status and server message.

    A 401 alone is not enough: authorization-denied 401s are ordinary
    application errors and must reach the caller without a logout.
    """
    lowered = (message or "").lower()
    fatal = status == 401 and any(p in lowered for p in SESSION_FATAL_PHRASES)
    return FailureClass(retryable=fatal, session_fatal=fatal)


def token_claims(token: str) -> dict[str, Any] | None:
    """
    Decode an access token's claims without verifying its signature.

    The backend owns verification; the client only reads `exp` and the
    user fields. Returns None for anything that is not a JWT.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.debug(f"Access token is not a readable JWT: {e}")
        return None
    return claims if isinstance(claims, dict) else None


class Credentials:
    """
    The access token and session record, persisted under fixed keys.

    `generation` increases on every save so observers can tell a fresh
    login or renewal apart from the state they last acted on.
    """

    def __init__(
        self,
        store: PersistentStore,
        ttl_days: float = 5,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._ttl_days = ttl_days
        self._clock = clock
        self.generation = 0

    def access_token(self) -> str | None:
        value = self._store.get(TOKEN_KEY)
        return value if isinstance(value, str) and value else None

    def session_info(self) -> SessionInfo | None:
        raw = self._store.get(SESSION_KEY)
        if raw is None:
            return None
        try:
            return SessionInfo.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed session record: {e}")
            self._store.clear(SESSION_KEY)
            return None

    def save(self, pair: TokenPair, previous: SessionInfo | None = None) -> None:
        """Persist a new token pair, keeping the old refresh token if none came back."""
        refresh_token = pair.refresh_token or (
            previous.refresh_token if previous else None
        )
        if not refresh_token:
            raise ValueError("token response carries no refresh token")

        info = SessionInfo(
            refresh_token=refresh_token,
            expires_in=pair.expires_in,
            session_id=pair.session_id,
            last_refresh=self._clock(),
        )
        record = info.model_dump(by_alias=True)

        # No await between the two writes
        self._store.set(TOKEN_KEY, pair.access_token, self._ttl_days)
        self._store.set(SESSION_KEY, record, self._ttl_days)
        self.generation += 1

    def clear(self) -> None:
        self._store.clear(TOKEN_KEY)
        self._store.clear(SESSION_KEY)


class SessionInvalidator:
    """
    Clears credentials and navigates to the login entry point.

    Runs at most once per credential generation, so a burst of concurrent
    session-fatal failures yields a single navigation.
    """

    def __init__(
        self,
        credentials: Credentials,
        navigate: Callable[[str], Any] | None = None,
        login_path: str = "/login",
    ):
        self._credentials = credentials
        self._navigate = navigate
        self._login_path = login_path
        self._invalidated_generation: int | None = None

    @property
    def login_path(self) -> str:
        return self._login_path

    def invalidate(self, reason: str = "") -> bool:
        """Tear the session down. Returns False if already done for this generation."""
        generation = self._credentials.generation
        if self._invalidated_generation == generation:
            return False
        self._invalidated_generation = generation

        self._credentials.clear()
        logger.warning(f"Session invalidated: {reason or 'no reason given'}")
        if self._navigate is not None:
            self._navigate(self._login_path)
        return True


class TokenRefresher:
    """
    Exchanges the refresh token for a new pair, one renewal at a time.

    Concurrent callers hitting a 401 all await the same renewal. A caller
    whose token was already replaced by a finished renewal gets the
    current token back without another call.
    """

    FLIGHT_KEY = "session-refresh"

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        get_http_client: Callable[[], Awaitable[httpx.AsyncClient]],
        timeout: float = 10.0,
        flight: SingleFlight | None = None,
    ):
        self._base_url = base_url
        self._credentials = credentials
        self._get_http_client = get_http_client
        self._timeout = timeout
        self._flight = flight or SingleFlight()

    @property
    def flight(self) -> SingleFlight:
        return self._flight

    async def refresh(self, stale_token: str | None = None) -> str | None:
        """Return a fresh access token, or None if renewal is impossible."""
        current = self._credentials.access_token()
        if stale_token and current and current != stale_token:
            return current
        return await self._flight.do(self.FLIGHT_KEY, self._renew)

    async def _renew(self) -> str | None:
        session = self._credentials.session_info()
        if session is None:
            logger.debug("No session record, skipping token renewal")
            return None

        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}{REFRESH_PATH}",
                json={"refreshToken": session.refresh_token},
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Token renewal failed: {type(e).__name__}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Token renewal rejected: HTTP {response.status_code}")
            return None

        try:
            pair = TokenPair.model_validate(response.json())
            self._credentials.save(pair, previous=session)
        except ValueError as e:
            logger.warning(f"Token renewal returned a malformed body: {e}")
            return None
        except OSError as e:
            logger.error(f"Could not persist renewed credentials: {e}")
            return None

        logger.info("Access token renewed")
        return pair.access_token
