"""
ApiClient - The data-access layer every dashboard screen calls through.

Combines:
- ResponseCache for read responses
- PersistentStore-backed credentials attached as a bearer token
- TokenRefresher for one single-flight renewal and one retry on a 401
- SessionInvalidator for session-fatal failures
"""

from datetime import timedelta
from typing import Any, Callable

import httpx
from loguru import logger

from dashboard_api.services.cache import ResponseCache, make_cache_key
from dashboard_api.services.errors import (
    ApplicationError,
    NetworkError,
    RefreshFailedError,
    RequestError,
    RequestTimeoutError,
    SessionExpiredError,
)
from dashboard_api.services.session import (
    Credentials,
    SessionInvalidator,
    TokenRefresher,
    classify,
)
from dashboard_api.services.storage import JsonFileStorage, PersistentStore
from dashboard_api.settings import BASE_URL, global_settings

READ_METHOD = "GET"
GENERIC_ERROR_MESSAGE = "Network error"


class ApiClient:
    """
    Async client for the dashboard backend with caching and session recovery.

    Usage:
        client = ApiClient()

        orders = await client.request("/api/orders")

        await client.request("/api/orders", method="POST", body={"shopId": 7})
        await client.invalidate("/api/orders")

    Tests build their own instance with a MemoryStorage-backed store and an
    httpx.MockTransport; production code shares get_api_client().
    """

    def __init__(
        self,
        base_url: str | None = None,
        store: PersistentStore | None = None,
        cache: ResponseCache | None = None,
        navigate: Callable[[str], Any] | None = None,
        timeout: float | None = None,
        cache_ttl: timedelta | None = None,
        credential_ttl_days: float | None = None,
        login_path: str | None = None,
        client_name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool | None = None,
    ):
        settings = global_settings
        self._base_url = (base_url or BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.request_timeout
        self._cache_ttl = cache_ttl or timedelta(seconds=settings.cache_ttl_seconds)
        self._client_name = client_name or settings.client_name
        self._transport = transport
        self._debug = settings.debug if debug is None else debug

        self._cache = cache if cache is not None else ResponseCache(
            max_size=settings.cache_max_size,
            default_ttl=self._cache_ttl,
            debug=self._debug,
        )
        self._store = (
            store
            if store is not None
            else PersistentStore(JsonFileStorage(settings.storage_path))
        )
        self._credentials = Credentials(
            self._store,
            ttl_days=(
                credential_ttl_days
                if credential_ttl_days is not None
                else settings.credential_ttl_days
            ),
        )
        self._invalidator = SessionInvalidator(
            self._credentials,
            navigate=navigate,
            login_path=login_path or settings.login_path,
        )
        self._refresher = TokenRefresher(
            base_url=self._base_url,
            credentials=self._credentials,
            get_http_client=self._get_http_client,
            timeout=self._timeout,
        )

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def client_name(self) -> str:
        return self._client_name

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def refresher(self) -> TokenRefresher:
        return self._refresher

    @property
    def invalidator(self) -> SessionInvalidator:
        return self._invalidator

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._http_client

    async def request(
        self,
        path: str,
        method: str = READ_METHOD,
        body: Any = None,
        headers: dict[str, str] | None = None,
        recover_session: bool = True,
    ) -> Any:
        """
        Issue a logical request against the backend.

        Args:
            path: Path appended to the base URL, e.g. "/api/orders"
            method: HTTP method; only GET responses are cached
            body: JSON-serializable request body
            headers: Extra headers; Content-Type is always forced to JSON
            recover_session: Renew the token on a refreshable 401 and tear the
                session down on session-fatal failures. When False every
                non-2xx is an ApplicationError.

        Returns:
            Parsed JSON body

        Raises:
            RequestTimeoutError: The call exceeded the fixed timeout
            NetworkError: Transport-level failure
            RefreshFailedError: A 401 could not be recovered by renewal
            SessionExpiredError: The server terminated the session
            ApplicationError: Any other non-2xx outcome
        """
        method = method.upper()
        is_read = method == READ_METHOD
        cache_key = make_cache_key(method, path, body) if is_read else None

        if cache_key is not None:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return cached

        token = self._credentials.access_token()
        response = await self._send(method, path, body, self._headers(headers, token))

        if not response.is_success and recover_session:
            message = self._error_message(response)
            failure = classify(response.status_code, message)

            if failure.retryable and token:
                new_token = await self._refresher.refresh(stale_token=token)
                if new_token is None:
                    self._invalidator.invalidate("token renewal failed")
                    raise RefreshFailedError()

                response = await self._send(
                    method, path, body, self._headers(headers, new_token)
                )
                if not response.is_success:
                    message = self._error_message(response)
                    failure = classify(response.status_code, message)

            if not response.is_success:
                if failure.session_fatal:
                    self._invalidator.invalidate(message)
                    raise SessionExpiredError()
                raise ApplicationError(message, status=response.status_code)

        if not response.is_success:
            raise ApplicationError(
                self._error_message(response), status=response.status_code
            )

        data = self._parse_body(response)

        if cache_key is not None:
            await self._cache.set(cache_key, data, self._cache_ttl)
            self._cache.schedule_sweep()

        return data

    async def call(
        self,
        endpoint: str,
        method: str = READ_METHOD,
        body: Any = None,
    ) -> Any:
        """
        Unauthenticated, uncached call under /api/{client_name}.

        Used by login and password reset, which run without a session.
        """
        path = f"/api/{self._client_name}{endpoint}"
        response = await self._send(
            method.upper(), path, body, {"Content-Type": "application/json"}
        )
        if not response.is_success:
            raise ApplicationError(
                self._error_message(response, f"HTTP {response.status_code}"),
                status=response.status_code,
            )
        return self._parse_body(response)

    async def invalidate(self, path_substring: str | None = None) -> int:
        """Drop cached reads whose key contains path_substring, or all of them."""
        return await self._cache.invalidate(path_substring)

    async def prefetch(self, path: str) -> None:
        """Warm the cache for a read; failures are logged, not raised."""
        try:
            await self.request(path)
        except RequestError as e:
            logger.warning(f"Prefetch of {path} failed: {e.message}")

    def _headers(
        self, headers: dict[str, str] | None, token: str | None
    ) -> httpx.Headers:
        # Header names are case-insensitive on the wire.
        merged = httpx.Headers(headers or {})
        merged["Content-Type"] = "application/json"
        if token:
            merged["Authorization"] = f"Bearer {token}"
        return merged

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        headers: httpx.Headers | dict[str, str],
    ) -> httpx.Response:
        """Execute one outbound call, normalizing transport failures."""
        client = await self._get_http_client()

        try:
            return await client.request(
                method=method,
                url=f"{self._base_url}{path}",
                headers=headers,
                json=body,
                timeout=self._timeout,
            )

        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out after {self._timeout}s")
            raise RequestTimeoutError(self._timeout) from e

        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise NetworkError() from e

    def _error_message(
        self, response: httpx.Response, missing: str | None = None
    ) -> str:
        """Extract the server's `error` string from a failed response."""
        try:
            payload = response.json()
        except ValueError:
            return GENERIC_ERROR_MESSAGE

        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, str) and error:
            return error
        return missing or f"HTTP {response.status_code}: {response.reason_phrase}"

    def _parse_body(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApplicationError(
                "Malformed response from server", status=response.status_code
            ) from e

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

        await self._refresher.flight.cancel_all()
        await self._cache.close()
        logger.debug("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        """Get cache and token-renewal statistics."""
        return {
            "base_url": self._base_url,
            "cache": self._cache.get_stats().to_dict(),
            "token_refresh": self._refresher.flight.get_stats().to_dict(),
            "authenticated": self._credentials.access_token() is not None,
        }


# Global client instance
_global_client: ApiClient | None = None


def get_api_client() -> ApiClient:
    """Get the global API client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ApiClient()
    return _global_client


async def close_api_client() -> None:
    """Close the global API client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
