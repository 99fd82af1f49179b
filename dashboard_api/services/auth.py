"""
AuthService - Login, logout, session restore and password reset on top of
ApiClient.

A live session keeps one background task that renews the access token a
fixed lead time before its `exp` claim. Login, restore and every manual
renewal re-arm it; logout and close() cancel it.
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from dashboard_api.services.client import ApiClient
from dashboard_api.services.errors import ApplicationError, RequestError
from dashboard_api.services.session import TokenPair, token_claims
from dashboard_api.settings import global_settings

LOGOUT_PATH = "/api/session/logout"


class AuthService:
    """
    Credential lifecycle entry points used by the login and account screens.

    Usage:
        auth = AuthService(get_api_client())
        if not await auth.restore():
            await auth.login("rep@example.com", "secret")
        ...
        await auth.logout()
        await auth.close()
    """

    def __init__(
        self,
        client: ApiClient,
        refresh_lead: timedelta | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._refresh_lead = (
            refresh_lead
            if refresh_lead is not None
            else timedelta(seconds=global_settings.token_refresh_lead_seconds)
        )
        self._clock = clock
        self._sleep = sleep
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def is_authenticated(self) -> bool:
        credentials = self._client.credentials
        return (
            credentials.access_token() is not None
            and credentials.session_info() is not None
        )

    @property
    def user(self) -> dict[str, Any] | None:
        """Claims of the current access token, or None when logged out."""
        token = self._client.credentials.access_token()
        return token_claims(token) if token else None

    @property
    def refresh_pending(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def restore(self) -> bool:
        """
        Resume a persisted session at startup.

        An access token whose `exp` has passed, or that cannot be decoded,
        is renewed first; if renewal fails the session is torn down.

        Returns:
            Whether a usable session is active afterwards
        """
        if not self.is_authenticated:
            logger.debug("No persisted session to restore")
            return False

        claims = self.user
        if claims is None or self._is_expired(claims):
            logger.info("Persisted access token is stale, renewing")
            if not await self.refresh_session():
                self._client.invalidator.invalidate("session restore failed")
                return False
            return True

        self.schedule_refresh()
        logger.info("Session restored")
        return True

    async def login(self, email: str, password: str) -> TokenPair:
        """Exchange email and password for a credential pair and persist it."""
        data = await self._client.call(
            "/login", method="POST", body={"email": email, "password": password}
        )
        try:
            pair = TokenPair.model_validate(data)
            self._client.credentials.save(pair)
        except (ValidationError, ValueError) as e:
            raise ApplicationError("Login failed: malformed response") from e
        except OSError as e:
            raise ApplicationError("Login failed: could not store credentials") from e

        # Cached reads belong to whoever was logged in before
        await self._client.invalidate()
        self.schedule_refresh()
        logger.info(f"Logged in as {email}")
        return pair

    async def refresh_session(self) -> bool:
        """Renew the access token now. Returns whether it succeeded."""
        if await self._client.refresher.refresh() is None:
            return False
        self.schedule_refresh()
        return True

    async def logout(self) -> None:
        """
        End the session on the server when possible, then always clear it
        locally and navigate to the login entry point.
        """
        await self._cancel_refresh()
        session = self._client.credentials.session_info()
        try:
            if session is not None and session.session_id:
                await self._client.request(
                    LOGOUT_PATH,
                    method="POST",
                    body={"sessionId": session.session_id},
                    recover_session=False,
                )
        except RequestError as e:
            logger.warning(f"Server-side logout failed: {e.message}")
        finally:
            await self._client.invalidate()
            self._client.invalidator.invalidate("logout")
            logger.info("Logged out")

    def schedule_refresh(self) -> bool:
        """
        Arm the early renewal for the current access token, replacing any
        pending one. A token already inside the lead window renews at once.

        Returns:
            False when the token carries no usable `exp` claim
        """
        delay = self._seconds_until_refresh()
        if delay is None:
            return False
        self._arm(max(delay, 0.0))
        return True

    def _arm(self, delay: float) -> None:
        if self.refresh_pending and self._refresh_task is not asyncio.current_task():
            self._refresh_task.cancel()
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._refresh_after(delay)
        )
        logger.debug(f"Token renewal scheduled in {delay:.0f}s")

    async def _refresh_after(self, delay: float) -> None:
        await self._sleep(delay)
        if await self._client.refresher.refresh() is None:
            # The next 401 retries renewal and tears the session down if needed
            logger.warning("Scheduled token renewal failed")
            return

        delay = self._seconds_until_refresh()
        if delay is None:
            return
        if delay <= 0:
            logger.warning("Renewed token expires within the refresh lead")
            return
        self._arm(delay)

    def _seconds_until_refresh(self) -> float | None:
        claims = self.user
        exp = claims.get("exp") if claims else None
        if not isinstance(exp, (int, float)):
            return None
        return exp - self._refresh_lead.total_seconds() - self._clock()

    def _is_expired(self, claims: dict[str, Any]) -> bool:
        exp = claims.get("exp")
        return isinstance(exp, (int, float)) and exp < self._clock()

    async def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        """Cancel the pending token renewal."""
        await self._cancel_refresh()

    async def forgot_password(self, email: str) -> Any:
        return await self._client.call(
            "/forgot-password", method="POST", body={"email": email}
        )

    async def validate_reset_token(self, token: str) -> Any:
        return await self._client.call(f"/validate-reset-token/{token}")

    async def reset_password(self, token: str, new_password: str) -> Any:
        return await self._client.call(
            "/reset-password",
            method="POST",
            body={"token": token, "newPassword": new_password},
        )
