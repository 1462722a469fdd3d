"""Bearer token storage and the refresh-token flow."""

from __future__ import annotations

import asyncio

import httpx
import structlog

from course_player.errors import AuthRefreshError
from course_player.storage.kv_store import KeyValueStore

logger = structlog.get_logger()

ACCESS_TOKEN_KEY = "@auth/access_token"
REFRESH_TOKEN_KEY = "@auth/refresh_token"


class TokenManager:
    """Reads tokens from the key-value store and refreshes them.

    Concurrent callers of :meth:`refresh` share one in-flight refresh
    request. A failed refresh clears both stored tokens.
    """

    def __init__(
        self,
        store: KeyValueStore,
        http: httpx.AsyncClient,
        *,
        refresh_path: str = "/auth/refresh",
    ) -> None:
        self._store = store
        self._http = http
        self._refresh_path = refresh_path
        self._refreshing: asyncio.Task[str] | None = None

    async def access_token(self) -> str | None:
        return await self._store.get(ACCESS_TOKEN_KEY)

    async def refresh_token(self) -> str | None:
        return await self._store.get(REFRESH_TOKEN_KEY)

    async def set_tokens(
        self,
        access_token: str,
        refresh_token: str | None = None,
    ) -> None:
        await self._store.set(ACCESS_TOKEN_KEY, access_token)
        if refresh_token:
            await self._store.set(REFRESH_TOKEN_KEY, refresh_token)
        logger.debug("auth_tokens_stored", rotated_refresh=bool(refresh_token))

    async def clear(self) -> None:
        await self._store.delete(ACCESS_TOKEN_KEY)
        await self._store.delete(REFRESH_TOKEN_KEY)
        logger.info("auth_tokens_cleared")

    async def refresh(self) -> str:
        """Obtain a new access token.

        Raises:
            AuthRefreshError: if no refresh token is stored or the
                refresh endpoint rejects it.
        """
        task = self._refreshing
        if task is None:
            task = asyncio.create_task(self._do_refresh())
            self._refreshing = task
            task.add_done_callback(self._refresh_done)
        return await asyncio.shield(task)

    def _refresh_done(self, task: asyncio.Task[str]) -> None:
        if self._refreshing is task:
            self._refreshing = None

    async def _do_refresh(self) -> str:
        refresh_token = await self.refresh_token()
        if not refresh_token:
            await self.clear()
            raise AuthRefreshError(
                "No refresh token available",
                status_code=401,
                path=self._refresh_path,
            )

        try:
            response = await self._http.post(
                self._refresh_path,
                json={"refreshToken": refresh_token},
            )
        except httpx.HTTPError as exc:
            await self.clear()
            raise AuthRefreshError(str(exc), path=self._refresh_path) from exc

        if response.is_error:
            await self.clear()
            raise AuthRefreshError(
                "Refresh token rejected",
                status_code=response.status_code,
                path=self._refresh_path,
            )

        try:
            payload = response.json()
            data = payload.get("data", payload)
            access_token = str(data["accessToken"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            await self.clear()
            raise AuthRefreshError(
                f"Malformed refresh response: {exc}",
                status_code=response.status_code,
                path=self._refresh_path,
            ) from exc

        await self.set_tokens(access_token, data.get("refreshToken"))
        logger.info("access_token_refreshed")
        return access_token
