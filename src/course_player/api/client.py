"""ApiClient -- authenticated JSON client for the course backend.

Request flow:
1. Attach ``Authorization: Bearer <token>`` when a token is stored.
2. On 401, refresh the token once and repeat the request.
3. On network errors, 429 and 5xx, retry with linear backoff
   (``retry_delay_sec * attempt``) up to ``max_attempts``.
4. Unwrap the ``{data, message, success}`` envelope.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
import structlog

from course_player.api.tokens import TokenManager
from course_player.errors import ApiError

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]

_PERMANENT_STATUSES = frozenset({400, 401, 403, 404, 409, 422})


class ApiClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenManager | None = None,
        *,
        max_attempts: int = 3,
        retry_delay_sec: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay_sec
        self._sleep = sleep

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        skip_auth: bool = False,
    ) -> Any:
        """Send a request and return the unwrapped ``data`` payload.

        Raises:
            ApiError: on a permanent HTTP error, when retries run out,
                or when the envelope reports ``success: false``.
            AuthRefreshError: if a 401 cannot be recovered by refreshing.
        """
        refreshed = False
        attempt = 0
        while True:
            attempt += 1
            headers = {} if skip_auth else await self._auth_headers()
            try:
                response = await self._http.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers=headers,
                )
            except httpx.TransportError as exc:
                logger.warning(
                    "api_request_failed",
                    method=method,
                    path=path,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=str(exc),
                )
                if attempt >= self._max_attempts:
                    raise ApiError(str(exc), path=path) from exc
                await self._sleep(self._retry_delay * attempt)
                continue

            status = response.status_code
            if (
                status == 401
                and not refreshed
                and not skip_auth
                and self._tokens is not None
            ):
                refreshed = True
                attempt -= 1
                logger.info("api_unauthorized_refreshing", method=method, path=path)
                await self._tokens.refresh()
                continue

            if self._is_retryable(status) and attempt < self._max_attempts:
                logger.warning(
                    "api_request_retry",
                    method=method,
                    path=path,
                    status_code=status,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                )
                await self._sleep(self._retry_delay * attempt)
                continue

            return self._unwrap(response, path)

    async def _auth_headers(self) -> dict[str, str]:
        if self._tokens is None:
            return {}
        token = await self._tokens.access_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        """429 and 5xx are transient; other statuses are final."""
        if status_code in _PERMANENT_STATUSES:
            return False
        return status_code == 429 or status_code >= 500

    @staticmethod
    def _unwrap(response: httpx.Response, path: str) -> Any:
        status = response.status_code
        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None

        envelope = isinstance(body, dict) and ("data" in body or "success" in body)
        if response.is_error:
            message = response.reason_phrase or "request failed"
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
            raise ApiError(message, status_code=status, path=path)

        if not envelope:
            return body
        if body.get("success") is False:
            raise ApiError(
                str(body.get("message") or "request unsuccessful"),
                status_code=status,
                path=path,
            )
        return body.get("data")
