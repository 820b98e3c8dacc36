"""aiohttp transport for the attendance REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import aiohttp

from .errors import TransportError
from .session import SessionStore
from .utils.logger import mask_secret

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def _decode(raw: bytes, charset: str) -> str:
    """Decode a response body; malformed bytes or charsets never raise."""
    try:
        return raw.decode(charset, errors="replace")
    except LookupError:
        LOGGER.debug("Unknown response charset %r; decoding as utf-8", charset)
        return raw.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ApiResponse:
    """HTTP status plus the decoded JSON body (``None`` when not JSON)."""

    status: int
    body: Any
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AttendanceApi:
    """Thin async client: base URL, bearer token, timeout and logging.

    Requests are sent exactly once. Connection errors and timeouts raise
    :class:`TransportError`; HTTP error statuses are returned to the
    caller, which owns their interpretation.
    """

    def __init__(
        self,
        base_url: str,
        session_store: SessionStore,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._store = session_store
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http
        self._owns_http = http is None
        self._logger = logger or LOGGER

    async def __aenter__(self) -> "AttendanceApi":
        self._client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._store.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
            self._logger.debug("Bearer token attached (%s)", mask_secret(token))
        else:
            self._logger.debug("No token in session store; sending unauthenticated request")
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self._logger.debug("%s %s params=%s", method.upper(), url, dict(params or {}))
        try:
            async with self._client().request(
                method.upper(),
                url,
                json=json_body,
                params=params,
                headers=self._headers(),
                timeout=self._timeout,
            ) as response:
                raw = await response.read()
                charset = response.charset or "utf-8"
                status = response.status
        except asyncio.TimeoutError as exc:
            self._logger.warning("Request %s %s timed out", method.upper(), url)
            raise TransportError(details={"url": url, "reason": "timeout"}) from exc
        except aiohttp.ClientError as exc:
            self._logger.warning("Request %s %s failed: %s", method.upper(), url, exc)
            raise TransportError(details={"url": url, "reason": str(exc)}) from exc

        text = _decode(raw, charset)
        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                self._logger.debug("Response body is not JSON (%d bytes)", len(text))
        self._logger.debug("Response %s from %s: %s", status, url, body if body is not None else text[:200])
        if status == 401:
            self._logger.warning("Server answered 401; the session token is missing or expired")
        elif status >= 500:
            self._logger.warning("Server error %s for %s", status, url)
        return ApiResponse(status=status, body=body, text=text)

    async def get(self, path: str, *, params: Optional[Mapping[str, Any]] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Mapping[str, Any]) -> ApiResponse:
        return await self.request("POST", path, json_body=payload)

    async def post_attendance(self, payload: Mapping[str, Any]) -> ApiResponse:
        return await self.post("/attendances", payload)
