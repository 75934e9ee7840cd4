"""Small JSON-over-HTTP client shared by the REST-backed stores."""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Callable, Dict, Optional

import aiohttp

DEFAULT_TIMEOUT = 10.0

# (method, url, params, body) -> extra headers, computed for every attempt
Signer = Callable[[str, str, Optional[Dict[str, str]], str], Dict[str, str]]


class RestError(RuntimeError):
    """Raised when a REST request fails permanently."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RestClient:
    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = 3,
        retry_wait_min: float = 0.5,
        retry_wait_max: float = 5.0,
        timeout: float = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
        signer: Optional[Signer] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        self._provided_session = session
        self._session = session
        self._max_retries = max(1, max_retries)
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._signer = signer

    async def _session_or_create(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=None if self._verify_ssl else False)
            )
        return self._session

    async def close(self) -> None:
        if self._session and self._session is not self._provided_session:
            await self._session.close()
        self._session = None

    async def get(
        self, path: str, params: Optional[Dict[str, str]] = None, *, allow_missing: bool = False
    ) -> Any:
        return await self.request("GET", path, params=params, allow_missing=allow_missing)

    async def get_text(self, path: str, params: Optional[Dict[str, str]] = None) -> str:
        return await self.request("GET", path, params=params, decode=False)

    async def post(
        self, path: str, params: Optional[Dict[str, str]] = None, body: Optional[Any] = None
    ) -> Any:
        return await self.request("POST", path, params=params, body=body)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        allow_missing: bool = False,
        decode: bool = True,
        body: Optional[Any] = None,
    ) -> Any:
        """Issue a request and decode the JSON body (or return the raw text).

        Server errors and transport failures are retried with jittered
        exponential backoff; a 404 yields ``None`` when ``allow_missing``.
        """
        session = await self._session_or_create()
        url = f"{self._base_url}/{path.lstrip('/')}"
        data = json.dumps(body) if body is not None else ""
        headers = dict(self._headers)
        if data:
            headers["Content-Type"] = "application/json"
        attempt = 0
        backoff = self._retry_wait_min
        while True:
            attempt += 1
            if self._signer is not None:
                headers.update(self._signer(method, url, params, data))
            try:
                async with session.request(
                    method,
                    url,
                    params=params,
                    data=data or None,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    status = resp.status
                    text = await resp.text()
                    if status >= 500:
                        raise RestError(f"server error {status}: {text}", status)
            except (aiohttp.ClientError, asyncio.TimeoutError, RestError) as exc:
                if attempt >= self._max_retries:
                    raise RestError(f"{method} {url} failed: {exc}") from exc
                delay = min(backoff * random.uniform(0.8, 1.2), self._retry_wait_max)
                await asyncio.sleep(delay)
                backoff *= 2
                continue

            if status == 404 and allow_missing:
                return None
            if status >= 400:
                raise RestError(f"{method} {url} returned {status}: {text.strip()[:200]}", status)
            if not decode:
                return text
            return json.loads(text) if text else None
