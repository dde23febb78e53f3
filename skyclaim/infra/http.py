"""Minimal aiohttp client for outbound alert delivery.

Every alert channel is a single POST to a JSON or plain-text endpoint, so the
client only speaks POST and always hands the body back as text. Transport
failures and timeouts surface as ``HttpError`` with status 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType
from typing import Any

import aiohttp
from loguru import logger

USER_AGENT = "skyclaim"
MAX_ERROR_BODY = 500


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    status: int
    body: str

    def __str__(self) -> str:
        if self.status == 0:
            return f"request failed: {self.body}"
        return f"HTTP {self.status}: {self.body}"


class HttpClient:
    """One ``aiohttp`` session rooted at ``base_url``; closed on context exit."""

    def __init__(self, base_url: str, *, timeout: float = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(account="HTTP")

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers={"User-Agent": USER_AGENT})
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def post(
        self,
        path: str = "",
        *,
        json: dict[str, Any] | None = None,
        data: str | bytes | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """POST to ``base_url + path`` and return the response body.

        Raises:
            HttpError: Status >= 400, or the request never completed (status 0).
        """
        session = self._ensure_session()
        url = f"{self._base_url}{path}"
        self._log.debug("POST {host}", host=self._base_url)

        try:
            async with session.post(url, json=json, data=data, params=params, headers=headers) as resp:
                status = resp.status
                body = await resp.text()
        except TimeoutError as e:
            raise HttpError(status=0, body=f"timed out after {self._timeout.total:g}s") from e
        except aiohttp.ClientError as e:
            raise HttpError(status=0, body=str(e)) from e

        if status >= 400:
            self._log.warning(
                "HTTP {status} from {host}: {body}",
                status=status, host=resp.url.host, body=body[:MAX_ERROR_BODY],
            )
            raise HttpError(status=status, body=body[:MAX_ERROR_BODY])
        return body
