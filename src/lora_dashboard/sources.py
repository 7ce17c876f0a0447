"""Polled data sources.

A :class:`PollSource` returns the current text of one resource.  Locations
starting with ``http://`` or ``https://`` are fetched through a shared
``aiohttp`` session; anything else is a local path (or ``file://`` URL)
read in a worker thread, since the polled file may live on a slow or
network-mounted filesystem.  Writes elsewhere in the package (alert log,
dashboard document) are small and run inline on the event loop.

Every failure is raised as :class:`SourceError`; callers treat it as "no
update this tick".
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import aiohttp

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when a source cannot be fetched."""


def is_http(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def cache_bust_params(now: Optional[float] = None) -> dict[str, str]:
    """Query parameters defeating intermediate caches (epoch milliseconds)."""
    stamp = time.time() if now is None else now
    return {"_": str(int(stamp * 1000))}


class PollSource:
    """One polled resource.

    Parameters
    ----------
    location:
        HTTP(S) URL, ``file://`` URL, or filesystem path.
    timeout_s:
        Per-fetch timeout.
    cache_bust:
        Append a cache-busting query parameter to HTTP fetches.
    auth_token:
        Sent as ``Authorization: Bearer <token>`` on HTTP fetches when set.
    http:
        Shared ``aiohttp`` session; required for HTTP locations.
    """

    def __init__(
        self,
        location: str,
        timeout_s: float = 5.0,
        cache_bust: bool = False,
        auth_token: str = "",
        http: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._location = location
        self._timeout = timeout_s
        self._cache_bust = cache_bust
        self._auth_token = auth_token
        self._http = http

    @property
    def location(self) -> str:
        return self._location

    async def fetch(self) -> str:
        """Return the resource body as text.

        Raises
        ------
        SourceError
            On any transport, status or decoding failure.
        """
        if is_http(self._location):
            return await self._fetch_http()
        return await self._fetch_file()

    # ── internal ────────────────────────────────────────────────────

    async def _fetch_http(self) -> str:
        if self._http is None:
            raise SourceError(f"No HTTP session for {self._location}")

        headers: dict[str, str] = {"cache-control": "no-cache"}
        if self._auth_token:
            headers["authorization"] = f"Bearer {self._auth_token}"
        params = cache_bust_params() if self._cache_bust else None

        try:
            async with self._http.get(
                self._location,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    raise SourceError(f"HTTP {resp.status} from {self._location}")
                return await resp.text()
        except SourceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
            raise SourceError(f"Fetch of {self._location} failed: {exc}") from exc

    async def _fetch_file(self) -> str:
        path = _local_path(self._location)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(path.read_text, encoding="utf-8"),
                timeout=self._timeout,
            )
        except (OSError, UnicodeDecodeError, asyncio.TimeoutError) as exc:
            raise SourceError(f"Read of {path} failed: {exc}") from exc


def _local_path(location: str) -> Path:
    if location.startswith("file://"):
        return Path(unquote(urlparse(location).path))
    return Path(location)
