"""Change detection for the latest-reading poll.

The latest-reading source is re-fetched far more often than it changes.
:class:`ChangeDetector` keeps the digest of the last payload seen so that an
identical payload is never re-parsed or re-rendered.
"""

from __future__ import annotations

import hashlib
from typing import Optional


class ChangeDetector:
    """Remembers the digest of the last payload passed to :meth:`has_changed`."""

    def __init__(self) -> None:
        self._last_digest: Optional[str] = None

    @property
    def last_digest(self) -> Optional[str]:
        """Digest of the most recent payload, or ``None`` before the first one."""
        return self._last_digest

    def has_changed(self, raw: str | bytes) -> bool:
        """Return ``True`` if *raw* differs from the previous payload.

        The stored digest is replaced with the digest of *raw* whether or
        not it changed.
        """
        digest = fingerprint(raw)
        changed = digest != self._last_digest
        self._last_digest = digest
        return changed


def fingerprint(raw: str | bytes) -> str:
    """Stable BLAKE2b digest of a payload."""
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    return hashlib.blake2b(data, digest_size=16).hexdigest()
