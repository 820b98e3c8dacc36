"""Session state: credentials, the signed-in user and short-lived caches.

A :class:`SessionStore` is created once at startup and handed to whatever
needs the bearer token. ``clear()`` is the logout path.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from .errors import ResponseShapeError
from .models import User

LOGGER = logging.getLogger(__name__)

MATRICULA_CACHE_TTL_SECONDS = 5 * 60


class TokenStore(Protocol):
    """Opaque credential storage."""

    def load(self) -> Dict[str, Any]:
        """Return the persisted session payload (empty when none)."""

    def save(self, data: Dict[str, Any]) -> None:
        """Persist the session payload."""

    def delete(self) -> None:
        """Forget any persisted session."""


class MemoryTokenStore:
    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(data or {})

    def load(self) -> Dict[str, Any]:
        return dict(self._data)

    def save(self, data: Dict[str, Any]) -> None:
        self._data = dict(data)

    def delete(self) -> None:
        self._data = {}


class FileTokenStore:
    """JSON file persistence, readable by the owner only."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Owner-only from creation; chmod also tightens a pre-existing file.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            LOGGER.debug("Could not restrict permissions on %s", self.path)

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


@dataclass
class _CacheEntry:
    result: bool
    timestamp: float


class SessionStore:
    """Token, current user and the matricula lookup cache for one app run."""

    def __init__(
        self,
        backend: Optional[TokenStore] = None,
        *,
        clock: Callable[[], float] = time.time,
        cache_ttl: float = MATRICULA_CACHE_TTL_SECONDS,
    ) -> None:
        self._backend = backend or MemoryTokenStore()
        self._clock = clock
        self._cache_ttl = cache_ttl
        self._matriculas: Dict[str, _CacheEntry] = {}
        self.token: Optional[str] = None
        self.user: Optional[User] = None
        self._restore()

    def _restore(self) -> None:
        data = self._backend.load()
        token = data.get("token")
        if isinstance(token, str) and token:
            self.token = token
        user = data.get("user")
        if isinstance(user, dict):
            try:
                self.user = User.from_payload(user)
            except ResponseShapeError:
                LOGGER.debug("Discarding malformed persisted user")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def set_credentials(self, token: str, user: User) -> None:
        self.token = token
        self.user = user
        self._backend.save({"token": token, "user": user.to_payload()})

    def clear(self) -> None:
        """Drop everything held for the signed-in user."""
        self.token = None
        self.user = None
        self._matriculas.clear()
        self._backend.delete()

    # -- matricula cache -------------------------------------------------

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._matriculas.items() if now - entry.timestamp > self._cache_ttl]
        for key in expired:
            del self._matriculas[key]
            LOGGER.debug("Expired matricula cache entry removed: %s", key)

    def cached_matricula(self, matricula: str) -> Optional[bool]:
        self._purge_expired()
        entry = self._matriculas.get(matricula)
        return entry.result if entry else None

    def cache_matricula(self, matricula: str, result: bool) -> None:
        self._matriculas[matricula] = _CacheEntry(result=result, timestamp=self._clock())
