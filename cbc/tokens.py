"""
Opaque tokens for project keys and survey links.

The study service never puts workbook or survey ids in the clear into a
link; it asks a ``TokenResolver`` to wrap a small JSON-able payload into an
opaque string and to unwrap it again.  Any scheme behind the protocol works
(an AEAD cipher, a signed blob, a database lookup).

``TokenRegistry`` is the bundled implementation: random URL-safe handles
mapped to their payloads, optionally persisted to a JSON file so links keep
working across restarts.  It is safe to share between request threads.
"""

from __future__ import annotations

import json
import secrets
import threading
from pathlib import Path
from typing import Any, Protocol

from cbc.errors import InvalidTokenError


class TokenResolver(Protocol):
    def encrypt(self, payload: dict[str, Any]) -> str:
        ...

    def decrypt(self, token: str) -> dict[str, Any]:
        """Return the payload for *token*; raise ``InvalidTokenError`` if unknown."""


class TokenRegistry:
    """Random-handle token resolver with optional JSON persistence."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._payloads: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            with self.path.open() as f:
                self._payloads = json.load(f)

    def encrypt(self, payload: dict[str, Any]) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._payloads[token] = dict(payload)
            self._save()
        return token

    def decrypt(self, token: str) -> dict[str, Any]:
        if not token:
            raise InvalidTokenError("Missing token")
        with self._lock:
            payload = self._payloads.get(token)
        if payload is None:
            raise InvalidTokenError("Invalid or expired token")
        return dict(payload)

    def _save(self) -> None:
        # Caller holds the lock
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._payloads, indent=2), encoding="utf-8")
        tmp.replace(self.path)
