"""Scanned QR payload sanitising and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import QRCodeError

UUID4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize(raw: str) -> str:
    """Trim the payload and drop any internal whitespace.

    Case is preserved; the server compares tokens as scanned.
    """
    return _WHITESPACE_RUN.sub("", (raw or "").strip())


def is_valid(code: str) -> bool:
    """Return True when ``code`` is a version-4 UUID (any case)."""
    return bool(UUID4_PATTERN.match(sanitize(code)))


@dataclass(frozen=True)
class ScannedCode:
    """Value object for a QR payload that passed local validation."""

    raw: str
    token: str

    @classmethod
    def parse(cls, raw: str) -> "ScannedCode":
        token = sanitize(raw)
        if not UUID4_PATTERN.match(token):
            raise QRCodeError(details={"raw": raw})
        return cls(raw=raw, token=token)

    def __str__(self) -> str:
        return self.token
