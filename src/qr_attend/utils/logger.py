"""
src/qr_attend/utils/logger.py
Structured logging helpers for QR Attend.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import sys
from typing import Any, Dict, Optional

__all__ = [
    "logger",
    "step",
    "progress",
    "success",
    "get_logger",
    "mask_secret",
    "spinner",
    "set_log_profile",
]

BASE_LOGGER_NAME = "qr_attend"

# ---------------------------------------------------------------------------
# Palette and helpers

_PALETTE: Dict[str, str] = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bold": "\033[1m",
    "blue": "\033[34m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "cyan": "\033[36m",
    "magenta": "\033[35m",
}

LOG_FILE = os.getenv("LOG_FILE")
NO_COLOR = os.getenv("NO_COLOR") is not None
LOG_LEVEL_OVERRIDE = os.getenv("LOG_LEVEL")


def _default_profile() -> str:
    explicit = os.getenv("LOG_PROFILE")
    if explicit:
        return explicit.lower()
    # Production builds stay silent unless asked otherwise.
    if (os.getenv("APP_STAGE") or "dev").lower() == "prod":
        return "quiet"
    return "user"


LOG_PROFILE = _default_profile()


def _apply_color(text: str, *styles: str) -> str:
    if NO_COLOR or not styles:
        return text
    colors = "".join(_PALETTE.get(style, "") for style in styles)
    return f"{colors}{text}{_PALETTE['reset']}"


def mask_secret(value: Optional[str], visible: int = 12) -> str:
    """Shorten a credential for display, e.g. ``eyJhbGciOiJI…``."""
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "…"
    return f"{value[:visible]}…"


# ---------------------------------------------------------------------------
# Formatter and adapter


class LayeredFormatter(logging.Formatter):
    """Formatter that decorates output based on the record.layer attribute."""

    LAYER_MAPPINGS: Dict[str, Dict[str, Any]] = {
        "step": {"icon": "▶", "style": ("blue", "bold")},
        "progress": {"icon": "…", "style": ("cyan",)},
        "success": {"icon": "✓", "style": ("green", "bold")},
        "warning": {"icon": "!", "style": ("yellow", "bold")},
        "error": {"icon": "✗", "style": ("red", "bold")},
        "debug": {"icon": "·", "style": ("magenta",)},
        "user": {"icon": "•", "style": ()},
    }

    def format(self, record: logging.LogRecord) -> str:
        layer = getattr(record, "layer", None)
        if layer is None:
            layer = "debug" if record.levelno <= logging.DEBUG else "user"
        mapping = self.LAYER_MAPPINGS.get(layer, self.LAYER_MAPPINGS["user"])
        message = super().format(record)
        if layer == "debug":
            return f"{_apply_color('[debug]', 'dim')} {message}"
        prefix = _apply_color(mapping["icon"], *mapping["style"])
        return f"{prefix} {message}"


class LayeredAdapter(logging.LoggerAdapter):
    """Logger adapter that injects a 'layer' extra value."""

    def __init__(self, logger: logging.Logger, default_layer: str = "user"):
        super().__init__(logger, {"layer": default_layer})

    def log(self, level: int, msg: Any, *args, layer: Optional[str] = None, **kwargs) -> None:
        if not self.isEnabledFor(level):
            return
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("layer", layer or self.extra.get("layer", "user"))
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "debug")
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "warning")
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "error")
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "error")
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, **kwargs)


# ---------------------------------------------------------------------------
# Configuration


def _console_level(profile: str) -> int:
    level_map = {
        "quiet": logging.WARNING,
        "debug": logging.DEBUG,
        "verbose": logging.DEBUG,
        "user": logging.INFO,
    }
    level = level_map.get(profile, logging.INFO)
    if LOG_LEVEL_OVERRIDE:
        override = getattr(logging, LOG_LEVEL_OVERRIDE.upper(), None)
        if isinstance(override, int):
            level = override
    return level


def _configure_base_logger() -> LayeredAdapter:
    base_logger = logging.getLogger(BASE_LOGGER_NAME)
    if base_logger.handlers:
        return LayeredAdapter(base_logger)

    base_logger.setLevel(logging.DEBUG)
    base_logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_console_level(LOG_PROFILE))
    console_handler.setFormatter(LayeredFormatter("%(message)s"))
    base_logger.addHandler(console_handler)

    if LOG_FILE:
        try:
            file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
        except OSError as exc:
            base_logger.warning("Failed to configure logfile '%s': %s", LOG_FILE, exc)
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            file_handler.setLevel(logging.DEBUG)
            base_logger.addHandler(file_handler)

    return LayeredAdapter(base_logger)


logger = _configure_base_logger()


# ---------------------------------------------------------------------------
# Public helpers


def step(message: str) -> None:
    """Log a major step in the workflow."""
    logger.log(logging.INFO, message, layer="step")


def progress(message: str) -> None:
    """Log a short-lived progress update."""
    logger.log(logging.INFO, message, layer="progress")


def success(message: str) -> None:
    """Log successful completion of an action."""
    logger.log(logging.INFO, message, layer="success")


def get_logger(name: str, *, layer: str = "user") -> LayeredAdapter:
    """Return a child logger using the layered formatting."""
    child = logging.getLogger(f"{BASE_LOGGER_NAME}.{name}")
    return LayeredAdapter(child, default_layer=layer)


# ---------------------------------------------------------------------------
# Spinner support


class _Spinner:
    FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self, message: str, *, enabled: Optional[bool] = None):
        self.message = message
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._status: Optional[str] = None
        self._failure_logged = False
        self._enabled = sys.stdout.isatty() if enabled is None else enabled

    async def __aenter__(self) -> "_Spinner":
        self._running = True
        if self._enabled:
            self._task = asyncio.create_task(self._animate())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._running = False
        if self._task:
            await self._task
            _clear_current_line()

        if exc_type is not None:
            self.fail(str(exc) if exc else None)
            return False

        if self._status == "failure":
            if not self._failure_logged:
                logger.error(self.message)
        else:
            success(self.message)
        return False

    async def _animate(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            if not self._running:
                break
            sys.stdout.write(f"\r{_apply_color(frame, 'cyan')} {self.message}")
            sys.stdout.flush()
            await asyncio.sleep(0.12)

    def succeed(self) -> None:
        self._status = "success"

    def fail(self, reason: Optional[str] = None) -> None:
        self._status = "failure"
        if reason:
            logger.error(f"{self.message} – {reason}")
            self._failure_logged = True

    def update(self, message: str) -> None:
        self.message = message


def _clear_current_line() -> None:
    sys.stdout.write("\r")
    sys.stdout.write(" " * 120)
    sys.stdout.write("\r")
    sys.stdout.flush()


def spinner(message: str, *, enabled: Optional[bool] = None) -> _Spinner:
    """Return an async spinner context manager."""
    return _Spinner(message, enabled=enabled)


def set_log_profile(profile: str) -> None:
    """Adjust console logging verbosity at runtime."""
    global LOG_PROFILE
    profile = (profile or "user").lower()
    level = _console_level(profile)

    base_logger = logging.getLogger(BASE_LOGGER_NAME)
    base_logger.setLevel(logging.DEBUG)
    for handler in base_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)

    LOG_PROFILE = profile
    os.environ["LOG_PROFILE"] = profile
