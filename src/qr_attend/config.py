"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .geo import is_valid_latitude, is_valid_longitude
from .location import LOCATION_CONFIGS
from .utils.env_utils import env_str, load_env

STAGES = ("dev", "prod")
LOCATION_SOURCES = ("fixed", "ip")


def _env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    raw = env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    stage: str
    api_url: str
    request_timeout: float = 10.0
    location_tier: str = "high"
    location_source: str = "fixed"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    ip_location_url: Optional[str] = None
    session_file: Path = Path(".qr_attend_session.json")

    @property
    def is_prod(self) -> bool:
        return self.stage == "prod"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the process environment seeded by ``.env``."""
        load_env(env_file or os.getenv("ENV_FILE", ".env"))

        stage = (env_str("APP_STAGE", "dev") or "dev").lower()
        if stage not in STAGES:
            raise ConfigError(f"APP_STAGE must be one of {', '.join(STAGES)}, got {stage!r}")

        prod_url = env_str("API_URL")
        api_url = prod_url if stage == "prod" else env_str("API_URL_DEV", prod_url)
        if not api_url:
            missing = "API_URL" if stage == "prod" else "API_URL_DEV or API_URL"
            raise ConfigError(f"{missing} is not set; add it to your environment or .env file")

        timeout = _env_float("REQUEST_TIMEOUT_SECONDS", 10.0)
        if timeout is None or timeout <= 0:
            raise ConfigError("REQUEST_TIMEOUT_SECONDS must be positive")

        tier = (env_str("LOCATION_TIER", "high") or "high").lower()
        if tier not in LOCATION_CONFIGS:
            raise ConfigError(f"LOCATION_TIER must be one of {', '.join(LOCATION_CONFIGS)}, got {tier!r}")

        source = (env_str("LOCATION_SOURCE", "fixed") or "fixed").lower()
        if source not in LOCATION_SOURCES:
            raise ConfigError(f"LOCATION_SOURCE must be one of {', '.join(LOCATION_SOURCES)}, got {source!r}")

        latitude = _env_float("LOCATION_LATITUDE")
        longitude = _env_float("LOCATION_LONGITUDE")
        if latitude is not None and not is_valid_latitude(latitude):
            raise ConfigError(f"LOCATION_LATITUDE out of range: {latitude}")
        if longitude is not None and not is_valid_longitude(longitude):
            raise ConfigError(f"LOCATION_LONGITUDE out of range: {longitude}")

        return cls(
            stage=stage,
            api_url=api_url.rstrip("/"),
            request_timeout=timeout,
            location_tier=tier,
            location_source=source,
            latitude=latitude,
            longitude=longitude,
            accuracy=_env_float("LOCATION_ACCURACY"),
            ip_location_url=env_str("IP_LOCATION_URL"),
            session_file=Path(env_str("SESSION_FILE", ".qr_attend_session.json")),
        )
