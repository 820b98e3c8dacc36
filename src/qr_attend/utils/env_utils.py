import os
from typing import Optional


def load_env(path: str = ".env") -> None:
    """Minimal .env loader to populate env defaults (no overrides)."""
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            k, v = line.split('=', 1)
            k = k.strip(); v = v.strip().strip('"').strip("'")
            if k and (k not in os.environ):
                os.environ[k] = v


def env_flag(name: str, default: bool = False) -> bool:
    """Read a 1/0, true/false style switch from the environment."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a stripped environment value, treating blanks as unset."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()
