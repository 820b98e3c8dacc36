import pathlib
import sys
from typing import Any, Dict

import pytest

SYS_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = SYS_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

EVENT_CODE = "3f2b8c1e-9d4a-4c7b-a1e2-5f6d7c8b9a0e"


def event_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": 7,
        "name": "Taller de Python",
        "description": "Hands-on session",
        "latitude": "19.4326",
        "longitude": "-99.1332",
        "allowed_radius": 100,
        "start_time": "2025-08-03T14:00:00.000000Z",
        "end_time": "2025-08-03T18:00:00.000000Z",
        "qr_code": EVENT_CODE,
        "active": True,
    }
    payload.update(overrides)
    return payload


def attendance_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": 41,
        "event_id": 7,
        "user_id": 3,
        "user_latitude": "19.4327",
        "user_longitude": "-99.1333",
        "distance_meters": "12.40",
        "verified": True,
        "checked_in_at": "2025-08-03T14:30:21.000000Z",
    }
    payload.update(overrides)
    return payload


CONFIG_KEYS = (
    "APP_STAGE",
    "API_URL",
    "API_URL_DEV",
    "REQUEST_TIMEOUT_SECONDS",
    "LOCATION_TIER",
    "LOCATION_SOURCE",
    "LOCATION_LATITUDE",
    "LOCATION_LONGITUDE",
    "LOCATION_ACCURACY",
    "IP_LOCATION_URL",
    "SESSION_FILE",
    "ENV_FILE",
)


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Run in an empty directory with no app settings in the environment.

    Each key is set then deleted so monkeypatch restores it afterwards,
    including values that ``load_env`` writes during the test.
    """
    monkeypatch.chdir(tmp_path)
    for key in CONFIG_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return tmp_path
