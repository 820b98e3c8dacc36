from pathlib import Path

import pytest

from qr_attend.errors import ConfigError
from qr_attend.config import Settings
from qr_attend.utils.env_utils import env_flag, load_env


def test_env_file_seeds_settings(clean_env, monkeypatch):
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "# local overrides",
                'API_URL_DEV="http://localhost:8000/api/"',
                "LOCATION_TIER=balanced",
                "LOCATION_LATITUDE=19.4326",
                "LOCATION_LONGITUDE=-99.1332",
                "REQUEST_TIMEOUT_SECONDS=7.5",
            ]
        ),
        encoding="utf-8",
    )

    settings = Settings.from_env()

    assert settings.stage == "dev"
    assert settings.api_url == "http://localhost:8000/api"
    assert settings.location_tier == "balanced"
    assert (settings.latitude, settings.longitude) == (19.4326, -99.1332)
    assert settings.request_timeout == 7.5
    assert settings.session_file == Path(".qr_attend_session.json")


def test_existing_environment_wins_over_env_file(clean_env, monkeypatch):
    (clean_env / ".env").write_text("API_URL=http://from-file\n", encoding="utf-8")
    monkeypatch.setenv("API_URL", "http://from-env")

    load_env()

    assert Settings.from_env().api_url == "http://from-env"


def test_prod_stage_uses_prod_url_only(clean_env, monkeypatch):
    monkeypatch.setenv("APP_STAGE", "prod")
    monkeypatch.setenv("API_URL_DEV", "http://dev")

    with pytest.raises(ConfigError, match="API_URL"):
        Settings.from_env()

    monkeypatch.setenv("API_URL", "https://attend.example.com/api")
    settings = Settings.from_env()
    assert settings.is_prod
    assert settings.api_url == "https://attend.example.com/api"


def test_dev_stage_falls_back_to_prod_url(clean_env, monkeypatch):
    monkeypatch.setenv("API_URL", "https://attend.example.com/api")

    assert Settings.from_env().api_url == "https://attend.example.com/api"


@pytest.mark.parametrize(
    "name,value",
    [
        ("REQUEST_TIMEOUT_SECONDS", "soon"),
        ("REQUEST_TIMEOUT_SECONDS", "0"),
        ("LOCATION_LATITUDE", "north"),
        ("LOCATION_LATITUDE", "95"),
        ("LOCATION_TIER", "ultra"),
        ("LOCATION_SOURCE", "gps"),
        ("APP_STAGE", "staging"),
    ],
)
def test_malformed_values_name_the_variable(clean_env, monkeypatch, name, value):
    monkeypatch.setenv("API_URL", "http://localhost")
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError, match=name):
        Settings.from_env()


def test_explicit_env_file_argument(clean_env):
    custom = clean_env / "custom.env"
    custom.write_text("API_URL=http://custom\nSESSION_FILE=state/session.json\n", encoding="utf-8")

    settings = Settings.from_env(str(custom))

    assert settings.api_url == "http://custom"
    assert settings.session_file == Path("state/session.json")


@pytest.mark.parametrize("raw,expected", [("1", True), ("true", True), ("On", True), ("0", False), ("no", False)])
def test_env_flag(monkeypatch, raw, expected):
    monkeypatch.setenv("QR_ATTEND_TEST_FLAG", raw)
    assert env_flag("QR_ATTEND_TEST_FLAG") is expected


def test_env_flag_default(monkeypatch):
    monkeypatch.delenv("QR_ATTEND_TEST_FLAG", raising=False)
    assert env_flag("QR_ATTEND_TEST_FLAG", default=True) is True
