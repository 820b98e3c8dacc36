import json

import pytest

from conftest import EVENT_CODE, attendance_payload, event_payload
from qr_attend import cli
from qr_attend.api import ApiResponse, AttendanceApi


@pytest.fixture
def cli_env(clean_env, monkeypatch):
    monkeypatch.setenv("API_URL", "http://127.0.0.1:9/api")
    monkeypatch.setenv("COLUMNS", "200")
    return clean_env


def _save_session(path, token="tok-1"):
    user = {"id": 3, "name": "Ana", "email": "ana@example.com", "role": "user"}
    path.write_text(json.dumps({"token": token, "user": user}), encoding="utf-8")


def test_missing_api_url_is_a_config_error(clean_env):
    assert cli.main(["logout"]) == 2


def test_logout_removes_saved_session(cli_env):
    session_file = cli_env / ".qr_attend_session.json"
    _save_session(session_file)

    assert cli.main(["logout"]) == 0
    assert not session_file.exists()


def test_whoami_without_session_fails(cli_env):
    assert cli.main(["whoami"]) == 1


def test_scan_with_invalid_code_fails_before_any_request(cli_env, monkeypatch, capsys):
    async def unexpected(self, payload):
        raise AssertionError("no request expected")

    monkeypatch.setattr(AttendanceApi, "post_attendance", unexpected)

    assert cli.main(["scan", "hello", "--lat", "19.43", "--lon", "-99.13"]) == 1
    assert "not a valid event code" in capsys.readouterr().out


def test_scan_without_location_is_a_config_error(cli_env):
    assert cli.main(["scan", EVENT_CODE]) == 2


def test_scan_success_renders_server_outcome(cli_env, monkeypatch, capsys):
    _save_session(cli_env / ".qr_attend_session.json")
    sent = []

    async def fake_post(self, payload):
        sent.append((self._store.token, payload))
        body = {
            "success": True,
            "attendance": attendance_payload(event=event_payload()),
            "distance": 12.4,
        }
        return ApiResponse(status=201, body=body)

    monkeypatch.setattr(AttendanceApi, "post_attendance", fake_post)

    code = cli.main(["scan", f" {EVENT_CODE} ", "--lat", "19.4327", "--lon", "-99.1333", "--tier", "low"])

    assert code == 0
    assert sent == [("tok-1", {"qr_code": EVENT_CODE, "user_latitude": 19.4327, "user_longitude": -99.1333})]
    out = capsys.readouterr().out
    assert "Taller de Python" in out
    assert "12.4 m" in out


def test_scan_unauthorized_clears_session(cli_env, monkeypatch, capsys):
    session_file = cli_env / ".qr_attend_session.json"
    _save_session(session_file)

    async def fake_post(self, payload):
        return ApiResponse(status=401, body={"message": "Unauthenticated."})

    monkeypatch.setattr(AttendanceApi, "post_attendance", fake_post)

    assert cli.main(["scan", EVENT_CODE, "--lat", "0", "--lon", "0"]) == 1
    assert "qr-attend login" in capsys.readouterr().out
    assert not session_file.exists()


def test_history_verified_flag_parsing():
    args = cli.build_parser().parse_args(["history", "--mine", "--verified", "no", "--event", "Taller"])
    assert args.verified is False
    assert args.mine is True

    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["history", "--verified", "maybe"])
