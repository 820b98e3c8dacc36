import asyncio
import json
import os
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from qr_attend.api import AttendanceApi
from qr_attend.auth import AuthService
from qr_attend.errors import AttendanceError, ErrorKind, ResponseShapeError
from qr_attend.models import User
from qr_attend.session import FileTokenStore, MemoryTokenStore, SessionStore

USER = {"id": 3, "name": "Ana López", "email": "ana@example.com", "role": "user", "employee_id": "a01"}


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_file_token_store_persists_session(tmp_path: Path):
    path = tmp_path / "session.json"
    store = SessionStore(FileTokenStore(path))
    store.set_credentials("tok", User.from_payload(USER))

    restored = SessionStore(FileTokenStore(path))

    assert restored.is_authenticated
    assert restored.user.email == "ana@example.com"
    assert json.loads(path.read_text(encoding="utf-8"))["token"] == "tok"
    if os.name == "posix":
        assert path.stat().st_mode & 0o777 == 0o600


@pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
def test_file_token_store_creates_file_owner_only(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    chmods = []
    monkeypatch.setattr("qr_attend.session.os.chmod", lambda path, mode: chmods.append(mode))
    path = tmp_path / "session.json"

    FileTokenStore(path).save({"token": "tok"})

    assert path.stat().st_mode & 0o777 == 0o600
    assert chmods == [0o600]


def test_corrupt_session_file_is_ignored(tmp_path: Path):
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")

    store = SessionStore(FileTokenStore(path))

    assert not store.is_authenticated


def test_malformed_persisted_user_is_dropped():
    store = SessionStore(MemoryTokenStore({"token": "tok", "user": {"id": 1}}))

    assert store.token == "tok"
    assert store.user is None


def test_clear_wipes_credentials_and_cache(tmp_path: Path):
    path = tmp_path / "session.json"
    store = SessionStore(FileTokenStore(path))
    store.set_credentials("tok", User.from_payload(USER))
    store.cache_matricula("a01", True)

    store.clear()

    assert store.token is None and store.user is None
    assert store.cached_matricula("a01") is None
    assert not path.exists()


def test_matricula_cache_expires_after_ttl():
    clock = Clock()
    store = SessionStore(clock=clock)
    store.cache_matricula("a01", False)

    clock.now = 299
    assert store.cached_matricula("a01") is False
    clock.now = 301
    assert store.cached_matricula("a01") is None


def _auth_app(calls):
    async def login(request):
        body = await request.json()
        calls.append(("login", body))
        if body["password"] != "secret":
            return web.json_response({"message": "Credenciales incorrectas"}, status=401)
        return web.json_response({"user": USER, "token": "tok-1"})

    async def register(request):
        body = await request.json()
        calls.append(("register", body))
        if body["email"] == "taken@example.com":
            return web.json_response(
                {"message": "The email has already been taken.", "errors": {"email": ["taken"]}}, status=422
            )
        return web.json_response({"user": {**USER, "email": body["email"]}})

    async def check_status(request):
        calls.append(("check-status", request.headers.get("Authorization")))
        if request.headers.get("Authorization") != "Bearer tok-1":
            return web.json_response({"message": "Unauthenticated."}, status=401)
        return web.json_response({"user": USER, "token": "tok-1"})

    async def matricula(request):
        body = await request.json()
        calls.append(("matricula", body))
        value = body["matricula"]
        if value == "a01":
            return web.json_response({"success": True})
        if value == "b02":
            return web.json_response({"exists": False})
        if value == "gone":
            return web.json_response({"message": "not found"}, status=404)
        if value == "odd":
            return web.json_response({"data": 1})
        return web.json_response({"message": "boom"}, status=500)

    app = web.Application()
    app.router.add_post("/api/login", login)
    app.router.add_post("/api/register", register)
    app.router.add_get("/api/check-status", check_status)
    app.router.add_post("/api/validate-matricula", matricula)
    return app


def _run(scenario_fn, session=None):
    calls = []
    session = session or SessionStore()

    async def scenario():
        async with TestServer(_auth_app(calls)) as server:
            async with AttendanceApi(str(server.make_url("/api")), session) as api:
                return await scenario_fn(AuthService(api, session))

    return asyncio.run(scenario()), calls, session


def test_login_lowercases_email_and_stores_token():
    user, calls, session = _run(lambda auth: auth.login("  Ana@Example.COM ", "secret"))

    assert user.name == "Ana López"
    assert calls == [("login", {"email": "ana@example.com", "password": "secret"})]
    assert session.token == "tok-1"


def test_login_failure_raises_unauthorized():
    with pytest.raises(AttendanceError) as info:
        _run(lambda auth: auth.login("ana@example.com", "wrong"))

    assert info.value.kind is ErrorKind.UNAUTHORIZED


def test_register_trims_fields():
    async def scenario(auth):
        with pytest.raises(ResponseShapeError):
            await auth.register("  Ana López ", " a01 ", " NEW@example.com ", "pw")

    _, calls, session = _run(scenario)

    assert calls == [
        ("register", {"name": "Ana López", "employee_id": "a01", "email": "new@example.com", "password": "pw"})
    ]
    # The response carried no token, so nothing was stored.
    assert not session.is_authenticated


def test_register_validation_error_keeps_field_errors():
    async def scenario(auth):
        await auth.register("Ana", "a01", "taken@example.com", "pw")

    with pytest.raises(AttendanceError) as info:
        _run(scenario)

    assert info.value.kind is ErrorKind.VALIDATION
    assert info.value.field_errors == {"email": ["taken"]}


def test_check_status_with_expired_token_clears_session():
    session = SessionStore(MemoryTokenStore({"token": "stale", "user": USER}))

    async def scenario(auth):
        await auth.check_status()

    with pytest.raises(AttendanceError) as info:
        _run(scenario, session=session)

    assert info.value.kind is ErrorKind.UNAUTHORIZED
    assert not session.is_authenticated
    assert session.user is None


def test_check_status_refreshes_user():
    session = SessionStore(MemoryTokenStore({"token": "tok-1"}))

    user, calls, _ = _run(lambda auth: auth.check_status(), session=session)

    assert user.email == "ana@example.com"
    assert calls == [("check-status", "Bearer tok-1")]
    assert session.user == user


def test_validate_matricula_reads_flags_and_caches():
    async def scenario(auth):
        return [
            await auth.validate_matricula(" A01 "),
            await auth.validate_matricula("a01"),
            await auth.validate_matricula("b02"),
            await auth.validate_matricula("gone"),
            await auth.validate_matricula("gone"),
            await auth.validate_matricula("odd"),
            await auth.validate_matricula("boom"),
        ]

    results, calls, session = _run(scenario)

    assert results == [True, True, False, False, False, None, None]
    assert [body["matricula"] for _, body in calls] == ["a01", "b02", "gone", "odd", "boom"]
    assert session.cached_matricula("gone") is False
    assert session.cached_matricula("odd") is None


def test_logout_clears_session():
    session = SessionStore(MemoryTokenStore({"token": "tok-1", "user": USER}))
    auth = AuthService(AttendanceApi("http://localhost", session), session)

    auth.logout()

    assert not session.is_authenticated
