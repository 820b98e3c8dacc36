"""Login, registration, session checks and matricula lookups."""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from .api import ApiResponse, AttendanceApi
from .errors import AttendanceError, ErrorKind, ResponseShapeError, classify_response
from .models import User
from .session import SessionStore

LOGGER = logging.getLogger(__name__)


def _user_and_token(body: Any) -> Tuple[User, str]:
    """Decode ``{user, token}``; both keys are required."""
    if not isinstance(body, dict) or not body.get("user") or not body.get("token"):
        raise ResponseShapeError(details={"expected": "user and token"})
    token = body["token"]
    if not isinstance(token, str):
        raise ResponseShapeError(details={"field": "token"})
    return User.from_payload(body["user"]), token


class AuthService:
    def __init__(
        self,
        api: AttendanceApi,
        session: SessionStore,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._api = api
        self._session = session
        self._logger = logger or LOGGER

    def _accept(self, response: ApiResponse, action: str) -> User:
        if not response.ok:
            error = classify_response(response.status, response.body)
            self._logger.warning("%s failed with %s (status %s)", action, error.kind.value, response.status)
            raise error
        try:
            user, token = _user_and_token(response.body)
        except ResponseShapeError:
            self._logger.error("%s response is incomplete: %s", action, response.body)
            raise
        self._session.set_credentials(token, user)
        self._logger.info("%s succeeded for %s", action, user.email)
        return user

    async def login(self, email: str, password: str) -> User:
        email = email.strip().lower()
        self._logger.debug("Logging in as %s", email)
        response = await self._api.post("/login", {"email": email, "password": password})
        return self._accept(response, "Login")

    async def register(self, name: str, employee_id: str, email: str, password: str) -> User:
        payload = {
            "name": name.strip(),
            "employee_id": employee_id.strip(),
            "email": email.strip().lower(),
            "password": password,
        }
        self._logger.debug("Registering %s", {**payload, "password": "***"})
        response = await self._api.post("/register", payload)
        return self._accept(response, "Registration")

    async def check_status(self) -> User:
        """Refresh the token and user; an expired session is cleared."""
        response = await self._api.get("/check-status")
        try:
            return self._accept(response, "Session check")
        except AttendanceError as exc:
            if exc.kind is ErrorKind.UNAUTHORIZED:
                self._session.clear()
            raise

    def logout(self) -> None:
        email = self._session.user.email if self._session.user else None
        self._session.clear()
        self._logger.info("Logged out %s", email or "anonymous session")

    async def validate_matricula(self, matricula: str) -> Optional[bool]:
        """Return True/False when the server answers, None when it cannot tell.

        Answers, including "not found", are cached on the session store.
        """
        normalized = matricula.strip().lower()
        cached = self._session.cached_matricula(normalized)
        if cached is not None:
            self._logger.debug("Matricula %s served from cache: %s", normalized, cached)
            return cached

        try:
            response = await self._api.post("/validate-matricula", {"matricula": normalized})
        except AttendanceError as exc:
            self._logger.warning("Matricula lookup failed: %s", exc.message)
            return None

        if response.status == 404:
            result = False
        elif not response.ok:
            self._logger.warning("Matricula lookup returned status %s", response.status)
            return None
        else:
            result = self._read_flag(response.body)
            if result is None:
                self._logger.warning("Unexpected matricula response: %s", response.body)
                return None

        self._session.cache_matricula(normalized, result)
        self._logger.debug("Matricula %s cached: %s", normalized, result)
        return result

    @staticmethod
    def _read_flag(body: Any) -> Optional[bool]:
        if isinstance(body, bool):
            return body
        if isinstance(body, dict):
            for key in ("success", "exists"):
                if isinstance(body.get(key), bool):
                    return body[key]
        return None
