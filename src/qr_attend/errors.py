"""Error taxonomy for the attendance flow and server-response classification.

Every failure the client can surface is an :class:`AttendanceError` tagged
with one :class:`ErrorKind`. Each kind has exactly one user-facing message
and one :class:`Remediation`, so callers can pick a recovery action
(rescan, open settings, retry, wait, log in again) without parsing text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ErrorKind(str, Enum):
    INVALID_QR = "invalid_qr"
    LOCATION_PERMISSION = "location_permission"
    LOCATION_TIMEOUT = "location_timeout"
    LOCATION_UNAVAILABLE = "location_unavailable"
    COORDINATE_OUT_OF_BOUNDS = "coordinate_out_of_bounds"
    VALIDATION = "validation"
    ALREADY_REGISTERED = "already_registered"
    EVENT_INACTIVE = "event_inactive"
    EVENT_NOT_STARTED = "event_not_started"
    OUT_OF_RANGE = "out_of_range"
    UNAUTHORIZED = "unauthorized"
    NETWORK = "network"
    UNKNOWN = "unknown"


class Remediation(str, Enum):
    RESCAN = "rescan"
    OPEN_SETTINGS = "open_settings"
    RETRY = "retry"
    WAIT = "wait"
    MOVE_CLOSER = "move_closer"
    FIX_INPUT = "fix_input"
    REAUTHENTICATE = "reauthenticate"
    CONTACT_ORGANIZER = "contact_organizer"
    NONE = "none"


ERROR_MESSAGES: Dict[ErrorKind, Tuple[str, Remediation]] = {
    ErrorKind.INVALID_QR: (
        "This QR code is not a valid event code. Scan the event's attendance QR.",
        Remediation.RESCAN,
    ),
    ErrorKind.LOCATION_PERMISSION: (
        "Location permission is required to register attendance. Enable it in settings.",
        Remediation.OPEN_SETTINGS,
    ),
    ErrorKind.LOCATION_TIMEOUT: (
        "Timed out while getting your location. Try again.",
        Remediation.RETRY,
    ),
    ErrorKind.LOCATION_UNAVAILABLE: (
        "Your location is not available right now.",
        Remediation.WAIT,
    ),
    ErrorKind.COORDINATE_OUT_OF_BOUNDS: (
        "The captured location is invalid. Refresh your location and try again.",
        Remediation.RETRY,
    ),
    ErrorKind.VALIDATION: (
        "The server rejected the attendance data.",
        Remediation.FIX_INPUT,
    ),
    ErrorKind.ALREADY_REGISTERED: (
        "Your attendance for this event is already registered.",
        Remediation.NONE,
    ),
    ErrorKind.EVENT_INACTIVE: (
        "This event is not accepting attendance.",
        Remediation.CONTACT_ORGANIZER,
    ),
    ErrorKind.EVENT_NOT_STARTED: (
        "This event has not started yet.",
        Remediation.WAIT,
    ),
    ErrorKind.OUT_OF_RANGE: (
        "You are outside the allowed area for this event. Move closer and try again.",
        Remediation.MOVE_CLOSER,
    ),
    ErrorKind.UNAUTHORIZED: (
        "Your session has expired. Log in again.",
        Remediation.REAUTHENTICATE,
    ),
    ErrorKind.NETWORK: (
        "Could not reach the attendance server. Check your connection and retry.",
        Remediation.RETRY,
    ),
    ErrorKind.UNKNOWN: (
        "Unexpected response from the attendance server.",
        Remediation.RETRY,
    ),
}

# Location failures share taxonomy kinds but keep their own wording, since
# "services disabled" and "unavailable" call for different remediation.
LOCATION_REASONS: Dict[str, Tuple[ErrorKind, str, Remediation]] = {
    "permission_denied": (
        ErrorKind.LOCATION_PERMISSION,
        "Location permission was denied. Enable it in settings to register attendance.",
        Remediation.OPEN_SETTINGS,
    ),
    "timeout": (
        ErrorKind.LOCATION_TIMEOUT,
        "Timed out while getting your location. Try again.",
        Remediation.RETRY,
    ),
    "services_disabled": (
        ErrorKind.LOCATION_UNAVAILABLE,
        "Location services are disabled. Turn them on in settings.",
        Remediation.OPEN_SETTINGS,
    ),
    "unavailable": (
        ErrorKind.LOCATION_UNAVAILABLE,
        "Your location is not available right now. Wait a moment and retry.",
        Remediation.WAIT,
    ),
}


class AttendanceError(Exception):
    """Base error carrying a taxonomy kind and a remediation hint."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        kind: Optional[ErrorKind] = None,
        remediation: Optional[Remediation] = None,
        field_errors: Optional[Mapping[str, List[str]]] = None,
        status: Optional[int] = None,
        details: Any = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        default_message, default_remediation = ERROR_MESSAGES[self.kind]
        self.message = message or default_message
        self.remediation = remediation or default_remediation
        self.field_errors: Dict[str, List[str]] = dict(field_errors or {})
        self.status = status
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value!r}, message={self.message!r})"


class QRCodeError(AttendanceError):
    kind = ErrorKind.INVALID_QR


class CoordinateError(AttendanceError):
    kind = ErrorKind.COORDINATE_OUT_OF_BOUNDS


class TransportError(AttendanceError):
    kind = ErrorKind.NETWORK


class ResponseShapeError(AttendanceError):
    kind = ErrorKind.UNKNOWN


class LocationError(AttendanceError):
    """Location acquisition failure with a distinct ``reason``."""

    def __init__(self, reason: str, message: Optional[str] = None, *, details: Any = None) -> None:
        if reason not in LOCATION_REASONS:
            raise ValueError(f"Unknown location failure reason: {reason}")
        kind, default_message, remediation = LOCATION_REASONS[reason]
        self.reason = reason
        super().__init__(message or default_message, kind=kind, remediation=remediation, details=details)


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


# ---------------------------------------------------------------------------
# Server response classification

STATUS_KINDS: Dict[int, ErrorKind] = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.EVENT_INACTIVE,
    404: ErrorKind.INVALID_QR,
    409: ErrorKind.ALREADY_REGISTERED,
    422: ErrorKind.VALIDATION,
    425: ErrorKind.EVENT_NOT_STARTED,
}

_OUT_OF_RANGE_HINTS = ("out of range", "outside", "radius", "too far", "distance", "fuera", "rango", "distancia")
_NOT_STARTED_HINTS = ("not started", "not yet", "has not begun", "no ha comenzado", "no ha iniciado", "aún no")
_ALREADY_HINTS = ("already registered", "already checked", "ya registr", "ya fue registrada")
_FIELD_KEYS = ("qr_code", "user_latitude", "user_longitude")


def _message_of(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def _field_errors_of(body: Any) -> Dict[str, List[str]]:
    if not isinstance(body, dict) or not isinstance(body.get("errors"), dict):
        return {}
    result: Dict[str, List[str]] = {}
    for key, value in body["errors"].items():
        if isinstance(value, list):
            result[str(key)] = [str(item) for item in value]
        elif isinstance(value, str):
            result[str(key)] = [value]
    return result


def _explicit_kind(body: Any) -> Optional[ErrorKind]:
    if not isinstance(body, dict):
        return None
    for key in ("error_code", "code", "error"):
        value = body.get(key)
        if isinstance(value, str):
            try:
                return ErrorKind(value.strip().lower())
            except ValueError:
                continue
    return None


def _hinted_kind(message: Optional[str]) -> Optional[ErrorKind]:
    if not message:
        return None
    lowered = message.lower()
    if any(hint in lowered for hint in _NOT_STARTED_HINTS):
        return ErrorKind.EVENT_NOT_STARTED
    if any(hint in lowered for hint in _ALREADY_HINTS):
        return ErrorKind.ALREADY_REGISTERED
    if any(hint in lowered for hint in _OUT_OF_RANGE_HINTS):
        return ErrorKind.OUT_OF_RANGE
    return None


def classify_response(status: int, body: Any) -> AttendanceError:
    """Translate a non-successful server response into one error kind.

    Precedence: an explicit ``error_code``/``code`` naming a kind, then
    the status table, with 400/403/422 refined by the message wording
    (out of range, not started). Server errors map to ``network``;
    anything unrecognised maps to ``unknown``.
    """
    message = _message_of(body)
    field_errors = _field_errors_of(body)

    kind = _explicit_kind(body)
    if kind is None:
        if status >= 500:
            kind = ErrorKind.NETWORK
        else:
            kind = STATUS_KINDS.get(status)
            if kind in (ErrorKind.VALIDATION, ErrorKind.EVENT_INACTIVE):
                hinted = _hinted_kind(message)
                if hinted is not None and not (kind is ErrorKind.VALIDATION and _has_field_errors(field_errors)):
                    kind = hinted
            elif kind is None and 200 <= status < 300:
                kind = _hinted_kind(message)
    if kind is None:
        kind = ErrorKind.UNKNOWN

    if kind is ErrorKind.VALIDATION and field_errors and not message:
        message = "; ".join(f"{key}: {', '.join(values)}" for key, values in field_errors.items())

    error_cls = {
        ErrorKind.INVALID_QR: QRCodeError,
        ErrorKind.NETWORK: TransportError,
        ErrorKind.UNKNOWN: ResponseShapeError,
    }.get(kind, AttendanceError)
    return error_cls(
        message if kind is ErrorKind.VALIDATION else None,
        kind=kind,
        field_errors=field_errors,
        status=status,
        details={"server_message": message} if message else None,
    )


def _has_field_errors(field_errors: Mapping[str, List[str]]) -> bool:
    return any(key in field_errors for key in _FIELD_KEYS)
