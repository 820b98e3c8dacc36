"""Domain records exchanged with the attendance API.

All ``from_payload`` constructors validate the JSON shape and raise
:class:`ResponseShapeError` on anything they do not recognise. The event
echoed inside an attendance is display data and is dropped instead. The API
serialises decimals as strings (``"19.4326"``), so numeric fields accept
either form.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .errors import ResponseShapeError
from .geo import distance_meters

LOGGER = logging.getLogger(__name__)


def _require_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ResponseShapeError(details={"expected": what, "received": type(payload).__name__})
    return payload


def _to_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ResponseShapeError(details={"field": name, "value": value})
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ResponseShapeError(details={"field": name, "value": value}) from exc
    if not math.isfinite(number):
        raise ResponseShapeError(details={"field": name, "value": value})
    return number


def _to_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ResponseShapeError(details={"field": name, "value": value})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ResponseShapeError(details={"field": name, "value": value}) from exc


def _to_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise ResponseShapeError(details={"field": name, "value": value})


def parse_timestamp(value: Any, name: str = "timestamp") -> datetime:
    """Parse API timestamps such as ``2025-08-03T14:30:21.000000Z``."""
    if not isinstance(value, str) or not value.strip():
        raise ResponseShapeError(details={"field": name, "value": value})
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ResponseShapeError(details={"field": name, "value": value}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return str(value) if value is not None else None


@dataclass(frozen=True)
class UserLocation:
    """A single position fix; held for one submission attempt only."""

    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

    def age_seconds(self, now: Optional[float] = None) -> float:
        return max(0.0, (time.time() if now is None else now) - self.timestamp)


@dataclass(frozen=True)
class User:
    id: int
    name: str
    email: str
    role: str = "user"
    employee_id: Optional[str] = None
    status: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_payload(cls, payload: Any) -> "User":
        data = _require_mapping(payload, "user")
        try:
            name = data["name"]
            email = data["email"]
        except KeyError as exc:
            raise ResponseShapeError(details={"missing": exc.args[0]}) from exc
        return cls(
            id=_to_int(data.get("id"), "user.id"),
            name=str(name),
            email=str(email),
            role=str(data.get("role") or "user"),
            employee_id=_optional_str(data, "employee_id"),
            status=_optional_str(data, "status"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "employee_id": self.employee_id,
            "status": self.status,
        }


@dataclass(frozen=True)
class Event:
    id: int
    name: str
    latitude: float
    longitude: float
    allowed_radius: float
    start_time: datetime
    end_time: datetime
    qr_code: Optional[str] = None
    active: bool = True
    description: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "Event":
        data = _require_mapping(payload, "event")
        if "name" not in data:
            raise ResponseShapeError(details={"missing": "event.name"})
        return cls(
            id=_to_int(data.get("id"), "event.id"),
            name=str(data["name"]),
            latitude=_to_float(data.get("latitude"), "event.latitude"),
            longitude=_to_float(data.get("longitude"), "event.longitude"),
            allowed_radius=_to_float(data.get("allowed_radius"), "event.allowed_radius"),
            start_time=parse_timestamp(data.get("start_time"), "event.start_time"),
            end_time=parse_timestamp(data.get("end_time"), "event.end_time"),
            qr_code=_optional_str(data, "qr_code"),
            active=_to_bool(data.get("active", True), "event.active"),
            description=_optional_str(data, "description"),
            address=_optional_str(data, "address"),
        )

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """True when the event is active and ``now`` is inside its window."""
        moment = now or datetime.now(timezone.utc)
        return self.active and self.start_time <= moment <= self.end_time

    def distance_from(self, latitude: float, longitude: float) -> float:
        """Advisory distance from the event location, for display."""
        return distance_meters(latitude, longitude, self.latitude, self.longitude)


def _echoed_event(payload: Any) -> Optional[Event]:
    """Decode the event echoed inside an attendance; display only, never fatal."""
    if payload is None:
        return None
    try:
        return Event.from_payload(payload)
    except ResponseShapeError as exc:
        LOGGER.debug("Ignoring undecodable event on attendance: %s", exc.details)
        return None


@dataclass(frozen=True)
class AttendanceRecord:
    id: int
    event_id: int
    user_id: int
    user_latitude: float
    user_longitude: float
    distance_meters: float
    verified: bool
    checked_in_at: datetime
    event: Optional[Event] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "AttendanceRecord":
        data = _require_mapping(payload, "attendance")
        if "verified" not in data:
            raise ResponseShapeError(details={"missing": "attendance.verified"})
        return cls(
            id=_to_int(data.get("id"), "attendance.id"),
            event_id=_to_int(data.get("event_id"), "attendance.event_id"),
            user_id=_to_int(data.get("user_id"), "attendance.user_id"),
            user_latitude=_to_float(data.get("user_latitude"), "attendance.user_latitude"),
            user_longitude=_to_float(data.get("user_longitude"), "attendance.user_longitude"),
            distance_meters=_to_float(data.get("distance_meters"), "attendance.distance_meters"),
            verified=_to_bool(data["verified"], "attendance.verified"),
            checked_in_at=parse_timestamp(data.get("checked_in_at"), "attendance.checked_in_at"),
            event=_echoed_event(data.get("event")),
        )


@dataclass(frozen=True)
class SubmissionReceipt:
    """Decoded ``{success: true, attendance, distance}`` response."""

    record: AttendanceRecord
    distance: float
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "SubmissionReceipt":
        data = _require_mapping(payload, "submission response")
        if data.get("success") is not True:
            raise ResponseShapeError(details={"success": data.get("success")})
        if "attendance" not in data or "distance" not in data:
            raise ResponseShapeError(details={"keys": sorted(data.keys())})
        message = data.get("message")
        return cls(
            record=AttendanceRecord.from_payload(data["attendance"]),
            distance=_to_float(data["distance"], "distance"),
            message=message if isinstance(message, str) else None,
        )


@dataclass(frozen=True)
class AttendanceHistory:
    attendances: List[AttendanceRecord]
    total: int
    current_page: int
    last_page: Optional[int] = None


@dataclass(frozen=True)
class AttendanceStats:
    """Server-computed stats from ``/attendances/stats``."""

    total_events: int
    attended_events: int
    attendance_rate: float
    recent_attendances: List[AttendanceRecord]

    @classmethod
    def from_payload(cls, payload: Any) -> "AttendanceStats":
        data = _require_mapping(payload, "stats")
        return cls(
            total_events=_to_int(data.get("total_events"), "stats.total_events"),
            attended_events=_to_int(data.get("attended_events"), "stats.attended_events"),
            attendance_rate=_to_float(data.get("attendance_rate"), "stats.attendance_rate"),
            recent_attendances=decode_records(data.get("recent_attendances") or []),
        )


@dataclass(frozen=True)
class UserAttendanceStats:
    """Per-user stats; served by ``/attendances/my/stats`` or computed locally."""

    total_attendances: int
    verified_attendances: int
    unverified_attendances: int
    events_attended: int
    average_distance: float
    recent_attendances: List[AttendanceRecord]

    @classmethod
    def from_payload(cls, payload: Any) -> "UserAttendanceStats":
        data = _require_mapping(payload, "stats")
        return cls(
            total_attendances=_to_int(data.get("total_attendances"), "stats.total_attendances"),
            verified_attendances=_to_int(data.get("verified_attendances"), "stats.verified_attendances"),
            unverified_attendances=_to_int(data.get("unverified_attendances"), "stats.unverified_attendances"),
            events_attended=_to_int(data.get("events_attended"), "stats.events_attended"),
            average_distance=_to_float(data.get("average_distance"), "stats.average_distance"),
            recent_attendances=decode_records(data.get("recent_attendances") or []),
        )


def decode_records(payload: Any) -> List[AttendanceRecord]:
    if not isinstance(payload, list):
        raise ResponseShapeError(details={"expected": "list of attendances"})
    return [AttendanceRecord.from_payload(item) for item in payload]
