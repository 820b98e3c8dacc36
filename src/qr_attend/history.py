"""The signed-in user's attendance history and statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .api import ApiResponse, AttendanceApi
from .errors import AttendanceError, ResponseShapeError, classify_response
from .models import (
    AttendanceHistory,
    AttendanceRecord,
    AttendanceStats,
    Event,
    UserAttendanceStats,
    _to_int,
    decode_records,
)

LOGGER = logging.getLogger(__name__)

RECENT_LIMIT = 5


@dataclass(frozen=True)
class AttendanceFilters:
    verified: Optional[bool] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    event_name: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.verified is not None:
            params["verified"] = "true" if self.verified else "false"
        if self.start_date:
            params["start_date"] = self.start_date
        if self.end_date:
            params["end_date"] = self.end_date
        if self.event_name:
            params["event_name"] = self.event_name
        return params


@dataclass
class EventGroup:
    event_id: int
    event: Optional[Event]
    attendances: List[AttendanceRecord] = field(default_factory=list)
    verified_count: int = 0
    average_distance: float = 0.0
    first_attendance: Optional[datetime] = None
    last_attendance: Optional[datetime] = None

    @property
    def total_attendances(self) -> int:
        return len(self.attendances)


@dataclass
class DateGroup:
    date: str
    attendances: List[AttendanceRecord] = field(default_factory=list)

    @property
    def events_count(self) -> int:
        return len({record.event_id for record in self.attendances})


class HistoryService:
    """Read-only views over ``/attendances``; failures raise :class:`AttendanceError`."""

    def __init__(self, api: AttendanceApi, logger: Optional[logging.Logger] = None) -> None:
        self._api = api
        self._logger = logger or LOGGER

    def _body(self, response: ApiResponse, key: str) -> Dict[str, Any]:
        if not response.ok:
            raise classify_response(response.status, response.body)
        body = response.body
        if not isinstance(body, dict) or body.get("success") is not True or key not in body:
            raise ResponseShapeError(details={"expected": key})
        return body

    async def history(self, page: int = 1) -> AttendanceHistory:
        response = await self._api.get("/attendances", params={"page": page})
        body = self._body(response, "attendances")
        records = decode_records(body["attendances"])
        self._logger.info("Loaded %d attendance records (page %d)", len(records), page)
        return AttendanceHistory(
            attendances=records,
            total=_to_int(body.get("total") or len(records), "total"),
            current_page=_to_int(body.get("current_page") or page, "current_page"),
            last_page=_to_int(body["last_page"], "last_page") if body.get("last_page") is not None else None,
        )

    async def stats(self) -> AttendanceStats:
        response = await self._api.get("/attendances/stats")
        return AttendanceStats.from_payload(self._body(response, "stats")["stats"])

    async def my_attendances(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        filters: Optional[AttendanceFilters] = None,
    ) -> List[AttendanceRecord]:
        params: Dict[str, Any] = {}
        if page:
            params["page"] = page
        if limit:
            params["limit"] = limit
        if filters is not None:
            params.update(filters.to_params())
        response = await self._api.get("/attendances/my", params=params)
        records = decode_records(self._body(response, "attendances")["attendances"])
        self._logger.debug("Fetched %d of my attendances with %s", len(records), params)
        return records

    async def my_stats(self) -> UserAttendanceStats:
        """Server stats, or stats computed from ``my_attendances`` if that endpoint fails."""
        try:
            response = await self._api.get("/attendances/my/stats")
            return UserAttendanceStats.from_payload(self._body(response, "stats")["stats"])
        except AttendanceError as exc:
            self._logger.warning("Stats endpoint failed (%s); computing locally", exc.kind.value)
            try:
                records = await self.my_attendances()
            except AttendanceError:
                raise exc from None
            if not records:
                raise exc
            return calculate_stats(records)


def group_by_event(records: List[AttendanceRecord]) -> List[EventGroup]:
    groups: Dict[int, EventGroup] = {}
    for record in records:
        group = groups.get(record.event_id)
        if group is None:
            group = groups[record.event_id] = EventGroup(
                event_id=record.event_id,
                event=record.event,
                first_attendance=record.checked_in_at,
                last_attendance=record.checked_in_at,
            )
        group.attendances.append(record)
        if record.verified:
            group.verified_count += 1
        group.first_attendance = min(group.first_attendance, record.checked_in_at)
        group.last_attendance = max(group.last_attendance, record.checked_in_at)

    for group in groups.values():
        group.average_distance = sum(r.distance_meters for r in group.attendances) / len(group.attendances)
    return list(groups.values())


def group_by_date(records: List[AttendanceRecord]) -> List[DateGroup]:
    """Group by check-in day (``YYYY-MM-DD``), most recent day first."""
    groups: Dict[str, DateGroup] = {}
    for record in records:
        day = record.checked_in_at.date().isoformat()
        groups.setdefault(day, DateGroup(date=day)).attendances.append(record)
    return sorted(groups.values(), key=lambda group: group.date, reverse=True)


def filter_attendances(records: List[AttendanceRecord], verified: Optional[bool] = None) -> List[AttendanceRecord]:
    if verified is None:
        return list(records)
    return [record for record in records if record.verified is verified]


def search_by_event_name(records: List[AttendanceRecord], term: str) -> List[AttendanceRecord]:
    needle = (term or "").strip().lower()
    if not needle:
        return list(records)

    def matches(record: AttendanceRecord) -> bool:
        if record.event is None:
            return False
        haystacks = [record.event.name, record.event.description or ""]
        return any(needle in text.lower() for text in haystacks)

    return [record for record in records if matches(record)]


def calculate_stats(records: List[AttendanceRecord]) -> UserAttendanceStats:
    verified = sum(1 for record in records if record.verified)
    average = sum(record.distance_meters for record in records) / len(records) if records else 0.0
    recent = sorted(records, key=lambda record: record.checked_in_at, reverse=True)[:RECENT_LIMIT]
    return UserAttendanceStats(
        total_attendances=len(records),
        verified_attendances=verified,
        unverified_attendances=len(records) - verified,
        events_attended=len({record.event_id for record in records}),
        average_distance=round(average, 2),
        recent_attendances=recent,
    )
