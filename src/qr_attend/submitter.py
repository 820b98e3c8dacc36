"""Single attendance submission: validate locally, post once, classify."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .errors import AttendanceError, ErrorKind, ResponseShapeError, classify_response
from .geo import validate_coordinates
from .models import AttendanceRecord, SubmissionReceipt, UserLocation
from .qr import ScannedCode


class SubmissionGateway(Protocol):
    """Network seam; :class:`qr_attend.api.AttendanceApi` satisfies it."""

    async def post_attendance(self, payload: Mapping[str, Any]) -> Any:
        """Send one submission and return an object with ``status``/``body``."""


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one submission attempt.

    On success ``record`` and ``distance`` come from the server and are
    authoritative. ``advisory_distance`` is the client's own estimate and is
    only filled in when the server echoed the event location.
    """

    code: Optional[str]
    record: Optional[AttendanceRecord] = None
    distance: Optional[float] = None
    advisory_distance: Optional[float] = None
    message: Optional[str] = None
    error: Optional[AttendanceError] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


class AttendanceSubmitter:
    """Turn a raw scan plus an acquired location into one API call."""

    def __init__(
        self,
        gateway: SubmissionGateway,
        logger: logging.Logger | None = None,
        timer: Callable[[], float] = perf_counter,
    ) -> None:
        self._gateway = gateway
        self._logger = logger or logging.getLogger(__name__)
        self._timer = timer

    @staticmethod
    def build_payload(code: ScannedCode, location: UserLocation) -> Dict[str, Any]:
        return {
            "qr_code": code.token,
            "user_latitude": location.latitude,
            "user_longitude": location.longitude,
        }

    async def submit(self, raw_code: str, location: UserLocation) -> SubmissionResult:
        """Submit ``raw_code`` at ``location``; never raises AttendanceError.

        Invalid codes and out-of-bounds coordinates fail without touching
        the network. The request is sent once; callers decide on retries.
        """
        start = self._timer()
        try:
            code = ScannedCode.parse(raw_code)
        except AttendanceError as exc:
            self._logger.warning("Rejected QR payload %r before submission", raw_code)
            return self._failure(None, exc, start)

        try:
            validate_coordinates(location.latitude, location.longitude)
        except AttendanceError as exc:
            self._logger.warning("Rejected location %s before submission: %s", location, exc.message)
            return self._failure(code.token, exc, start)

        payload = self.build_payload(code, location)
        self._logger.debug("Submitting attendance payload %s", payload)
        try:
            response = await self._gateway.post_attendance(payload)
        except AttendanceError as exc:
            return self._failure(code.token, exc, start)

        status = response.status
        body = response.body
        if not 200 <= status < 300:
            return self._failure(code.token, classify_response(status, body), start)

        try:
            receipt = SubmissionReceipt.from_payload(body)
        except ResponseShapeError as exc:
            # A 2xx with a failure body still carries a usable category.
            error = classify_response(status, body)
            if error.kind is ErrorKind.UNKNOWN:
                error = exc
            self._logger.warning("Unrecognised submission response (status %s)", status)
            return self._failure(code.token, error, start)

        record = receipt.record
        advisory = None
        if record.event is not None:
            advisory = record.event.distance_from(location.latitude, location.longitude)
            if abs(advisory - receipt.distance) > max(1.0, receipt.distance * 0.05):
                self._logger.debug(
                    "Client distance %.1fm differs from server distance %.1fm; using server value",
                    advisory,
                    receipt.distance,
                )

        elapsed = self._timer() - start
        self._logger.info(
            "Submitted attendance %s for event %s (verified=%s, distance %.1fm, elapsed %.2fs)",
            code.token,
            record.event_id,
            record.verified,
            receipt.distance,
            elapsed,
        )
        return SubmissionResult(
            code=code.token,
            record=record,
            distance=receipt.distance,
            advisory_distance=advisory,
            message=receipt.message,
            elapsed_seconds=elapsed,
        )

    def _failure(self, code: Optional[str], error: AttendanceError, start: float) -> SubmissionResult:
        elapsed = self._timer() - start
        self._logger.info(
            "Submission %s failed with %s (elapsed %.2fs)",
            code or "<invalid>",
            error.kind.value,
            elapsed,
        )
        return SubmissionResult(code=code, error=error, elapsed_seconds=elapsed)
