"""Scan-to-result state machine for the attendance screen.

The controller is framework independent: the presentation layer calls
:meth:`AttendanceFlowController.on_scan` and :meth:`reset`, and renders
whatever snapshots arrive through :meth:`subscribe`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Union

from .errors import (
    AttendanceError,
    ErrorKind,
    LocationError,
    QRCodeError,
    ResponseShapeError,
    TransportError,
)
from .location import GeolocationProvider, LocationConfig, location_config
from .models import AttendanceRecord, UserLocation
from .qr import is_valid, sanitize
from .submitter import AttendanceSubmitter, SubmissionResult


class FlowState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    VALIDATING = "validating"
    REQUESTING_LOCATION = "requesting-location"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


ACCEPTS_SCAN = (FlowState.IDLE, FlowState.SCANNING)
TERMINAL = (FlowState.SUCCESS, FlowState.ERROR)


@dataclass(frozen=True)
class FlowSnapshot:
    state: FlowState = FlowState.IDLE
    code: Optional[str] = None
    record: Optional[AttendanceRecord] = None
    result: Optional[SubmissionResult] = None
    error: Optional[AttendanceError] = None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


Listener = Callable[[FlowSnapshot], None]


class AttendanceFlowController:
    """One scan session: at most one submission in flight at any time."""

    def __init__(
        self,
        submitter: AttendanceSubmitter,
        locator: GeolocationProvider,
        *,
        tier: Union[str, LocationConfig] = "high",
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._submitter = submitter
        self._locator = locator
        self._config = location_config(tier) if isinstance(tier, str) else tier
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._snapshot = FlowSnapshot()
        self._listeners: List[Listener] = []
        self._location: Optional[UserLocation] = None
        self._disposed = False

    # -- observation -----------------------------------------------------

    @property
    def state(self) -> FlowState:
        return self._snapshot.state

    @property
    def snapshot(self) -> FlowSnapshot:
        return self._snapshot

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every transition; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: FlowState, **changes) -> None:
        if self._disposed:
            self._logger.debug("Ignoring %s transition after dispose", state.value)
            return
        self._snapshot = replace(self._snapshot, state=state, **changes)
        self._logger.debug("Flow state -> %s", state.value)
        for listener in list(self._listeners):
            listener(self._snapshot)

    # -- location cache --------------------------------------------------

    @property
    def cached_location(self) -> Optional[UserLocation]:
        """Last fix, or None once it is older than the tier's max age."""
        if self._location is None:
            return None
        if self._location.age_seconds(self._clock()) > self._config.maximum_age:
            self._logger.debug("Cached location is stale; a new fix will be requested")
            self._location = None
        return self._location

    # -- transitions -----------------------------------------------------

    def start_scanning(self) -> None:
        if self.state is FlowState.IDLE:
            self._transition(FlowState.SCANNING)

    async def on_scan(self, raw: str) -> FlowSnapshot:
        """Handle one scan event and return the resulting snapshot.

        Scans arriving while a previous scan is being processed, or before
        :meth:`reset` after an outcome, are ignored.
        """
        if self._disposed:
            return self._snapshot
        if self.state not in ACCEPTS_SCAN:
            self._logger.info("Scan ignored while %s", self.state.value)
            return self._snapshot

        code = sanitize(raw)
        if not is_valid(code):
            self._transition(
                FlowState.ERROR,
                code=code,
                record=None,
                result=None,
                error=QRCodeError(details={"raw": raw}),
            )
            return self._snapshot

        self._transition(FlowState.VALIDATING, code=code, record=None, result=None, error=None)
        try:
            return await self._locate_and_submit(code)
        except asyncio.CancelledError:
            self._transition(FlowState.ERROR, error=TransportError("The scan was cancelled."))
            raise
        except Exception as exc:
            self._logger.exception("Scan %s failed unexpectedly", code)
            self._transition(FlowState.ERROR, error=ResponseShapeError(details={"reason": repr(exc)}))
            return self._snapshot

    async def _locate_and_submit(self, code: str) -> FlowSnapshot:
        location = self.cached_location
        if location is None:
            self._transition(FlowState.REQUESTING_LOCATION)
            try:
                location = await self._locator.get_current_location(self._config)
            except LocationError as exc:
                self._logger.warning("Location unavailable for scan: %s", exc.reason)
                self._transition(FlowState.ERROR, error=exc)
                return self._snapshot
            if self._disposed:
                return self._snapshot
            self._location = location

        self._transition(FlowState.SUBMITTING)
        result = await self._submitter.submit(code, location)
        if self._disposed:
            self._logger.debug("Submission finished after dispose; outcome discarded")
            return self._snapshot

        if result.ok:
            self._transition(FlowState.SUCCESS, record=result.record, result=result)
        else:
            if result.kind is ErrorKind.COORDINATE_OUT_OF_BOUNDS:
                self._location = None
            self._transition(FlowState.ERROR, result=result, error=result.error or ResponseShapeError())
        return self._snapshot

    def reset(self) -> bool:
        """Return to ``scanning`` after an outcome; False while a scan is in flight."""
        if self._disposed:
            return False
        if self.state not in TERMINAL and self.state not in ACCEPTS_SCAN:
            self._logger.debug("Reset refused while %s", self.state.value)
            return False
        self._transition(FlowState.SCANNING, code=None, record=None, result=None, error=None)
        return True

    def dispose(self) -> None:
        """Tear down: drop listeners; later updates become no-ops."""
        self._disposed = True
        self._listeners.clear()
