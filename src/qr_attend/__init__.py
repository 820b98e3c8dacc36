"""QR-code attendance client: scan, locate, submit."""

from .errors import AttendanceError, ErrorKind, Remediation, classify_response
from .flow import AttendanceFlowController, FlowSnapshot, FlowState
from .geo import distance_meters, validate_coordinates
from .location import LOCATION_CONFIGS, GeolocationProvider, LocationConfig
from .models import AttendanceRecord, Event, UserLocation
from .qr import is_valid, sanitize
from .session import SessionStore
from .submitter import AttendanceSubmitter, SubmissionResult

__all__ = [
    "AttendanceError",
    "AttendanceFlowController",
    "AttendanceRecord",
    "AttendanceSubmitter",
    "ErrorKind",
    "Event",
    "FlowSnapshot",
    "FlowState",
    "GeolocationProvider",
    "LOCATION_CONFIGS",
    "LocationConfig",
    "Remediation",
    "SessionStore",
    "SubmissionResult",
    "UserLocation",
    "classify_response",
    "distance_meters",
    "is_valid",
    "sanitize",
    "validate_coordinates",
]
