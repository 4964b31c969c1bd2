"""Public schema exports shared across API route modules."""

from app.schemas.devices import DeviceRead, DeviceRegister
from app.schemas.errors import ErrorResponse
from app.schemas.escalations import EscalationOutcomeRead, SweepReportRead
from app.schemas.health import HealthStatusResponse
from app.schemas.tasks import TaskCreate, TaskRead, TaskTimerRead

__all__ = [
    "DeviceRead",
    "DeviceRegister",
    "ErrorResponse",
    "EscalationOutcomeRead",
    "HealthStatusResponse",
    "SweepReportRead",
    "TaskCreate",
    "TaskRead",
    "TaskTimerRead",
]
