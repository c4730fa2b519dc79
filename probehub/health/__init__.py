"""Health subsystem — check engine, scheduler, shutdown control."""

from .engine import (
    TIMEOUT_REASON,
    CheckError,
    Checker,
    CheckResult,
    InFlight,
    ScheduleEntry,
    run_checks,
    validate_entries,
)
from .scheduler import HealthScheduler, run_check_forever, run_checks_forever
from .shutdown import ShutdownControl, terminate_process
