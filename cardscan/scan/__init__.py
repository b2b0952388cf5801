"""Scan package: per-frame orchestration and the scan-cycle state machine."""

from .controller import ScanCycleController, decision_policy, is_fingerprint_trusted
from .orchestrator import ScanOrchestrator
from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler, TimerHandle
from .session import ScanSession, ScanState

__all__ = [
    "ScanCycleController",
    "ScanOrchestrator",
    "ScanSession",
    "ScanState",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "TimerHandle",
    "decision_policy",
    "is_fingerprint_trusted",
]
