"""Import pipeline: orchestrated cycles and the workers that run them."""

from firedragon.importer.orchestrator import (
    BalanceCheck,
    ImportOrchestrator,
    ImportResult,
    ImportSource,
    call_with_retry,
)
from firedragon.importer.supervisor import WorkerStatus, WorkerSupervisor

__all__ = [
    "BalanceCheck",
    "ImportOrchestrator",
    "ImportResult",
    "ImportSource",
    "WorkerStatus",
    "WorkerSupervisor",
    "call_with_retry",
]
