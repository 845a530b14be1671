"""
Background workers for the energy audit core.

Workers handle async processing tasks:
- Background job execution
- Alert escalation sweeps
"""
from .escalation_worker import EscalationWorker
from .worker_manager import WorkerManager

__all__ = [
    "EscalationWorker",
    "WorkerManager",
]
