"""
Quire Runtime.

Worker processes and test execution:
- worker: Worker owning worker-scoped fixtures, and the process entry point
- test_run: execution of one test under a deadline
- scheduler: fingerprint-affine assignment of batches to worker processes
- runner: load, dispatch and report a whole run
"""

from quire.runtime.capture import OutputCapture
from quire.runtime.runner import Runner
from quire.runtime.scheduler import AffinityScheduler, Assignment, AssignmentKind, Dispatcher
from quire.runtime.test_run import RunOutcome, TestRun
from quire.runtime.worker import Worker, WorkerState

__all__ = [
    "AffinityScheduler",
    "Assignment",
    "AssignmentKind",
    "Dispatcher",
    "OutputCapture",
    "RunOutcome",
    "Runner",
    "TestRun",
    "Worker",
    "WorkerState",
]
