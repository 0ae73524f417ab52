"""
Worker: the long-lived execution context of a worker process.

A Worker is bound to one fixture fingerprint. It owns the worker-scoped
fixture instances shared by every test routed to it and tears them down
exactly once, when it retires. Tests run strictly one after another.

``worker_main`` is the entry point of a spawned worker process: it reads
requests from its pipe, runs batches and streams events back.
"""

import asyncio
from collections.abc import Callable
from enum import Enum
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any

from quire.config import RunConfig
from quire.logging_config import get_logger, setup_logging
from quire.runtime.protocol import (
    DoneEvent,
    ErrorEvent,
    RunRequest,
    StopRequest,
    StoppedEvent,
    TestBeginEvent,
    TestEndEvent,
    TestEntry,
    WorkerInit,
)
from quire.runtime.test_run import RunOutcome, TestRun
from quire.testing.declarations import WORKER_INFO
from quire.testing.fixtures import FixtureScope, ScopedFixtureManager
from quire.testing.loader import TestLoader
from quire.testing.models import Suite, Test, TestError, TestResult, TestStatus, WorkerInfo

logger = get_logger(__name__)


class WorkerState(str, Enum):
    """Lifecycle of a Worker. RETIRED is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    RETIRED = "retired"


class Worker:
    """
    In-process worker bound to one fingerprint.

    Usage:
        worker = Worker(index=0, fingerprint=test.fingerprint)
        outcome = await worker.run_test(test)
        errors = await worker.shutdown()
    """

    def __init__(
        self,
        index: int,
        fingerprint: str,
        parameters: dict[str, str] | None = None,
        output_dir: str | Path = "test-results",
        teardown_timeout: float | None = None,
    ) -> None:
        self.index = index
        self.fingerprint = fingerprint
        self.output_dir = Path(output_dir)
        self.teardown_timeout = teardown_timeout
        self.state = WorkerState.IDLE
        self.fixtures = ScopedFixtureManager(f"worker-{index}", FixtureScope.WORKER)
        self.fixtures.seed(
            WORKER_INFO,
            WorkerInfo(index=index, fingerprint=fingerprint, parameters=dict(parameters or {})),
        )

    async def run_test(self, test: Test, retry: int = 0) -> RunOutcome:
        """Run one test and return its result and run-level errors."""
        if self.state is WorkerState.RETIRED:
            raise RuntimeError(f"Worker {self.index} is retired")
        if test.fingerprint != self.fingerprint:
            result = TestResult(
                retry=retry,
                worker_index=self.index,
                status=TestStatus.FAILED,
                error=TestError(
                    message=(
                        f"Test fingerprint {test.fingerprint} does not match "
                        f"worker {self.index} ({self.fingerprint})"
                    )
                ),
            )
            return RunOutcome(result)

        self.state = WorkerState.RUNNING
        try:
            run = TestRun(test, retry, self.index, self.fixtures, self.output_dir)
            return await run.execute()
        finally:
            if self.state is WorkerState.RUNNING:
                self.state = WorkerState.IDLE

    async def run_batch(
        self,
        entries: list[TestEntry],
        tests: dict[str, Test],
        emit: Callable[[Any], None],
    ) -> DoneEvent:
        """Run a batch of entries, emitting protocol events as tests progress.

        Stops at the first timed out test: the worker retires, tearing down
        its fixtures before that test's result is emitted, and the entries it
        did not reach are returned for rescheduling.
        """
        for position, entry in enumerate(entries):
            test = tests.get(entry.test_id)
            emit(TestBeginEvent(entry=entry, worker_index=self.index))
            if test is None:
                result = TestResult(
                    retry=entry.retry,
                    worker_index=self.index,
                    status=TestStatus.FAILED,
                    error=TestError(message=f"Test {entry.test_id} not found in worker {self.index}"),
                )
                emit(TestEndEvent(entry=entry, result=result))
                continue

            outcome = await self.run_test(test, entry.retry)
            for error in outcome.errors:
                emit(ErrorEvent(error=error))

            if outcome.timed_out:
                for error in await self.shutdown():
                    emit(ErrorEvent(error=error))
                emit(TestEndEvent(entry=entry, result=outcome.result))
                return DoneEvent(retire=True, remaining=entries[position + 1:])

            emit(TestEndEvent(entry=entry, result=outcome.result))
        return DoneEvent()

    async def shutdown(self) -> list[TestError]:
        """Retire the worker and tear down its fixtures. Idempotent.

        Teardown is bounded by ``teardown_timeout`` seconds when set.
        """
        if self.state is WorkerState.RETIRED:
            return []
        self.state = WorkerState.RETIRED
        failures = await self.fixtures.teardown(self.teardown_timeout)
        logger.debug("worker.retired", index=self.index, teardown_errors=len(failures))
        return [TestError.from_exception(failure) for failure in failures]

    def __repr__(self) -> str:
        return f"Worker(index={self.index}, fingerprint={self.fingerprint}, state={self.state.value})"


# =============================================================================
# Worker Process
# =============================================================================


def _index_tests(suite: Suite) -> dict[str, Test]:
    return {test.test_id: test for test in suite.all_tests()}


async def serve(conn: Connection, init: WorkerInit) -> None:
    """Request loop of a worker process."""
    config: RunConfig = init.config
    loader = TestLoader(
        test_match=config.test_match, timeout=config.timeout, parameters=config.parameters
    )
    worker = Worker(
        init.index,
        init.fingerprint,
        config.parameters,
        config.output_dir,
        teardown_timeout=config.shutdown_grace_period,
    )
    loop = asyncio.get_running_loop()
    logger.info("worker.started", index=init.index, fingerprint=init.fingerprint)

    while True:
        try:
            message = await loop.run_in_executor(None, conn.recv)
        except EOFError:
            logger.warning("worker.orphaned", index=init.index)
            break
        if isinstance(message, StopRequest):
            break
        if not isinstance(message, RunRequest):
            raise TypeError(f"Unexpected message: {message!r}")

        load_errors: list[TestError] = []
        suite = loader.load_file(message.file, load_errors)
        for error in load_errors:
            conn.send(ErrorEvent(error=error))
        done = await worker.run_batch(message.entries, _index_tests(suite), conn.send)
        conn.send(done)
        if done.retire:
            break

    for error in await worker.shutdown():
        conn.send(ErrorEvent(error=error))
    conn.send(StoppedEvent())
    logger.info("worker.stopped", index=init.index)


def worker_main(conn: Connection, init: WorkerInit) -> None:
    """Entry point of a spawned worker process."""
    setup_logging(init.config.log_level, init.config.json_logs)
    try:
        asyncio.run(serve(conn, init))
    finally:
        conn.close()
