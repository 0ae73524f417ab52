"""
Worker affinity scheduling.

Tests are grouped into batches of one file and one fixture fingerprint. The
AffinityScheduler decides where a batch runs: on an idle worker that already
holds that fingerprint's worker fixtures, on a new worker, or on a new worker
that replaces an idle one bound to another fingerprint. The Dispatcher drives
worker processes through that policy until every batch has run.
"""

import asyncio
import multiprocessing
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from quire.config import RunConfig
from quire.logging_config import get_logger
from quire.reporting.base import Reporter
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
    WorkerMessage,
)
from quire.runtime.worker import worker_main
from quire.testing.models import Test, TestError, TestResult, TestStatus

logger = get_logger(__name__)


@dataclass
class Batch:
    """Entries of one file that share a fingerprint, run in order on one worker."""

    file: str
    fingerprint: str
    entries: list[TestEntry] = field(default_factory=list)


class WorkerHandle(Protocol):
    """What the scheduling policy needs to know about a worker."""

    index: int
    fingerprint: str

    @property
    def idle(self) -> bool: ...


class AssignmentKind(str, Enum):
    REUSE = "reuse"
    CREATE = "create"
    REPLACE = "replace"


@dataclass(frozen=True)
class Assignment:
    """Decision for one batch. ``retire`` is set for REPLACE."""

    kind: AssignmentKind
    worker: Any = None
    retire: Any = None


class AffinityScheduler:
    """Fingerprint-affine assignment of batches to workers.

    Policy, in order:
    1. an idle worker with the batch's fingerprint is reused;
    2. a new worker is started while fewer than ``max_workers`` are alive;
    3. an idle worker of another fingerprint is retired and replaced;
    4. otherwise the batch waits (``assign`` returns None).

    Worker indexes grow monotonically from 0 in creation order.

    Example:
        >>> scheduler = AffinityScheduler(max_workers=1)
        >>> scheduler.assign("f1", []).kind
        <AssignmentKind.CREATE: 'create'>
    """

    def __init__(self, max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._next_index = 0

    def assign(self, fingerprint: str, workers: Iterable[WorkerHandle]) -> Assignment | None:
        workers = list(workers)
        for worker in workers:
            if worker.idle and worker.fingerprint == fingerprint:
                return Assignment(AssignmentKind.REUSE, worker=worker)
        if len(workers) < self.max_workers:
            return Assignment(AssignmentKind.CREATE)
        for worker in workers:
            if worker.idle:
                return Assignment(AssignmentKind.REPLACE, retire=worker)
        return None

    def next_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index


# =============================================================================
# Worker Processes
# =============================================================================


_STOPPED = object()


class WorkerProcess:
    """A spawned worker process and its pipe.

    A reader thread pumps messages from the pipe into an asyncio queue, so
    the pipe only ever has one reader.
    """

    def __init__(self, index: int, fingerprint: str, config: RunConfig) -> None:
        self.index = index
        self.fingerprint = fingerprint
        self.busy = False
        self.retiring = False
        self._stopped = False
        context = multiprocessing.get_context("spawn")
        self._conn, child_conn = context.Pipe()
        self._process = context.Process(
            target=worker_main,
            args=(child_conn, WorkerInit(index=index, fingerprint=fingerprint, config=config)),
            name=f"quire-worker-{index}",
            daemon=True,
        )
        self._process.start()
        child_conn.close()

        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._reader = threading.Thread(
            target=self._read, name=f"quire-worker-{index}-reader", daemon=True
        )
        self._reader.start()
        logger.info("worker.spawned", index=index, fingerprint=fingerprint, pid=self._process.pid)

    @property
    def idle(self) -> bool:
        return not self.busy and not self.retiring

    def _read(self) -> None:
        while True:
            try:
                message = self._conn.recv()
            except (EOFError, OSError):
                message = _STOPPED
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
            except RuntimeError:
                # Event loop already closed
                return
            if message is _STOPPED:
                return

    def send(self, message: RunRequest | StopRequest) -> None:
        self._conn.send(message)

    async def recv(self) -> WorkerMessage:
        """Next message from the worker.

        Raises:
            EOFError: If the process exited.
        """
        message = await self._queue.get()
        if message is _STOPPED:
            # Keep raising for later callers
            self._queue.put_nowait(_STOPPED)
            raise EOFError(f"Worker {self.index} exited")
        return message

    def kill(self) -> None:
        """Kill the process at once; the reader then reports it as exited."""
        if self._process.is_alive():
            logger.warning("worker.killed", index=self.index)
            self._process.kill()

    async def stop(self, grace_period: float, request: bool = True) -> list[TestError]:
        """Let the worker tear down its fixtures and exit; kill it if it takes too long.

        The worker bounds its own fixture teardown by ``grace_period``; the
        process is killed once twice that has passed.

        Returns:
            Run-level errors reported by the worker while stopping.
        """
        if self._stopped:
            return []
        self._stopped = True
        self.retiring = True
        errors: list[TestError] = []
        try:
            if request:
                self.send(StopRequest())
            async with asyncio.timeout(grace_period * 2):
                while True:
                    message = await self.recv()
                    if isinstance(message, ErrorEvent):
                        errors.append(message.error)
                    elif isinstance(message, StoppedEvent):
                        break
        except TimeoutError:
            logger.warning("worker.stop_timeout", index=self.index, grace_period=grace_period)
        except (EOFError, OSError):
            logger.warning("worker.exited_early", index=self.index)
        await self.join(grace_period)
        return errors

    async def join(self, grace_period: float) -> None:
        await asyncio.to_thread(self._process.join, grace_period)
        if self._process.is_alive():
            logger.warning("worker.killed", index=self.index)
            self._process.kill()
            await asyncio.to_thread(self._process.join)
        # The reader sees EOF once the process is gone; close only after it stops
        await asyncio.to_thread(self._reader.join, grace_period)
        self._conn.close()

    def __repr__(self) -> str:
        return f"WorkerProcess(index={self.index}, fingerprint={self.fingerprint})"


# =============================================================================
# Dispatcher
# =============================================================================


class Dispatcher:
    """Runs every scheduled test on worker processes and feeds the reporter."""

    def __init__(self, config: RunConfig, tests: Iterable[Test], reporter: Reporter) -> None:
        self.config = config
        self.reporter = reporter
        self.scheduler = AffinityScheduler(config.workers)
        self.workers: list[WorkerProcess] = []
        self._tests = {test.test_id: test for test in tests}
        self._queue: deque[Batch] = deque(self._batches(self._tests.values()))
        self._jobs: set[asyncio.Task] = set()
        self.has_errors = False

    @staticmethod
    def _batches(tests: Iterable[Test]) -> list[Batch]:
        """Group tests by fingerprint, then by file, keeping first-seen order.

        Batches sharing a fingerprint sit next to each other so one worker
        can run them back to back with its worker fixtures alive.
        """
        batches: dict[str, dict[str, Batch]] = {}
        for test in tests:
            by_file = batches.setdefault(test.fingerprint, {})
            if test.file not in by_file:
                by_file[test.file] = Batch(file=test.file, fingerprint=test.fingerprint)
            by_file[test.file].entries.append(TestEntry(test_id=test.test_id))
        return [batch for by_file in batches.values() for batch in by_file.values()]

    async def run(self) -> None:
        """Dispatch until the queue is empty and every job has finished."""
        try:
            while self._queue or self._jobs:
                self._schedule()
                if not self._jobs:
                    break
                done, _ = await asyncio.wait(self._jobs, return_when=asyncio.FIRST_COMPLETED)
                for job in done:
                    self._jobs.discard(job)
                    job.result()
        finally:
            await self.stop_all()

    def _schedule(self) -> None:
        # Batches an idle worker already holds fixtures for go first
        held = {worker.fingerprint for worker in self.workers if worker.idle}
        pending = deque(sorted(self._queue, key=lambda batch: batch.fingerprint not in held))
        waiting: deque[Batch] = deque()
        while pending:
            batch = pending.popleft()
            # Retiring workers keep their slot until they are gone
            assignment = self.scheduler.assign(batch.fingerprint, self.workers)
            if assignment is None:
                waiting.append(batch)
                continue
            if assignment.kind is AssignmentKind.REUSE:
                worker = assignment.worker
                worker.busy = True
                self._start_job(self._run_batch(worker, batch))
            elif assignment.kind is AssignmentKind.REPLACE:
                assignment.retire.retiring = True
                self._start_job(self._replace(assignment.retire, batch))
            else:
                worker = self._spawn(batch.fingerprint)
                self._start_job(self._run_batch(worker, batch))
        self._queue = waiting

    def _start_job(self, coro: Any) -> None:
        self._jobs.add(asyncio.create_task(coro))

    def _spawn(self, fingerprint: str) -> WorkerProcess:
        worker = WorkerProcess(self.scheduler.next_index(), fingerprint, self.config)
        worker.busy = True
        self.workers.append(worker)
        return worker

    async def _replace(self, retired: WorkerProcess, batch: Batch) -> None:
        await self._retire(retired)
        await self._run_batch(self._spawn(batch.fingerprint), batch)

    async def _retire(self, worker: WorkerProcess, request: bool = True) -> None:
        for error in await worker.stop(self.config.shutdown_grace_period, request=request):
            self._report_error(error)
        if worker in self.workers:
            self.workers.remove(worker)

    def _watchdog(self, entry: TestEntry) -> float | None:
        """Loop time after which a worker still running ``entry`` is killed.

        Covers the test deadline, the bounded test fixture teardown and the
        worker fixture teardown that follows a timeout, plus a grace period.
        A worker past this point is stuck in code no deadline can interrupt.
        """
        timeout = self._tests[entry.test_id].timeout
        if not timeout:
            return None
        grace = self.config.shutdown_grace_period
        return asyncio.get_running_loop().time() + 2 * timeout + 2 * grace

    async def _run_batch(self, worker: WorkerProcess, batch: Batch) -> None:
        remaining = list(batch.entries)
        in_flight: TestEntry | None = None
        kill_at: float | None = None
        worker.send(RunRequest(file=batch.file, entries=batch.entries))
        try:
            while True:
                watchdog = asyncio.timeout_at(kill_at)
                try:
                    async with watchdog:
                        message = await worker.recv()
                except TimeoutError:
                    if not watchdog.expired():
                        raise
                    worker.kill()
                    self._abandon(
                        worker,
                        remaining,
                        in_flight,
                        TestStatus.TIMED_OUT,
                        f"Test did not finish; worker {worker.index} was killed",
                    )
                    await self._retire(worker, request=False)
                    self._requeue(batch, remaining)
                    break
                if isinstance(message, TestBeginEvent):
                    in_flight = message.entry
                    kill_at = self._watchdog(message.entry)
                    self.reporter.on_test_begin(self._tests[message.entry.test_id])
                elif isinstance(message, TestEndEvent):
                    in_flight = None
                    kill_at = None
                    remaining.remove(message.entry)
                    self._record(message.entry, message.result)
                elif isinstance(message, ErrorEvent):
                    self._report_error(message.error)
                elif isinstance(message, DoneEvent):
                    if message.retire:
                        await self._retire(worker, request=False)
                        self._requeue(batch, message.remaining)
                    break
        except EOFError:
            logger.error("worker.crashed", index=worker.index)
            self._abandon(
                worker,
                remaining,
                in_flight,
                TestStatus.FAILED,
                f"Worker {worker.index} exited unexpectedly",
            )
            await self._retire(worker, request=False)
            self._requeue(batch, remaining)
        finally:
            worker.busy = False

    def _abandon(
        self,
        worker: WorkerProcess,
        remaining: list[TestEntry],
        in_flight: TestEntry | None,
        status: TestStatus,
        message: str,
    ) -> None:
        """Record the in-flight test of a lost worker; ``remaining`` keeps the rest."""
        if in_flight is None:
            return
        logger.error("worker.lost_test", index=worker.index, test=in_flight.test_id)
        remaining.remove(in_flight)
        self._record(
            in_flight,
            TestResult(
                retry=in_flight.retry,
                worker_index=worker.index,
                status=status,
                error=TestError(message=message),
            ),
        )

    def _record(self, entry: TestEntry, result: TestResult) -> None:
        test = self._tests[entry.test_id]
        test.results.append(result)
        self.reporter.on_test_end(test, result)
        retryable = result.status in (TestStatus.FAILED, TestStatus.TIMED_OUT)
        if retryable and entry.retry < self.config.retries:
            logger.info("test.retry", test=entry.test_id, retry=entry.retry + 1)
            self._queue.append(
                Batch(
                    file=test.file,
                    fingerprint=test.fingerprint,
                    entries=[TestEntry(test_id=entry.test_id, retry=entry.retry + 1)],
                )
            )

    def _requeue(self, batch: Batch, entries: list[TestEntry]) -> None:
        if entries:
            self._queue.appendleft(Batch(batch.file, batch.fingerprint, list(entries)))

    def _report_error(self, error: TestError) -> None:
        self.has_errors = True
        self.reporter.on_error(error)

    async def stop_all(self) -> None:
        """Stop every live worker, tearing down worker fixtures."""
        for job in self._jobs:
            job.cancel()
        if self._jobs:
            await asyncio.gather(*self._jobs, return_exceptions=True)
        self._jobs.clear()
        workers, self.workers = self.workers, []
        results = await asyncio.gather(
            *(w.stop(self.config.shutdown_grace_period) for w in workers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("worker.stop_failed", error=repr(result))
                continue
            for error in result:
                self._report_error(error)
