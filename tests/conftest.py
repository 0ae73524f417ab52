"""
Shared fixtures for the quire test-suite.

``inline_files`` writes test files into a temporary directory and cleans up
the modules they import; ``run_inline`` loads them and runs every test
in-process on Worker objects grouped by fingerprint, the way worker
processes would.
"""

import sys
import textwrap
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from quire.config import RunConfig
from quire.logging_config import setup_logging
from quire.reporting.base import Reporter
from quire.runtime.worker import Worker
from quire.testing.loader import LoadResult, TestLoader
from quire.testing.models import Suite, Test, TestError, TestResult

setup_logging("WARNING")


class RecordingReporter(Reporter):
    """Keeps everything it is told about a run."""

    def __init__(self) -> None:
        self.suite: Suite | None = None
        self.begun: list[str] = []
        self.ended: list[tuple[str, TestResult]] = []
        self.errors: list[TestError] = []
        self.timed_out: float | None = None
        self.finished = False

    def on_begin(self, config: RunConfig, suite: Suite) -> None:
        self.suite = suite

    def on_test_begin(self, test: Test) -> None:
        self.begun.append(test.test_id)

    def on_test_end(self, test: Test, result: TestResult) -> None:
        self.ended.append((test.test_id, result))

    def on_error(self, error: TestError) -> None:
        self.errors.append(error)

    def on_timeout(self, timeout: float) -> None:
        self.timed_out = timeout

    def on_end(self) -> None:
        self.finished = True

    def results_by_title(self) -> dict[str, list[TestResult]]:
        """Results grouped by test title, in report order."""
        assert self.suite is not None
        titles = {test.test_id: test.title for test in self.suite.all_tests()}
        grouped: dict[str, list[TestResult]] = {}
        for test_id, result in self.ended:
            grouped.setdefault(titles[test_id], []).append(result)
        return grouped


@dataclass
class InlineRun:
    """Outcome of running inline test files in-process."""

    loaded: LoadResult
    results: list[TestResult] = field(default_factory=list)
    errors: list[TestError] = field(default_factory=list)

    @property
    def statuses(self) -> list[str]:
        return [result.status.value for result in self.results]


@pytest.fixture
def inline_files(tmp_path: Path):
    """Write ``{name: source}`` files under tmp_path and return the directory."""

    def write(files: dict[str, str]) -> Path:
        for name, source in files.items():
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(source))
        return tmp_path

    yield write

    for name, module in list(sys.modules.items()):
        module_file = getattr(module, "__file__", None) or ""
        if module_file.startswith(str(tmp_path)):
            del sys.modules[name]
    while str(tmp_path) in sys.path:
        sys.path.remove(str(tmp_path))


@pytest.fixture
def run_inline(
    inline_files: Callable[[dict[str, str]], Path], tmp_path: Path
) -> Callable[..., Awaitable[InlineRun]]:
    """Load inline test files and run them on in-process workers."""

    async def run(
        files: dict[str, str],
        timeout: float = 5.0,
        parameters: dict[str, str] | None = None,
    ) -> InlineRun:
        directory = inline_files(files)
        loader = TestLoader(timeout=timeout, parameters=parameters)
        outcome = InlineRun(loaded=loader.load([directory]))
        outcome.errors.extend(outcome.loaded.errors)

        workers: dict[str, Worker] = {}
        next_index = 0
        for test in outcome.loaded.all_tests():
            worker = workers.get(test.fingerprint)
            if worker is None:
                worker = Worker(next_index, test.fingerprint, parameters, tmp_path / "results")
                workers[test.fingerprint] = worker
                next_index += 1
            run_outcome = await worker.run_test(test)
            outcome.errors.extend(run_outcome.errors)
            if run_outcome.timed_out:
                outcome.errors.extend(await worker.shutdown())
                del workers[test.fingerprint]
            test.results.append(run_outcome.result)
            outcome.results.append(run_outcome.result)

        for worker in workers.values():
            outcome.errors.extend(await worker.shutdown())
        return outcome

    return run
