"""
Test runner: load, dispatch, report.

The runner is the boundary of the engine. Whatever happens while loading or
running tests ends up as a test result or a run-level error handed to the
reporter, and the run ends with an exit status: 0 when every test has its
expected outcome and no run-level error was reported, 1 otherwise.
"""

import asyncio
from collections.abc import Iterable
from pathlib import Path

from quire.config import RunConfig
from quire.logging_config import get_logger
from quire.reporting.base import Reporter
from quire.runtime.scheduler import Dispatcher
from quire.testing.loader import LoadResult, TestLoader
from quire.testing.models import Suite, TestError

logger = get_logger(__name__)


class Runner:
    """
    Runs the tests under a set of paths.

    Usage:
        runner = Runner(RunConfig(workers=4), JSONReporter())
        exit_code = runner.run(["tests/"])
    """

    def __init__(self, config: RunConfig, reporter: Reporter) -> None:
        self.config = config
        self.reporter = reporter

    def load(self, paths: Iterable[str | Path] = ()) -> LoadResult:
        """Load test files; a missing path becomes a run-level error."""
        paths = list(paths) or [self.config.test_dir]
        loader = TestLoader(
            test_match=self.config.test_match,
            timeout=self.config.timeout,
            parameters=self.config.parameters,
            grep=self.config.grep,
        )
        try:
            return loader.load(paths)
        except FileNotFoundError as e:
            return LoadResult(root=Suite(title=""), errors=[TestError.from_exception(e)])

    def run(self, paths: Iterable[str | Path] = ()) -> int:
        """Run synchronously and return the exit status."""
        return asyncio.run(self.run_async(paths))

    async def run_async(self, paths: Iterable[str | Path] = ()) -> int:
        """Run the tests and return the exit status."""
        loaded = self.load(paths)
        tests = list(loaded.all_tests())
        self.reporter.on_begin(self.config, loaded.root)
        for error in loaded.errors:
            self.reporter.on_error(error)
        logger.info("run.started", tests=len(tests), load_errors=len(loaded.errors))

        dispatcher = Dispatcher(self.config, tests, self.reporter)
        deadline = asyncio.timeout(self.config.global_timeout or None)
        failed = bool(loaded.errors)
        try:
            async with deadline:
                await dispatcher.run()
        except TimeoutError:
            if not deadline.expired():
                raise
            logger.warning("run.timed_out", global_timeout=self.config.global_timeout)
            self.reporter.on_timeout(self.config.global_timeout)
            return 1
        except Exception as e:
            logger.exception("run.dispatch_failed")
            self.reporter.on_error(TestError.from_exception(e))
            failed = True

        self.reporter.on_end()
        failed = failed or dispatcher.has_errors or not all(test.ok() for test in tests)
        logger.info("run.finished", failed=failed)
        return 1 if failed else 0
