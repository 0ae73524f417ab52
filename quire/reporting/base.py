"""
Reporter interface.

Reporters observe a run: the loaded suite tree, each test as it begins and
ends, run-level errors, a global timeout and the end of the run. Every hook
defaults to doing nothing.
"""

from quire.config import RunConfig
from quire.testing.models import Suite, Test, TestError, TestResult


class Reporter:
    """Base reporter with no-op hooks."""

    def on_begin(self, config: RunConfig, suite: Suite) -> None:
        pass

    def on_test_begin(self, test: Test) -> None:
        pass

    def on_test_end(self, test: Test, result: TestResult) -> None:
        pass

    def on_error(self, error: TestError) -> None:
        pass

    def on_timeout(self, timeout: float) -> None:
        pass

    def on_end(self) -> None:
        pass


class Multiplexer(Reporter):
    """Forwards every hook to several reporters, in order."""

    def __init__(self, reporters: list[Reporter]) -> None:
        self.reporters = reporters

    def on_begin(self, config: RunConfig, suite: Suite) -> None:
        for reporter in self.reporters:
            reporter.on_begin(config, suite)

    def on_test_begin(self, test: Test) -> None:
        for reporter in self.reporters:
            reporter.on_test_begin(test)

    def on_test_end(self, test: Test, result: TestResult) -> None:
        for reporter in self.reporters:
            reporter.on_test_end(test, result)

    def on_error(self, error: TestError) -> None:
        for reporter in self.reporters:
            reporter.on_error(error)

    def on_timeout(self, timeout: float) -> None:
        for reporter in self.reporters:
            reporter.on_timeout(timeout)

    def on_end(self) -> None:
        for reporter in self.reporters:
            reporter.on_end()
