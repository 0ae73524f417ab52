"""
Console list reporter.

Prints one line per finished test, then failures, run-level errors and a
summary table. Output goes to a rich Console (stdout by default).
"""

import time

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from quire.config import RunConfig
from quire.reporting.base import Reporter
from quire.testing.models import Suite, Test, TestError, TestResult, TestStatus

STATUS_MARKS = {
    TestStatus.PASSED: "[green]✓[/green]",
    TestStatus.FAILED: "[red]✗[/red]",
    TestStatus.TIMED_OUT: "[red]⏱[/red]",
    TestStatus.SKIPPED: "[yellow]-[/yellow]",
}


class ListReporter(Reporter):
    """Human readable progress and summary."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.total = 0
        self.counts = {status: 0 for status in TestStatus}
        self.failures: list[tuple[Test, TestResult]] = []
        self.errors: list[TestError] = []
        self._started = 0.0

    def on_begin(self, config: RunConfig, suite: Suite) -> None:
        self.total = sum(1 for _ in suite.all_tests())
        self._started = time.monotonic()
        workers = "worker" if config.workers == 1 else "workers"
        self.console.print(
            f"\nRunning [bold]{self.total}[/bold] test(s) using {config.workers} {workers}\n"
        )

    def on_test_end(self, test: Test, result: TestResult) -> None:
        status = result.status or TestStatus.FAILED
        self.counts[status] += 1
        retry = f" [dim](retry #{result.retry})[/dim]" if result.retry else ""
        self.console.print(
            f"  {STATUS_MARKS[status]} [dim][{result.worker_index}][/dim] "
            f"{escape(test.full_title())}{retry} [dim]({result.duration}ms)[/dim]",
            highlight=False,
        )
        if status in (TestStatus.FAILED, TestStatus.TIMED_OUT):
            self.failures.append((test, result))

    def on_error(self, error: TestError) -> None:
        self.errors.append(error)

    def on_timeout(self, timeout: float) -> None:
        self.console.print(f"\n[red]Timed out waiting {timeout:g}s for the entire test run[/red]")
        self.on_end()

    def on_end(self) -> None:
        for index, (test, result) in enumerate(self.failures, start=1):
            message = result.error.stack or result.error.message if result.error else ""
            self.console.print(
                Panel(
                    Text(message),
                    title=escape(f"{index}) {test.full_title()} [{result.status.value}]"),
                    border_style="red",
                )
            )
        for error in self.errors:
            self.console.print(
                Panel(Text(error.stack or error.message), title="Error", border_style="red")
            )

        table = Table(show_header=True, header_style="bold")
        table.add_column("Status", style="cyan")
        table.add_column("Count")
        for status in TestStatus:
            table.add_row(status.value, str(self.counts[status]))
        table.add_row("errors", f"[red]{len(self.errors)}[/red]" if self.errors else "0")
        self.console.print(table)
        self.console.print(f"[dim]Duration: {time.monotonic() - self._started:.2f}s[/dim]")
