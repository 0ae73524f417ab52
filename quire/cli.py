"""
Quire CLI - Command-line interface for the test runner.

Provides commands for running tests, listing collected tests with their
fixture plans, and generating a sample configuration.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text
from rich.tree import Tree

from quire.config import ReporterSettings, RunConfig, RunConfigLoader, parse_parameters
from quire.logging_config import setup_logging
from quire.reporting import JSONReporter, ListReporter, Multiplexer, Reporter
from quire.runtime.runner import Runner
from quire.testing.models import Suite

app = typer.Typer(
    name="quire",
    help="Test runner with scoped, dependency-injected fixtures",
    add_completion=False,
)

console = Console()

REPORTERS = ("list", "json")


def version_callback(value: bool) -> None:
    """Display version information."""
    if value:
        from quire import __version__

        console.print(f"[bold blue]Quire[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Quire - Test runner with worker-scoped and test-scoped fixtures."""
    pass


def _load_config(config: str | None, **overrides: object) -> RunConfig:
    """Read the YAML configuration and apply command-line overrides."""
    try:
        base = RunConfigLoader.from_yaml(config) if config else RunConfigLoader.discover(".")
        return base.with_overrides(**overrides)
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Config file not found: {config}")
        raise typer.Exit(2) from None
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid configuration\n{escape(str(e))}")
        raise typer.Exit(2) from None


def _build_reporter(names: list[str]) -> Reporter:
    reporters: list[Reporter] = []
    for name in names:
        if name == "list":
            reporters.append(ListReporter(console))
        elif name == "json":
            reporters.append(JSONReporter(ReporterSettings()))
        else:
            console.print(f"[red]Error:[/red] Unknown reporter: {name}. Use one of: list, json")
            raise typer.Exit(2)
    return reporters[0] if len(reporters) == 1 else Multiplexer(reporters)


@app.command()
def run(
    paths: list[str] = typer.Argument(None, help="Test files or directories"),
    config: str = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    workers: int = typer.Option(None, "--workers", "-j", help="Maximum worker processes"),
    timeout: float = typer.Option(None, "--timeout", help="Per-test timeout in seconds"),
    retries: int = typer.Option(None, "--retries", help="Retries for failed tests"),
    param: list[str] = typer.Option(None, "--param", "-p", help="Parameter as name=value"),
    reporter: list[str] = typer.Option(
        None, "--reporter", "-r", help="Reporter: list, json (repeatable)"
    ),
    grep: str = typer.Option(None, "--grep", "-g", help="Only run tests matching this regex"),
    output_dir: str = typer.Option(None, "--output-dir", help="Root for per-test output"),
    global_timeout: float = typer.Option(
        None, "--global-timeout", help="Timeout for the whole run in seconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Verbose logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """
    Run tests.

    Loads the test files, schedules them on worker processes grouped by
    fixture fingerprint, and reports the results.
    """
    try:
        parameters = parse_parameters(param)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from None

    run_config = _load_config(
        config,
        workers=workers,
        timeout=timeout,
        retries=retries,
        grep=grep,
        output_dir=output_dir,
        global_timeout=global_timeout,
        log_level="DEBUG" if verbose else None,
        json_logs=True if json_logs else None,
    )
    if parameters:
        run_config = run_config.with_overrides(
            parameters={**run_config.parameters, **parameters}
        )
    setup_logging(run_config.log_level, run_config.json_logs)

    runner = Runner(run_config, _build_reporter(reporter or ["list"]))
    raise typer.Exit(runner.run(paths or []))


def _add_suite(node: Tree, suite: Suite) -> None:
    for spec in suite.specs:
        for test in spec.tests:
            plan = ", ".join(test.plan.names) or "-"
            flags = " [yellow](skip)[/yellow]" if test.skip else ""
            node.add(
                f"{escape(spec.title)}{flags} [dim]{spec.location.line}[/dim]\n"
                f"[dim]fingerprint {test.fingerprint} · fixtures: {escape(plan)}[/dim]"
            )
    for child in suite.suites:
        _add_suite(node.add(f"[cyan]{escape(child.title)}[/cyan]"), child)


@app.command()
def collect(
    paths: list[str] = typer.Argument(None, help="Test files or directories"),
    config: str = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    grep: str = typer.Option(None, "--grep", "-g", help="Only list tests matching this regex"),
) -> None:
    """
    List collected tests with their fixture plans.

    Imports the test files without running anything.
    """
    run_config = _load_config(config, grep=grep)
    setup_logging(run_config.log_level, run_config.json_logs)
    loaded = Runner(run_config, Reporter()).load(paths or [])

    tree = Tree("[bold]Collected tests[/bold]")
    for file_suite in loaded.root.suites:
        _add_suite(tree.add(f"📄 [bold]{escape(file_suite.title)}[/bold]"), file_suite)
    console.print(tree)
    console.print(f"\n[bold]{sum(1 for _ in loaded.all_tests())}[/bold] test(s)")

    for error in loaded.errors:
        console.print(Panel(Text(error.stack or error.message), title="Error", border_style="red"))
    if loaded.errors:
        raise typer.Exit(1)


@app.command(name="config")
def config_command(
    output: str = typer.Option(None, "--output", "-o", help="Write the sample to this file"),
) -> None:
    """Print a sample quire.yaml configuration."""
    sample = RunConfigLoader.generate_sample_config()
    if output:
        Path(output).write_text(sample)
        console.print(f"[green]✓[/green] Sample configuration written to {output}")
    else:
        console.print(sample, markup=False, highlight=False)


if __name__ == "__main__":
    app()
