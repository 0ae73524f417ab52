"""
JSON report writer.

Writes the whole run as one JSON document: configuration, commit and run
metadata, the suite tree with every result, and run-level errors. The report
goes to the file named by ``QUIRE_JSON_OUTPUT_NAME``, or to stdout.
"""

import base64
import json
import platform
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

from quire.config import ReporterSettings, RunConfig
from quire.logging_config import get_logger
from quire.reporting.base import Reporter
from quire.testing.models import Spec, Suite, Test, TestError, TestResult

logger = get_logger(__name__)


def stdio_entry(chunk: str | bytes) -> dict[str, str]:
    """Serialize one captured stdio chunk."""
    if isinstance(chunk, str):
        return {"text": chunk}
    return {"buffer": base64.b64encode(chunk).decode("ascii")}


def get_commit_info(repository_path: str | Path) -> dict[str, Any] | None:
    """Commit sha, timestamp and subject of HEAD, or None outside a git checkout."""
    try:
        completed = subprocess.run(
            ["git", "show", "-s", "--format=%H %ct %s", "HEAD"],
            cwd=repository_path,
            capture_output=True,
            check=False,
        )
    except OSError:
        # git is not installed
        return None
    if completed.returncode != 0:
        return None

    sha, _, rest = completed.stdout.decode("utf-8").strip().partition(" ")
    timestamp, _, message = rest.partition(" ")
    try:
        unix_timestamp = int(timestamp)
    except ValueError:
        return None
    return {"sha": sha, "unixTimestamp": unix_timestamp, "message": message}


class JSONReporter(Reporter):
    """
    Collects the run and writes it as JSON when the run ends.

    Usage:
        reporter = JSONReporter()
        reporter.on_begin(config, root_suite)
        ...
        reporter.on_end()
    """

    def __init__(self, settings: ReporterSettings | None = None) -> None:
        self.settings = settings or ReporterSettings()
        self.config: RunConfig | None = None
        self.suite: Suite | None = None
        self._errors: list[dict[str, Any]] = []

    def on_begin(self, config: RunConfig, suite: Suite) -> None:
        self.config = config
        self.suite = suite

    def on_error(self, error: TestError) -> None:
        self._errors.append({"error": error.model_dump(mode="json")})

    def on_timeout(self, timeout: float) -> None:
        self.on_end()

    def on_end(self) -> None:
        self.write()

    def to_dict(self) -> dict[str, Any]:
        """Convert the run to the report format."""
        suites: list[dict[str, Any]] = []
        if self.suite is not None:
            suites = [s for s in map(self._serialize_suite, self.suite.suites) if s]
        commit = (
            get_commit_info(Path(suites[0]["file"]).parent)
            if suites and suites[0]["file"]
            else None
        )

        report: dict[str, Any] = {
            "config": self.config.model_dump(mode="json") if self.config else {},
        }
        if commit is not None:
            report["commit"] = commit
        report["runInfo"] = {
            "url": self.settings.run_url,
            "buildbotName": self.settings.buildbot_name,
            "platform": sys.platform,
            "release": platform.release(),
            "arch": platform.machine(),
            "unixTimestamp": int(time.time()),
        }
        report["suites"] = suites
        report["errors"] = self._errors
        return report

    def to_json(self, indent: int = 2) -> str:
        """Convert report to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def write(self) -> None:
        """Write the report to QUIRE_JSON_OUTPUT_NAME, or stdout."""
        text = self.to_json()
        output_name = self.settings.json_output_name
        if output_name:
            output_path = Path(output_name)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(text)
            logger.info("report.written", path=str(output_path))
        else:
            print(text)

    def _serialize_suite(self, suite: Suite) -> dict[str, Any] | None:
        if suite.find_spec(lambda spec: True) is None:
            return None
        serialized: dict[str, Any] = {
            "title": suite.title,
            "file": suite.file,
            "location": str(suite.location) if suite.location else "",
            "specs": [self._serialize_spec(spec) for spec in suite.specs],
        }
        children = [s for s in map(self._serialize_suite, suite.suites) if s]
        if children:
            serialized["suites"] = children
        return serialized

    def _serialize_spec(self, spec: Spec) -> dict[str, Any]:
        return {
            "title": spec.title,
            "file": spec.file,
            "location": str(spec.location),
            "tests": [self._serialize_test(test) for test in spec.tests],
        }

    def _serialize_test(self, test: Test) -> dict[str, Any]:
        return {
            "slow": test.slow,
            "timeout": test.timeout,
            "annotations": test.annotations,
            "expectedStatus": test.expected_status.value,
            "parameters": test.parameters,
            "runs": [self._serialize_result(result) for result in test.results],
        }

    def _serialize_result(self, result: TestResult) -> dict[str, Any]:
        return {
            "workerIndex": result.worker_index,
            "status": result.status.value if result.status else None,
            "duration": result.duration,
            "error": result.error.model_dump(mode="json") if result.error else None,
            "stdout": [stdio_entry(chunk) for chunk in result.stdout],
            "stderr": [stdio_entry(chunk) for chunk in result.stderr],
            "data": result.data,
            "retry": result.retry,
        }
