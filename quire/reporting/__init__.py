"""
Quire Reporting.

Reporters observing a test run:
- base: Reporter interface and Multiplexer
- json_report: JSON document of the whole run
- console: rich list reporter
"""

from quire.reporting.base import Multiplexer, Reporter
from quire.reporting.console import ListReporter
from quire.reporting.json_report import JSONReporter, get_commit_info, stdio_entry

__all__ = [
    "JSONReporter",
    "ListReporter",
    "Multiplexer",
    "Reporter",
    "get_commit_info",
    "stdio_entry",
]
