"""
Quire - Test runner with scoped, dependency-injected fixtures.

Tests request fixtures by keyword-only parameter name. Fixtures are generator
functions scoped to a test or to a worker process, resolved through their
own parameters and torn down in reverse order, even when a test times out.

Usage:
    quire run tests/           # Run tests
    quire collect tests/       # List tests and their fixture plans
    quire config               # Print a sample configuration
"""

__version__ = "0.1.0"

from quire.analysis.parser import use
from quire.testing.declarations import Fixtures, base_fixtures, it, test
from quire.testing.loader import describe
from quire.testing.models import SkipTest, TestInfo, WorkerInfo

__all__ = [
    "Fixtures",
    "SkipTest",
    "TestInfo",
    "WorkerInfo",
    "__version__",
    "base_fixtures",
    "describe",
    "it",
    "test",
    "use",
]
