"""
Quire Testing Engine.

Fixture registry, resolution and lifecycle, the declaration API and the
test loader.
"""

from quire.testing.declarations import (
    Fixtures,
    base_fixtures,
    it,
    test,
)
from quire.testing.fixtures import (
    CyclicDependencyError,
    DuplicateFixtureError,
    FixtureDefinition,
    FixtureError,
    FixtureNotFoundError,
    FixtureRegistry,
    FixtureResolver,
    FixtureScope,
    FixtureTeardownError,
    LifecycleManager,
    MalformedFixtureError,
    ResolvedPlan,
    ScopedFixtureManager,
    ScopeMismatchError,
    UnknownFixtureError,
)
from quire.testing.loader import LoadResult, TestLoader, describe
from quire.testing.models import (
    SkipTest,
    Spec,
    Suite,
    Test,
    TestError,
    TestInfo,
    TestResult,
    TestStatus,
    WorkerInfo,
)

__all__ = [
    # Declarations
    "Fixtures",
    "base_fixtures",
    "describe",
    "it",
    "test",
    # Fixture engine
    "FixtureDefinition",
    "FixtureRegistry",
    "FixtureResolver",
    "FixtureScope",
    "LifecycleManager",
    "ResolvedPlan",
    "ScopedFixtureManager",
    # Fixture errors
    "CyclicDependencyError",
    "DuplicateFixtureError",
    "FixtureError",
    "FixtureNotFoundError",
    "FixtureTeardownError",
    "MalformedFixtureError",
    "ScopeMismatchError",
    "UnknownFixtureError",
    # Loading
    "LoadResult",
    "TestLoader",
    # Models
    "SkipTest",
    "Spec",
    "Suite",
    "Test",
    "TestError",
    "TestInfo",
    "TestResult",
    "TestStatus",
    "WorkerInfo",
]
