"""
Messages exchanged between the runner and its worker processes.

Each worker owns one pipe. The runner sends RunRequest batches (all tests of
one file that share a fingerprint) and a final StopRequest; the worker
answers with events. Messages are pydantic models and travel pickled.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from quire.config import RunConfig
from quire.testing.models import TestError, TestResult


class TestEntry(BaseModel):
    """One scheduled run of a test."""

    __test__ = False

    model_config = {"frozen": True}

    test_id: str
    retry: int = 0


class WorkerInit(BaseModel):
    """Arguments of a worker process."""

    index: int
    fingerprint: str
    config: RunConfig


# =============================================================================
# Runner -> Worker
# =============================================================================


class RunRequest(BaseModel):
    type: Literal["run"] = "run"
    file: str
    entries: list[TestEntry]


class StopRequest(BaseModel):
    type: Literal["stop"] = "stop"


# =============================================================================
# Worker -> Runner
# =============================================================================


class TestBeginEvent(BaseModel):
    __test__ = False

    type: Literal["test_begin"] = "test_begin"
    entry: TestEntry
    worker_index: int


class TestEndEvent(BaseModel):
    __test__ = False

    type: Literal["test_end"] = "test_end"
    entry: TestEntry
    result: TestResult


class ErrorEvent(BaseModel):
    """A run-level error, e.g. a failing fixture teardown."""

    type: Literal["error"] = "error"
    error: TestError


class DoneEvent(BaseModel):
    """The batch is finished.

    ``retire`` is set when the worker stops after this batch (a test timed
    out); ``remaining`` lists the entries it did not run.
    """

    type: Literal["done"] = "done"
    retire: bool = False
    remaining: list[TestEntry] = Field(default_factory=list)


class StoppedEvent(BaseModel):
    """Worker fixtures are torn down and the process is about to exit."""

    type: Literal["stopped"] = "stopped"


RunnerMessage = Annotated[Union[RunRequest, StopRequest], Field(discriminator="type")]

WorkerMessage = Annotated[
    Union[TestBeginEvent, TestEndEvent, ErrorEvent, DoneEvent, StoppedEvent],
    Field(discriminator="type"),
]
