"""
Stdio capture for test runs.

Replaces sys.stdout and sys.stderr while a test runs. Text writes are kept
as ``str`` chunks; binary writes through ``.buffer`` are kept as ``bytes``.
"""

import io
import sys
from typing import Any


class _BufferCapture(io.RawIOBase):
    """Binary side of a captured stream."""

    def __init__(self, chunks: list[str | bytes]) -> None:
        super().__init__()
        self._chunks = chunks

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        chunk = bytes(data)
        if chunk:
            self._chunks.append(chunk)
        return len(chunk)


class CapturedStream(io.TextIOBase):
    """Text stream recording every write as a chunk."""

    def __init__(self, name: str, chunks: list[str | bytes]) -> None:
        super().__init__()
        self.name = name
        self._chunks = chunks
        self.buffer = _BufferCapture(chunks)

    @property
    def encoding(self) -> str:
        return "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def write(self, text: str) -> int:
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        if text:
            self._chunks.append(text)
        return len(text)


class OutputCapture:
    """Context manager collecting stdout and stderr chunks.

    Example:
        >>> with OutputCapture() as capture:
        ...     print("hello")
        >>> capture.stdout
        ['hello', '\\n']
    """

    def __init__(self) -> None:
        self.stdout: list[str | bytes] = []
        self.stderr: list[str | bytes] = []
        self._saved: tuple[Any, Any] | None = None

    def __enter__(self) -> "OutputCapture":
        self._saved = (sys.stdout, sys.stderr)
        sys.stdout = CapturedStream("<stdout>", self.stdout)
        sys.stderr = CapturedStream("<stderr>", self.stderr)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._saved is not None:
            sys.stdout, sys.stderr = self._saved
            self._saved = None
