"""Error types raised by the versioned storage engine."""

from __future__ import annotations

import inspect
import os
from dataclasses import dataclass
from types import FrameType

_THIS_FILE = os.path.normcase(os.path.abspath(__file__))


@dataclass(frozen=True)
class ErrorLocation:
    """A source position (file, line, column) where an error was raised."""

    file: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"

    @staticmethod
    def here() -> "ErrorLocation":
        """Return the location of the code that calls this method."""
        frame = inspect.currentframe()
        caller = frame.f_back if frame is not None else None
        try:
            return _location_of(caller)
        finally:
            del frame, caller


def _location_of(frame: FrameType | None) -> ErrorLocation:
    if frame is None:
        return ErrorLocation("<unknown>", 0, 0)
    code = frame.f_code
    column = 0
    positions = getattr(code, "co_positions", None)
    if positions is not None and frame.f_lasti >= 0:
        spans = list(positions())
        index = frame.f_lasti // 2
        if index < len(spans) and spans[index][2] is not None:
            column = spans[index][2] + 1
    return ErrorLocation(code.co_filename, frame.f_lineno, column)


def _outside_location() -> ErrorLocation:
    """Locate the first frame outside this module (where the error was built)."""
    frame = inspect.currentframe()
    try:
        while frame is not None and (
            os.path.normcase(os.path.abspath(frame.f_code.co_filename)) == _THIS_FILE
        ):
            frame = frame.f_back
        return _location_of(frame)
    finally:
        del frame


class StorageError(Exception):
    """Base class of every storage error; carries where it was raised."""

    def __init__(
        self,
        description: str,
        detail: str = "",
        *,
        location: ErrorLocation | None = None,
    ) -> None:
        self.description = description
        self.detail = detail
        self.location = location if location is not None else _outside_location()
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.detail:
            return f"{self.description} @ {self.location}: {self.detail}"
        return f"{self.description} @ {self.location}"


class ColumnFamilyNotFound(StorageError):
    """Raised when a named column family does not exist."""

    def __init__(self, name: str, *, location: ErrorLocation | None = None) -> None:
        self.name = name
        super().__init__(
            "column family not found",
            name,
            location=location if location is not None else _outside_location(),
        )


class BackendError(StorageError):
    """Raised when the underlying storage operation (I/O) fails."""

    def __init__(
        self, source: BaseException, *, location: ErrorLocation | None = None
    ) -> None:
        self.source = source
        super().__init__(
            "storage backend operation failed",
            str(source),
            location=location if location is not None else _outside_location(),
        )
        self.__cause__ = source