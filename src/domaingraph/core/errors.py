"""Error taxonomy shared across the graph, sync and query layers.

Service boundaries report failures as values (see :class:`ErrorKind`);
exceptions are reserved for conditions raised *inside* a layer and caught
by the layer above it.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Machine-readable error codes surfaced to callers."""

    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    CLASS_NOT_FOUND = "CLASS_NOT_FOUND"
    METHOD_NOT_FOUND = "METHOD_NOT_FOUND"
    INVALID_QUERY = "INVALID_QUERY"
    PARSE_FAILURE = "PARSE_FAILURE"
    SYNC_ANOMALY = "SYNC_ANOMALY"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    ENRICHMENT_FAILURE = "ENRICHMENT_FAILURE"
    SYNC_FAILED = "SYNC_FAILED"

    @property
    def is_not_found(self) -> bool:
        return self in _NOT_FOUND


_NOT_FOUND = frozenset(
    {ErrorKind.PROJECT_NOT_FOUND, ErrorKind.CLASS_NOT_FOUND, ErrorKind.METHOD_NOT_FOUND}
)


class DomainError(Exception):
    """Base exception carrying an :class:`ErrorKind`."""

    def __init__(self, message: str, kind: ErrorKind) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class ParseFailure(DomainError):
    """A single file could not be read or parsed."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {file_path}: {reason}", ErrorKind.PARSE_FAILURE)
        self.file_path = file_path


class InvalidQuery(DomainError):
    """A query string violates the navigation grammar."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.INVALID_QUERY)
