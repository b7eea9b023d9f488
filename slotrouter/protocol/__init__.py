"""Protocol module: batch operations sent to nodes and per-key outcomes."""

from .commands import (
    BatchOperation,
    ErrorKind,
    KeyOutcome,
    ResultStatus,
    TransportResult,
)

__all__ = [
    "BatchOperation",
    "ErrorKind",
    "KeyOutcome",
    "ResultStatus",
    "TransportResult",
]
