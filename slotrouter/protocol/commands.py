"""
Batch Operation and Outcome Definitions

This module defines the data structures exchanged with the transport
collaborator (BatchOperation in, TransportResult out) and the per-key
outcomes returned to callers (KeyOutcome).
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

# Commands whose entries carry no value; only keys go on the wire.
KEY_ONLY_COMMANDS = frozenset({"MGET", "DEL", "EXISTS", "UNLINK", "TOUCH"})


class ErrorKind(Enum):
    """Classification of a per-key failure."""
    TOPOLOGY_UNKNOWN = auto()
    NODE_UNREACHABLE = auto()
    REDIRECTED = auto()
    MALFORMED_KEY = auto()
    TIMEOUT = auto()
    TRANSPORT_ERROR = auto()


class ResultStatus(Enum):
    """Status of one sub-request reported by the transport."""
    OK = "OK"
    REDIRECT = "REDIRECT"
    UNREACHABLE = "UNREACHABLE"


@dataclass
class BatchOperation:
    """
    One batched sub-request for a single node.

    Attributes:
        command: Command name, e.g. MSET, MGET, DEL
        entries: Ordered (key, value) pairs; value is ignored for key-only commands
        slots: Slots touched by the entries
    """
    command: str
    entries: List[Tuple[Any, Any]] = field(default_factory=list)
    slots: Tuple[int, ...] = ()

    def __post_init__(self):
        self.command = self.command.upper()

    @property
    def keys(self) -> List[Any]:
        return [key for key, _ in self.entries]

    @property
    def is_key_only(self) -> bool:
        return self.command in KEY_ONLY_COMMANDS

    def arguments(self) -> List[Any]:
        """
        Flatten the entries into positional command arguments.

        Returns:
            [k1, v1, k2, v2, ...] for valued commands, [k1, k2, ...] for
            key-only commands. Every entry contributes once, in order.
        """
        if self.is_key_only:
            return self.keys
        args: List[Any] = []
        for key, value in self.entries:
            args.append(key)
            args.append(value)
        return args

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class TransportResult:
    """
    Outcome of one sub-request.

    Attributes:
        status: OK, REDIRECT or UNREACHABLE
        values: Per-key results for keys that were served
        target: Node the moved keys must be sent to (REDIRECT only)
        moved_keys: Keys that moved; None means the whole batch moved
        message: Error description
    """
    status: ResultStatus
    values: Dict[Hashable, Any] = field(default_factory=dict)
    target: Optional[Hashable] = None
    moved_keys: Optional[Tuple[Any, ...]] = None
    message: str = ""

    @classmethod
    def ok(cls, values: Optional[Dict[Hashable, Any]] = None) -> "TransportResult":
        """Create a successful result; keys missing from values get None."""
        return cls(status=ResultStatus.OK, values=dict(values or {}))

    @classmethod
    def redirect(
            cls,
            target: Hashable,
            keys: Optional[Sequence[Any]] = None,
            values: Optional[Dict[Hashable, Any]] = None,
            message: str = "",
    ) -> "TransportResult":
        """Create a redirect result for some (or all) keys of the batch."""
        return cls(
            status=ResultStatus.REDIRECT,
            values=dict(values or {}),
            target=target,
            moved_keys=tuple(keys) if keys is not None else None,
            message=message or f"moved to {target}",
        )

    @classmethod
    def unreachable(cls, message: str = "node unreachable") -> "TransportResult":
        """Create a 'node unreachable' result."""
        return cls(status=ResultStatus.UNREACHABLE, message=message)

    def moved(self, keys: Sequence[Any]) -> List[Any]:
        """Keys of the given batch affected by this redirect, in batch order."""
        if self.status != ResultStatus.REDIRECT:
            return []
        if self.moved_keys is None:
            return list(keys)
        moved = set(self.moved_keys)
        return [key for key in keys if key in moved]


@dataclass
class KeyOutcome:
    """
    Outcome of a single key in a dispatch.

    Attributes:
        ok: True if the key was served
        value: The value returned for the key (success only)
        error: Failure classification (failure only)
        message: Failure description
        node: Node that served (or last failed) the key, when known
    """
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""
    node: Optional[Hashable] = None

    @classmethod
    def success(cls, value: Any = None, node: Optional[Hashable] = None) -> "KeyOutcome":
        return cls(ok=True, value=value, node=node)

    @classmethod
    def failure(
            cls,
            error: ErrorKind,
            message: str = "",
            node: Optional[Hashable] = None,
    ) -> "KeyOutcome":
        return cls(ok=False, error=error, message=message, node=node)

    @classmethod
    def topology_unknown(cls, message: str = "slot has no known owner") -> "KeyOutcome":
        return cls.failure(ErrorKind.TOPOLOGY_UNKNOWN, message)

    @classmethod
    def timeout(cls, node: Optional[Hashable] = None) -> "KeyOutcome":
        return cls.failure(ErrorKind.TIMEOUT, "dispatch deadline exceeded", node)
