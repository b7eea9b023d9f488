"""
Batch Grouping Module

Partitions the entries of a multi-key call into one group per owning node
(or per slot), so each group can be sent in a single round trip.

Entries whose slot has no known owner go to the needs_refresh bucket, and
entries whose key cannot be hashed go to the malformed bucket. Neither is
ever sent to a default node.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from ..config.settings import settings
from ..protocol.commands import BatchOperation
from .hashing import MalformedKeyError, key_slot
from .topology import NodeId, SlotTable, TopologyMap

logger = logging.getLogger(__name__)

Entry = Tuple[Any, Any]


class GroupingMode(Enum):
    """How entries are batched."""
    NODE = "node"  # one group per node
    SLOT = "slot"  # one group per slot, for stores rejecting cross-slot commands


@dataclass
class DispatchGroup:
    """
    Entries bound for one node in a single sub-request.

    Attributes:
        node_id: The owning node
        entries: (key, value) pairs in their original relative order
        slots: Distinct slots touched, in first-seen order
    """
    node_id: NodeId
    entries: List[Entry] = field(default_factory=list)
    slots: List[int] = field(default_factory=list)

    def add(self, entry: Entry, slot: int) -> None:
        self.entries.append(entry)
        if slot not in self.slots:
            self.slots.append(slot)

    @property
    def keys(self) -> List[Any]:
        return [key for key, _ in self.entries]

    def to_operation(self, command: str) -> BatchOperation:
        return BatchOperation(command=command, entries=list(self.entries), slots=tuple(self.slots))

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class PendingEntry:
    """An entry that could not be placed in a node group."""
    entry: Entry
    slot: Optional[int] = None
    message: str = ""

    @property
    def key(self) -> Any:
        return self.entry[0]


class GroupingResult(Dict[Hashable, DispatchGroup]):
    """
    Mapping of group key -> DispatchGroup.

    The group key is the node id in NODE mode and (node_id, slot) in SLOT
    mode. Entries that could not be grouped are kept in needs_refresh
    (unknown slot owner) and malformed (key not hashable).
    """

    def __init__(self):
        super().__init__()
        self.needs_refresh: List[PendingEntry] = []
        self.malformed: List[PendingEntry] = []

    @property
    def is_empty(self) -> bool:
        return not self and not self.needs_refresh and not self.malformed


class BatchGrouper:
    """
    Groups (key, value) entries by the node that owns each key's slot.

    Usage:
        grouper = BatchGrouper(topology)
        groups = grouper.group([("{user1}.name", "alice"), ("{user1}.age", "31")])
    """

    def __init__(self, topology: TopologyMap, mode: Optional[GroupingMode] = None):
        """
        Initialize the grouper.

        Args:
            topology: The topology holder to read snapshots from
            mode: Grouping mode (default from settings.GROUP_BY)
        """
        self.topology = topology
        self.mode = mode if mode is not None else GroupingMode(settings.GROUP_BY)

    def group(self, entries: Iterable[Entry], table: Optional[SlotTable] = None) -> GroupingResult:
        """
        Partition entries into per-node groups.

        Args:
            entries: Ordered (key, value) pairs
            table: Snapshot to resolve owners against (default: current snapshot)

        Returns:
            GroupingResult; empty for zero entries
        """
        if table is None:
            table = self.topology.snapshot()

        result = GroupingResult()
        for entry in entries:
            key = entry[0]
            try:
                slot = key_slot(key)
            except MalformedKeyError as e:
                logger.warning(f"Skipping malformed key {key!r}: {e}")
                result.malformed.append(PendingEntry(entry=entry, message=str(e)))
                continue

            node = table.node_for(slot)
            if node is None:
                result.needs_refresh.append(PendingEntry(entry=entry, slot=slot))
                continue

            group_key = node if self.mode is GroupingMode.NODE else (node, slot)
            group = result.get(group_key)
            if group is None:
                group = result[group_key] = DispatchGroup(node_id=node)
            group.add(entry, slot)

        logger.debug(
            f"Grouped entries into {len(result)} group(s), "
            f"{len(result.needs_refresh)} unknown, {len(result.malformed)} malformed"
        )
        return result

    def regroup(self, pending: Sequence[PendingEntry], table: SlotTable) -> GroupingResult:
        """Group previously unresolved entries against a newer snapshot."""
        return self.group([p.entry for p in pending], table)
