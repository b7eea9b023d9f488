"""
Cluster Topology Module

Maps every hash slot to the node that owns it.

A SlotTable is an immutable snapshot of the slot ownership. The TopologyMap
holds the current snapshot and swaps in a new one on every refresh, so a
reader always sees one whole table, never a mix of old and new entries.
Slots with no known owner map to None.
"""

import logging
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple, Union

from ..config.settings import settings

logger = logging.getLogger(__name__)

HASH_SLOTS = settings.HASH_SLOTS

NodeId = Hashable
SlotRange = Tuple[int, int, NodeId]
MappingSource = Union["SlotTable", Mapping[int, NodeId], Iterable[SlotRange]]


def _check_slot(slot: int) -> None:
    if not 0 <= slot < HASH_SLOTS:
        raise ValueError(f"Invalid slot: {slot}. Must be 0-{HASH_SLOTS - 1}")


class SlotTable:
    """
    Immutable slot -> node snapshot.

    Can be built from:
    - another SlotTable (returned as-is by from_source)
    - a mapping {slot: node_id}
    - an iterable of (start, end, node_id) ranges, both ends inclusive
    """

    __slots__ = ("_owners",)

    def __init__(self, owners: Iterable[Optional[NodeId]] = ()):
        owners = tuple(owners)
        if len(owners) > HASH_SLOTS:
            raise ValueError(f"SlotTable holds at most {HASH_SLOTS} slots, got {len(owners)}")
        self._owners: Tuple[Optional[NodeId], ...] = owners + (None,) * (HASH_SLOTS - len(owners))

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, NodeId]) -> "SlotTable":
        owners: List[Optional[NodeId]] = [None] * HASH_SLOTS
        for slot, node in mapping.items():
            _check_slot(slot)
            owners[slot] = node
        return cls(owners)

    @classmethod
    def from_ranges(cls, ranges: Iterable[SlotRange]) -> "SlotTable":
        owners: List[Optional[NodeId]] = [None] * HASH_SLOTS
        for start, end, node in ranges:
            _check_slot(start)
            _check_slot(end)
            if start > end:
                raise ValueError(f"Invalid slot range: {start}-{end}")
            owners[start:end + 1] = [node] * (end - start + 1)
        return cls(owners)

    @classmethod
    def from_source(cls, source: MappingSource) -> "SlotTable":
        """Build a table from whatever a discovery collaborator returned."""
        if isinstance(source, SlotTable):
            return source
        if isinstance(source, Mapping):
            return cls.from_mapping(source)
        return cls.from_ranges(source)

    def node_for(self, slot: int) -> Optional[NodeId]:
        """Owner of a slot, or None when unknown."""
        _check_slot(slot)
        return self._owners[slot]

    def nodes(self) -> List[NodeId]:
        """Distinct owners in slot order."""
        seen: Dict[NodeId, None] = {}
        for node in self._owners:
            if node is not None:
                seen.setdefault(node, None)
        return list(seen)

    def slots_of(self, node: NodeId) -> List[int]:
        return [slot for slot, owner in enumerate(self._owners) if owner == node]

    def coverage(self) -> int:
        """Number of slots with a known owner."""
        return sum(1 for owner in self._owners if owner is not None)

    @property
    def is_complete(self) -> bool:
        return self.coverage() == HASH_SLOTS

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SlotTable):
            return NotImplemented
        return self._owners == other._owners

    def __hash__(self) -> int:
        return hash(self._owners)

    def __repr__(self) -> str:
        return f"SlotTable(nodes={len(self.nodes())}, coverage={self.coverage()}/{HASH_SLOTS})"


class TopologyMap:
    """
    Holder of the current SlotTable.

    Single writer (the discovery collaborator, through replace()), many
    readers. Readers that need several lookups to agree should take one
    snapshot() and use it for the whole operation.
    """

    def __init__(self, source: Optional[MappingSource] = None):
        self._table = SlotTable() if source is None else SlotTable.from_source(source)
        self.version = 0

    def snapshot(self) -> SlotTable:
        return self._table

    def node_for(self, slot: int) -> Optional[NodeId]:
        """Owner of a slot in the current table, or None when unknown."""
        return self._table.node_for(slot)

    def replace(self, source: MappingSource) -> SlotTable:
        """
        Swap in a whole new table.

        Args:
            source: A SlotTable, a {slot: node} mapping or (start, end, node) ranges

        Returns:
            The table now being served
        """
        table = SlotTable.from_source(source)
        self._table = table
        self.version += 1
        logger.debug(f"Topology replaced (version {self.version}): {table!r}")
        return table

    def __repr__(self) -> str:
        return f"TopologyMap(version={self.version}, table={self._table!r})"
