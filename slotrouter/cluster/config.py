"""
Static Cluster Layout Module

Describes a cluster whose slot ownership is known up front, and serves it
as a discovery collaborator for the router.

Default Layout (three masters, as created by redis-cli --cluster create):
- Node 1: slots 0-5460
- Node 2: slots 5461-10922
- Node 3: slots 10923-16383

Node identifiers are "host:port" strings.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..config.settings import settings
from .topology import HASH_SLOTS, SlotRange, SlotTable

logger = logging.getLogger(__name__)


def parse_nodes(spec: str) -> List[str]:
    """
    Parse a "host:port,host:port" list.

    Args:
        spec: Comma separated node addresses

    Returns:
        Node ids in the given order, normalised to "host:port"

    Raises:
        ValueError: If an entry has no port or a non-numeric port
    """
    nodes = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        host, sep, port = part.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid node address: {part!r}. Expected host:port")
        nodes.append(f"{host}:{int(port)}")
    return nodes


def even_slot_ranges(nodes: Sequence[str]) -> List[SlotRange]:
    """
    Split all slots into contiguous ranges, one per node.

    Uses the same rounding as redis-cli, so three nodes get
    0-5460, 5461-10922 and 10923-16383.
    """
    if not nodes:
        raise ValueError("At least one node is required")
    per_node = HASH_SLOTS / len(nodes)
    ranges = []
    first = 0
    for i, node in enumerate(nodes):
        last = HASH_SLOTS - 1 if i == len(nodes) - 1 else round(first + per_node - 1)
        ranges.append((first, last, node))
        first = last + 1
        per_node = (HASH_SLOTS - first) / max(len(nodes) - i - 1, 1)
    return ranges


class ClusterLayout:
    """
    Static slot ownership for a set of nodes.

    This class provides methods to determine:
    - Which node owns a slot
    - Which slot ranges a node owns
    """

    def __init__(self, ranges: Sequence[SlotRange]):
        """
        Initialize the layout.

        Args:
            ranges: (start, end, node_id) slot ranges, both ends inclusive
        """
        self.ranges: Tuple[SlotRange, ...] = tuple(ranges)
        self.nodes: List[str] = []
        for _, _, node in self.ranges:
            if node not in self.nodes:
                self.nodes.append(node)

    @classmethod
    def evenly(cls, nodes: Sequence[str]) -> "ClusterLayout":
        """Layout splitting all slots evenly across nodes."""
        return cls(even_slot_ranges(nodes))

    @classmethod
    def from_settings(cls, nodes: Optional[str] = None) -> "ClusterLayout":
        """Layout from SLOTROUTER_NODES (or the given node list)."""
        spec = nodes if nodes is not None else settings.NODES
        parsed = parse_nodes(spec)
        if not parsed:
            raise ValueError("No cluster nodes configured; set SLOTROUTER_NODES")
        return cls.evenly(parsed)

    def ranges_for(self, node: str) -> List[Tuple[int, int]]:
        """
        Get the slot ranges owned by a node.

        Raises:
            ValueError: If the node is not part of the layout
        """
        if node not in self.nodes:
            raise ValueError(f"Unknown node: {node}")
        return [(start, end) for start, end, owner in self.ranges if owner == node]

    def to_table(self) -> SlotTable:
        return SlotTable.from_ranges(self.ranges)

    def __repr__(self) -> str:
        return f"ClusterLayout(nodes={self.nodes}, ranges={len(self.ranges)})"


class StaticDiscovery:
    """
    Discovery collaborator that always reports a fixed layout.

    Useful for clusters with a pinned topology and for tests. Tracks how
    many refreshes were requested.
    """

    def __init__(self, layout: ClusterLayout):
        self.layout = layout
        self.refresh_count = 0

    async def refresh_topology(self) -> SlotTable:
        self.refresh_count += 1
        table = self.layout.to_table()
        logger.debug(f"Static discovery served {table!r}")
        return table

    def describe(self) -> Dict[str, List[Tuple[int, int]]]:
        return {node: self.layout.ranges_for(node) for node in self.layout.nodes}
