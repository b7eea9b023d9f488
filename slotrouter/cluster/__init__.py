"""
Cluster module for slot-aware routing.

This module provides:
- Key hashing and hash-tag extraction
- The slot -> node topology snapshot
- Static cluster layouts and discovery
- Batch grouping and multi-node dispatch
"""

from .config import ClusterLayout, StaticDiscovery, even_slot_ranges, parse_nodes
from .grouper import BatchGrouper, DispatchGroup, GroupingMode, GroupingResult
from .hashing import (
    CrossSlotKeysError,
    MalformedKeyError,
    crc16,
    determine_slot,
    hash_input,
    key_slot,
)
from .router import ClusterRouter, Discovery, TopologyRefreshError, Transport
from .topology import SlotTable, TopologyMap

__all__ = [
    'BatchGrouper',
    'ClusterLayout',
    'ClusterRouter',
    'CrossSlotKeysError',
    'Discovery',
    'DispatchGroup',
    'GroupingMode',
    'GroupingResult',
    'MalformedKeyError',
    'SlotTable',
    'StaticDiscovery',
    'TopologyMap',
    'TopologyRefreshError',
    'Transport',
    'crc16',
    'determine_slot',
    'even_slot_ranges',
    'hash_input',
    'key_slot',
    'parse_nodes',
]
