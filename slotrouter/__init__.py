"""
slot-router: Slot-Aware Batch Dispatch

Client-side routing for a sharded key-value store with 16384 hash slots.
Computes the slot of every key, groups keys per owning node and sends one
batched sub-request per node, reporting a per-key outcome.
"""

from .cluster import ClusterLayout, ClusterRouter, StaticDiscovery, TopologyMap, key_slot
from .protocol import BatchOperation, ErrorKind, KeyOutcome, TransportResult

__version__ = "1.0.0"

__all__ = [
    "BatchOperation",
    "ClusterLayout",
    "ClusterRouter",
    "ErrorKind",
    "KeyOutcome",
    "StaticDiscovery",
    "TopologyMap",
    "TransportResult",
    "key_slot",
]
