"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests:
in-memory stand-ins for the transport and discovery collaborators, and
ready-made topologies and routers.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from slotrouter.cluster.config import ClusterLayout, StaticDiscovery
from slotrouter.cluster.grouper import BatchGrouper, GroupingMode
from slotrouter.cluster.router import ClusterRouter
from slotrouter.cluster.topology import SlotTable, TopologyMap
from slotrouter.protocol.commands import BatchOperation, TransportResult

NODES = ["10.0.0.1:7001", "10.0.0.2:7002", "10.0.0.3:7003"]


# ============================================================================
# Collaborator Fakes
# ============================================================================

class FakeTransport:
    """
    Transport that answers from per-node handlers.

    Without a handler a node echoes every entry's value back as the key's
    result. A handler receives the BatchOperation and returns a
    TransportResult (or raises). Every call is recorded in `calls`.
    """

    def __init__(self):
        self.calls: List[Tuple[Any, BatchOperation]] = []
        self.handlers: Dict[Any, Callable[[BatchOperation], TransportResult]] = {}
        self.delays: Dict[Any, float] = {}

    async def send(self, node_id, operation: BatchOperation) -> TransportResult:
        self.calls.append((node_id, operation))
        delay = self.delays.get(node_id)
        if delay:
            await asyncio.sleep(delay)
        handler = self.handlers.get(node_id)
        if handler is None:
            return TransportResult.ok({key: value for key, value in operation.entries})
        return handler(operation)

    def calls_to(self, node_id) -> List[BatchOperation]:
        return [op for node, op in self.calls if node == node_id]


class FakeDiscovery:
    """
    Discovery that serves a scripted sequence of tables.

    Each refresh pops the next item; an exception instance is raised
    instead of returned. The last item is repeated once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.refresh_count = 0

    async def refresh_topology(self):
        self.refresh_count += 1
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


# ============================================================================
# Topology Fixtures
# ============================================================================

@pytest.fixture
def layout() -> ClusterLayout:
    """Three nodes with the default even slot split."""
    return ClusterLayout.evenly(NODES)


@pytest.fixture
def full_table(layout: ClusterLayout) -> SlotTable:
    return layout.to_table()


@pytest.fixture
def topology(full_table: SlotTable) -> TopologyMap:
    """Fully populated topology."""
    return TopologyMap(full_table)


@pytest.fixture
def empty_topology() -> TopologyMap:
    """Topology with no known slot owner, as at client startup."""
    return TopologyMap()


@pytest.fixture
def grouper(topology: TopologyMap) -> BatchGrouper:
    return BatchGrouper(topology, GroupingMode.NODE)


@pytest.fixture
def nodes() -> List[str]:
    return list(NODES)


# ============================================================================
# Router Fixtures
# ============================================================================

@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def discovery_factory():
    """Build a FakeDiscovery serving the given tables (or raising given exceptions)."""
    return FakeDiscovery


@pytest.fixture
def static_discovery(layout: ClusterLayout) -> StaticDiscovery:
    return StaticDiscovery(layout)


@pytest_asyncio.fixture
async def router(topology, transport, static_discovery) -> ClusterRouter:
    """Router over a fully populated three node topology."""
    return ClusterRouter(
        topology,
        transport,
        static_discovery,
        mode=GroupingMode.NODE,
        timeout=1.0,
        refresh_attempts=2,
    )


@pytest.fixture
def router_factory(transport):
    """
    Factory fixture to build routers over custom topologies.

    Usage:
        def test_something(router_factory):
            router = router_factory(TopologyMap(...), FakeDiscovery(...))
    """
    def factory(topology: TopologyMap, discovery, mode: Optional[GroupingMode] = GroupingMode.NODE,
                timeout: float = 1.0) -> ClusterRouter:
        return ClusterRouter(topology, transport, discovery, mode=mode, timeout=timeout, refresh_attempts=2)
    return factory


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
