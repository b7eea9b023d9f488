"""
Cluster Router Module

Dispatches multi-key operations across cluster nodes.

Flow for one dispatch:
1. Group entries by owning node against one topology snapshot
2. Refresh the topology once for entries whose slot had no owner
3. Send one sub-request per group, all concurrently
4. Follow at most one redirect per key
5. Merge everything into a {key: KeyOutcome} map

Every key gets its own outcome; a failing node never hides the results of
the nodes that answered.
"""

import asyncio
import logging
from collections import abc
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Protocol

from ..config.settings import settings
from ..protocol.commands import BatchOperation, ErrorKind, KeyOutcome, ResultStatus, TransportResult
from .config import ClusterLayout, StaticDiscovery
from .grouper import BatchGrouper, DispatchGroup, Entry, GroupingMode, PendingEntry
from .hashing import key_slot
from .topology import MappingSource, NodeId, SlotTable, TopologyMap

logger = logging.getLogger(__name__)

Outcomes = Dict[Hashable, KeyOutcome]


class Transport(Protocol):
    """Sends one batched operation to one node."""

    async def send(self, node_id: NodeId, operation: BatchOperation) -> TransportResult:
        ...


class Discovery(Protocol):
    """Queries the cluster for the current slot ownership."""

    async def refresh_topology(self) -> MappingSource:
        ...


class TopologyRefreshError(Exception):
    """Raised when every topology refresh attempt failed."""


class ClusterRouter:
    """
    Routes multi-key operations to the nodes that own the keys.

    Responsibilities:
    - Group keys per node so each node is contacted once per dispatch
    - Refresh the topology when a slot has no known owner
    - Follow a single redirect hop for keys that moved
    - Report a per-key outcome, including partial failures and timeouts

    Usage:
        router = ClusterRouter(topology, transport, discovery)
        outcomes = await router.mset({"{user1}.name": "alice", "{user1}.age": "31"})
    """

    def __init__(
            self,
            topology: TopologyMap,
            transport: Transport,
            discovery: Discovery,
            mode: Optional[GroupingMode] = None,
            timeout: Optional[float] = None,
            refresh_attempts: Optional[int] = None,
    ):
        """
        Initialize the cluster router.

        Args:
            topology: Holder of the current slot table
            transport: Collaborator sending sub-requests to nodes
            discovery: Collaborator producing fresh slot tables
            mode: Grouping mode (default from settings.GROUP_BY)
            timeout: Dispatch deadline in seconds (default from settings)
            refresh_attempts: Refresh tries per dispatch (default from settings)
        """
        self.topology = topology
        self.transport = transport
        self.discovery = discovery
        self.grouper = BatchGrouper(topology, mode)
        self.timeout = timeout if timeout is not None else settings.DISPATCH_TIMEOUT
        self.refresh_attempts = max(
            1, refresh_attempts if refresh_attempts is not None else settings.REFRESH_ATTEMPTS
        )
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def from_layout(cls, layout: ClusterLayout, transport: Transport, **kwargs) -> "ClusterRouter":
        """Router over a static layout, served by StaticDiscovery."""
        return cls(TopologyMap(layout.to_table()), transport, StaticDiscovery(layout), **kwargs)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def slot_for(self, key: Any) -> int:
        return key_slot(key)

    def node_for_key(self, key: Any) -> Optional[NodeId]:
        """Owner of a key in the current topology, None if unknown."""
        return self.topology.node_for(key_slot(key))

    async def mset(self, mapping: Mapping[Any, Any], timeout: Optional[float] = None) -> Outcomes:
        return await self.dispatch(mapping.items(), command="MSET", timeout=timeout)

    async def mget(self, keys: Iterable[Any], timeout: Optional[float] = None) -> Outcomes:
        return await self.dispatch([(key, None) for key in keys], command="MGET", timeout=timeout)

    async def delete(self, *keys: Any, timeout: Optional[float] = None) -> Outcomes:
        return await self.dispatch([(key, None) for key in keys], command="DEL", timeout=timeout)

    async def refresh(self) -> SlotTable:
        """Force a topology refresh and return the new table."""
        async with self._refresh_lock:
            return await self._refresh_locked()

    async def dispatch(
            self,
            entries: Iterable[Entry],
            command: Optional[str] = None,
            timeout: Optional[float] = None,
    ) -> Outcomes:
        """
        Route a multi-key operation.

        Args:
            entries: Ordered (key, value) pairs
            command: Command name for the sub-requests (default MSET)
            timeout: Deadline in seconds for the whole dispatch (0 disables it)

        Returns:
            {key: KeyOutcome} with one outcome per distinct input key
        """
        command = command or settings.DEFAULT_COMMAND
        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None

        outcomes: Outcomes = {}
        entries = [self._normalise_entry(entry) for entry in entries]
        if not entries:
            return outcomes

        table = self.topology.snapshot()
        grouped = self.grouper.group(entries, table)
        for pending in grouped.malformed:
            key = pending.key if isinstance(pending.key, abc.Hashable) else repr(pending.key)
            outcomes[key] = KeyOutcome.failure(ErrorKind.MALFORMED_KEY, pending.message)

        groups: List[DispatchGroup] = list(grouped.values())
        if grouped.needs_refresh:
            groups.extend(await self._resolve_unknown(grouped.needs_refresh, table, deadline, outcomes))

        logger.debug(f"Dispatching {command} for {len(entries)} entries to {len(groups)} group(s)")
        await self._fan_out(groups, command, deadline, outcomes)
        return outcomes

    # ------------------------------------------------------------------
    # Topology refresh
    # ------------------------------------------------------------------

    async def _resolve_unknown(
            self,
            pending: List[PendingEntry],
            seen: SlotTable,
            deadline: Optional[float],
            outcomes: Outcomes,
    ) -> List[DispatchGroup]:
        """Refresh once and re-group entries whose slot had no owner."""
        slots = sorted({p.slot for p in pending})
        logger.warning(f"{len(pending)} key(s) in unknown slots {slots[:10]}, refreshing topology")
        try:
            table = await asyncio.wait_for(self._refresh_if_stale(seen), self._remaining(deadline))
        except asyncio.TimeoutError:
            for p in pending:
                outcomes[p.key] = KeyOutcome.timeout()
            return []
        except TopologyRefreshError as e:
            for p in pending:
                outcomes[p.key] = KeyOutcome.topology_unknown(str(e))
            return []

        regrouped = self.grouper.regroup(pending, table)
        for p in regrouped.needs_refresh:
            outcomes[p.key] = KeyOutcome.topology_unknown(f"slot {p.slot} has no known owner after refresh")
        return list(regrouped.values())

    async def _refresh_if_stale(self, seen: SlotTable) -> SlotTable:
        async with self._refresh_lock:
            current = self.topology.snapshot()
            if current is not seen:
                logger.debug("Topology refreshed by a concurrent dispatch, reusing it")
                return current
            return await self._refresh_locked()

    async def _refresh_locked(self) -> SlotTable:
        last_error = None
        for attempt in range(1, self.refresh_attempts + 1):
            try:
                source = await self.discovery.refresh_topology()
                return self.topology.replace(source)
            except Exception as e:
                last_error = e
                logger.warning(f"Topology refresh attempt {attempt}/{self.refresh_attempts} failed: {e}")
        raise TopologyRefreshError(
            f"topology refresh failed after {self.refresh_attempts} attempt(s): {last_error}"
        ) from last_error

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    async def _fan_out(
            self,
            groups: List[DispatchGroup],
            command: str,
            deadline: Optional[float],
            outcomes: Outcomes,
    ) -> None:
        if not groups:
            return

        partials: List[Outcomes] = [{} for _ in groups]
        tasks = [
            asyncio.ensure_future(self._run_group(group, command, partial))
            for group, partial in zip(groups, partials)
        ]
        done, pending = await asyncio.wait(tasks, timeout=self._remaining(deadline))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task, group, partial in zip(tasks, groups, partials):
            if task in pending:
                logger.error(f"Sub-request to node {group.node_id} exceeded the dispatch deadline")
                for key in group.keys:
                    partial.setdefault(key, KeyOutcome.timeout(group.node_id))
            elif not task.cancelled() and task.exception() is not None:
                error = task.exception()
                logger.error(f"Sub-request to node {group.node_id} failed: {type(error).__name__}: {error}")
                for key in group.keys:
                    partial.setdefault(key, KeyOutcome.failure(
                        ErrorKind.TRANSPORT_ERROR, f"{type(error).__name__}: {error}", group.node_id
                    ))
            outcomes.update(partial)

    async def _run_group(self, group: DispatchGroup, command: str, results: Outcomes) -> None:
        """Send one group, following a single redirect for keys that moved."""
        result = await self._send(group.node_id, group.to_operation(command), results)
        if result is None:
            return
        self._record(group.entries, group.node_id, result, results, final=False)

        moved = result.moved(group.keys)
        if not moved:
            return

        moved_keys = set(moved)
        moved_entries = [entry for entry in group.entries if entry[0] in moved_keys]
        target = result.target
        logger.warning(
            f"{len(moved_entries)} key(s) moved from node {group.node_id} to {target}, following redirect"
        )
        operation = BatchOperation(
            command=command,
            entries=moved_entries,
            slots=tuple(dict.fromkeys(key_slot(key) for key, _ in moved_entries)),
        )
        second = await self._send(target, operation, results)
        if second is not None:
            self._record(moved_entries, target, second, results, final=True)

    async def _send(
            self,
            node: NodeId,
            operation: BatchOperation,
            results: Outcomes,
    ) -> Optional[TransportResult]:
        """
        Send a sub-request, turning transport exceptions into key failures.

        Returns:
            The transport result, or None when the send raised
        """
        logger.debug(f"Sending {operation.command} with {len(operation)} key(s) to node {node}")
        try:
            return await self.transport.send(node, operation)
        except OSError as e:
            logger.error(f"Failed to reach node {node}: {e}")
            self._fail(operation.keys, ErrorKind.NODE_UNREACHABLE, f"node unreachable: {e}", node, results)
        except Exception as e:
            logger.exception(f"Transport error sending {operation.command} to node {node}")
            self._fail(operation.keys, ErrorKind.TRANSPORT_ERROR, f"{type(e).__name__}: {e}", node, results)
        return None

    def _record(
            self,
            entries: List[Entry],
            node: NodeId,
            result: TransportResult,
            results: Outcomes,
            final: bool,
    ) -> None:
        keys = [key for key, _ in entries]
        if result.status == ResultStatus.UNREACHABLE:
            logger.error(f"Node {node} unreachable: {result.message}")
            self._fail(keys, ErrorKind.NODE_UNREACHABLE, result.message, node, results)
            return

        moved = set(result.moved(keys))
        for key in keys:
            if key not in moved:
                results[key] = KeyOutcome.success(result.values.get(key), node)
            elif final:
                results[key] = KeyOutcome.failure(
                    ErrorKind.REDIRECTED,
                    f"redirected again to {result.target}",
                    result.target,
                )

    @staticmethod
    def _fail(keys: List[Any], error: ErrorKind, message: str, node: NodeId, results: Outcomes) -> None:
        for key in keys:
            results[key] = KeyOutcome.failure(error, message, node)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(0.0, deadline - asyncio.get_running_loop().time())

    @staticmethod
    def _normalise_entry(entry: Entry) -> Entry:
        key, value = entry
        if isinstance(key, (bytearray, memoryview)):
            key = bytes(key)
        return key, value

    def __repr__(self) -> str:
        return f"ClusterRouter(topology={self.topology!r}, mode={self.grouper.mode.value})"
