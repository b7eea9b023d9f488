"""
Tests for Batch Grouping

These tests verify BatchGrouper.group():
- one group per owning node, entry order preserved
- unknown slots kept aside for a topology refresh
- malformed keys kept aside instead of being routed
- per-slot grouping mode

Run with: python -m pytest tests/test_grouper.py -v
"""

import pytest

from slotrouter.cluster.grouper import BatchGrouper, GroupingMode
from slotrouter.cluster.hashing import key_slot
from slotrouter.cluster.topology import SlotTable, TopologyMap


def table_for(assignments):
    """Table owning exactly the slots of the given {key: node} assignments."""
    return SlotTable.from_mapping({key_slot(key): node for key, node in assignments.items()})


class TestGroupBasics:
    """Test grouping edge cases."""

    def test_empty_entries(self, grouper: BatchGrouper):
        result = grouper.group([])
        assert result == {}
        assert result.is_empty

    def test_single_entry(self, grouper: BatchGrouper):
        result = grouper.group([("foo", "1")])
        assert len(result) == 1
        group = next(iter(result.values()))
        assert group.entries == [("foo", "1")]
        assert group.slots == [12182]

    def test_same_node_single_group(self, grouper: BatchGrouper, nodes):
        entries = [(f"{{user1}}.f{i}", str(i)) for i in range(5)]
        result = grouper.group(entries)
        assert len(result) == 1
        assert result[grouper.topology.node_for(key_slot("user1"))].entries == entries

    def test_accepts_generator(self, grouper: BatchGrouper):
        result = grouper.group((k, v) for k, v in [("foo", 1), ("bar", 2)])
        assert sum(len(g) for g in result.values()) == 2


class TestGroupByNode:
    """Test node grouping with explicit ownership."""

    def test_two_nodes_order_preserved(self):
        """Three keys owned by A, A, B give two groups, order kept."""
        topology = TopologyMap(table_for({"{a}1": "A", "{b}1": "B"}))
        grouper = BatchGrouper(topology, GroupingMode.NODE)

        result = grouper.group([("{a}1", "x"), ("{a}2", "y"), ("{b}1", "z")])

        assert set(result) == {"A", "B"}
        assert result["A"].entries == [("{a}1", "x"), ("{a}2", "y")]
        assert result["B"].entries == [("{b}1", "z")]

    def test_interleaved_entries(self):
        topology = TopologyMap(table_for({"{a}": "A", "{b}": "B"}))
        grouper = BatchGrouper(topology, GroupingMode.NODE)
        entries = [("{a}1", 1), ("{b}1", 2), ("{a}2", 3), ("{b}2", 4), ("{a}3", 5)]

        result = grouper.group(entries)

        assert result["A"].keys == ["{a}1", "{a}2", "{a}3"]
        assert result["B"].keys == ["{b}1", "{b}2"]

    def test_node_group_spans_several_slots(self, grouper: BatchGrouper, nodes):
        # "foo" and "somekey" are both owned by the third node
        result = grouper.group([("foo", 1), ("somekey", 2)])
        group = result[nodes[2]]
        assert group.slots == [12182, 11058]

    def test_duplicate_keys_kept(self, grouper: BatchGrouper):
        result = grouper.group([("foo", 1), ("foo", 2)])
        group = next(iter(result.values()))
        assert group.entries == [("foo", 1), ("foo", 2)]
        assert group.slots == [12182]


class TestUnknownSlots:
    """Test entries whose slot has no known owner."""

    def test_unknown_slot_needs_refresh(self):
        topology = TopologyMap(table_for({"{a}": "A"}))
        grouper = BatchGrouper(topology, GroupingMode.NODE)

        result = grouper.group([("{a}1", 1), ("{b}1", 2)])

        assert list(result) == ["A"]
        assert [p.key for p in result.needs_refresh] == ["{b}1"]
        assert result.needs_refresh[0].slot == key_slot("b")

    def test_everything_unknown(self, empty_topology: TopologyMap):
        grouper = BatchGrouper(empty_topology, GroupingMode.NODE)
        result = grouper.group([("foo", 1), ("bar", 2)])
        assert result == {}
        assert not result.is_empty
        assert [p.entry for p in result.needs_refresh] == [("foo", 1), ("bar", 2)]

    def test_explicit_snapshot_wins(self, empty_topology: TopologyMap):
        grouper = BatchGrouper(empty_topology, GroupingMode.NODE)
        result = grouper.group([("foo", 1)], SlotTable.from_ranges([(0, 16383, "A")]))
        assert list(result) == ["A"]

    def test_regroup_against_new_table(self, empty_topology: TopologyMap):
        grouper = BatchGrouper(empty_topology, GroupingMode.NODE)
        first = grouper.group([("foo", 1), ("bar", 2)])

        regrouped = grouper.regroup(first.needs_refresh, SlotTable.from_ranges([(0, 16383, "A")]))

        assert regrouped["A"].entries == [("foo", 1), ("bar", 2)]
        assert regrouped.needs_refresh == []


class TestMalformedKeys:
    """Test keys that cannot be hashed."""

    def test_malformed_kept_aside(self, grouper: BatchGrouper):
        result = grouper.group([("foo", 1), (42, 2), (None, 3)])
        assert sum(len(g) for g in result.values()) == 1
        assert [p.key for p in result.malformed] == [42, None]
        assert "unsupported key type" in result.malformed[0].message


class TestGroupBySlot:
    """Test per-slot grouping mode."""

    def test_one_group_per_slot(self, topology: TopologyMap, nodes):
        grouper = BatchGrouper(topology, GroupingMode.SLOT)

        result = grouper.group([("foo", 1), ("somekey", 2), ("{foo}x", 3)])

        assert set(result) == {(nodes[2], 12182), (nodes[2], 11058)}
        assert result[(nodes[2], 12182)].entries == [("foo", 1), ("{foo}x", 3)]
        assert result[(nodes[2], 12182)].node_id == nodes[2]

    def test_mode_from_settings(self, topology: TopologyMap):
        assert BatchGrouper(topology).mode in (GroupingMode.NODE, GroupingMode.SLOT)

    def test_invalid_mode_name(self):
        with pytest.raises(ValueError):
            GroupingMode("shard")


class TestDispatchGroup:
    """Test conversion to batch operations."""

    def test_to_operation(self, grouper: BatchGrouper):
        result = grouper.group([("{user1}.name", "alice"), ("{user1}.age", "31")])
        group = next(iter(result.values()))

        op = group.to_operation("mset")

        assert op.command == "MSET"
        assert op.arguments() == ["{user1}.name", "alice", "{user1}.age", "31"]
        assert op.slots == (key_slot("user1"),)
