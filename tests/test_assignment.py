"""Tests for partition assignment strategies."""

import pytest

from messagepipe.broker.assignment import (
    RangeAssignmentStrategy,
    RoundRobinAssignmentStrategy,
    StickyAssignmentStrategy,
    create_assignment_strategy,
)
from messagepipe.broker.transport import TopicPartition


def partitions(assignment, member):
    return sorted(tp.partition for tp in assignment[member])


def assert_disjoint_and_complete(assignment, num_partitions):
    seen = []
    for owned in assignment.values():
        seen.extend(tp.partition for tp in owned)
    assert sorted(seen) == list(range(num_partitions))


class TestRangeAssignment:
    """Test RangeAssignmentStrategy."""

    def test_even_distribution(self):
        """Test one partition per member."""
        assignment = RangeAssignmentStrategy().assign(["c-1", "c-2", "c-3"], "messages", 3)

        assert partitions(assignment, "c-1") == [0]
        assert partitions(assignment, "c-2") == [1]
        assert partitions(assignment, "c-3") == [2]

    def test_uneven_distribution(self):
        """Test extra partitions go to the first members."""
        assignment = RangeAssignmentStrategy().assign(["c-1", "c-2", "c-3"], "messages", 7)

        assert partitions(assignment, "c-1") == [0, 1, 2]
        assert partitions(assignment, "c-2") == [3, 4]
        assert partitions(assignment, "c-3") == [5, 6]

    def test_more_members_than_partitions(self):
        """Test surplus members get nothing."""
        assignment = RangeAssignmentStrategy().assign(["c-1", "c-2", "c-3", "c-4"], "messages", 3)

        assert partitions(assignment, "c-4") == []
        assert_disjoint_and_complete(assignment, 3)

    def test_no_members(self):
        """Test empty membership yields empty assignment."""
        assert RangeAssignmentStrategy().assign([], "messages", 3) == {}


class TestRoundRobinAssignment:
    """Test RoundRobinAssignmentStrategy."""

    def test_alternates(self):
        """Test partitions alternate over sorted members."""
        assignment = RoundRobinAssignmentStrategy().assign(["c-2", "c-1"], "messages", 5)

        assert partitions(assignment, "c-1") == [0, 2, 4]
        assert partitions(assignment, "c-2") == [1, 3]


class TestStickyAssignment:
    """Test StickyAssignmentStrategy."""

    def test_initial_assignment_balanced(self):
        """Test fresh assignment is balanced."""
        assignment = StickyAssignmentStrategy().assign(["c-1", "c-2", "c-3"], "messages", 6)

        assert all(len(owned) == 2 for owned in assignment.values())
        assert_disjoint_and_complete(assignment, 6)

    def test_keeps_previous_ownership(self):
        """Test surviving members keep their partitions when a member leaves."""
        strategy = StickyAssignmentStrategy()
        previous = strategy.assign(["c-1", "c-2", "c-3"], "messages", 6)

        assignment = strategy.assign(["c-1", "c-2"], "messages", 6, previous)

        assert previous["c-1"] <= assignment["c-1"]
        assert previous["c-2"] <= assignment["c-2"]
        assert_disjoint_and_complete(assignment, 6)

    def test_new_member_gets_share(self):
        """Test a joining member receives partitions from overloaded members."""
        strategy = StickyAssignmentStrategy()
        previous = strategy.assign(["c-1"], "messages", 4)

        assignment = strategy.assign(["c-1", "c-2"], "messages", 4, previous)

        assert len(assignment["c-1"]) == 2
        assert len(assignment["c-2"]) == 2
        assert_disjoint_and_complete(assignment, 4)

    def test_ignores_foreign_topic(self):
        """Test previous partitions of another topic are dropped."""
        previous = {"c-1": {TopicPartition("other", 0)}}

        assignment = StickyAssignmentStrategy().assign(["c-1"], "messages", 2, previous)

        assert assignment["c-1"] == {TopicPartition("messages", 0), TopicPartition("messages", 1)}


class TestCreateAssignmentStrategy:
    """Test strategy factory."""

    @pytest.mark.parametrize("name,cls", [
        ("range", RangeAssignmentStrategy),
        ("roundrobin", RoundRobinAssignmentStrategy),
        ("round_robin", RoundRobinAssignmentStrategy),
        ("STICKY", StickyAssignmentStrategy),
    ])
    def test_known_names(self, name, cls):
        """Test each name builds its strategy."""
        assert isinstance(create_assignment_strategy(name), cls)

    def test_unknown_name(self):
        """Test unknown names are rejected."""
        with pytest.raises(ValueError):
            create_assignment_strategy("cooperative")
