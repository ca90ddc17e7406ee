"""
Partition assignment strategies for consumer groups.

Every strategy hands each partition of the topic to exactly one member, so
no two members of a group ever read the same partition at the same time.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from messagepipe.broker.transport import TopicPartition
from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

Assignment = Dict[str, Set[TopicPartition]]


class AssignmentStrategy(ABC):
    """Abstract base class for assignment strategies."""

    name = "abstract"

    @abstractmethod
    def assign(
        self,
        members: List[str],
        topic: str,
        num_partitions: int,
        previous: Optional[Assignment] = None,
    ) -> Assignment:
        """
        Assign partitions to members.

        Args:
            members: Member ids
            topic: Topic name
            num_partitions: Number of partitions in the topic
            previous: Assignment before this rebalance

        Returns:
            Assignment map (member_id -> assigned partitions)
        """
        pass

    def _log(self, assignment: Assignment) -> None:
        logger.info(
            "Assignment complete",
            strategy=self.name,
            members=len(assignment),
            assignments={m: sorted(tp.partition for tp in p) for m, p in assignment.items()},
        )


class RangeAssignmentStrategy(AssignmentStrategy):
    """
    Range assignment strategy.

    Divides partitions into contiguous ranges.
    Example: 10 partitions, 3 consumers
      Consumer 1: partitions 0-3
      Consumer 2: partitions 4-6
      Consumer 3: partitions 7-9
    """

    name = "range"

    def assign(
        self,
        members: List[str],
        topic: str,
        num_partitions: int,
        previous: Optional[Assignment] = None,
    ) -> Assignment:
        assignment: Assignment = {member: set() for member in members}
        if not members:
            return assignment

        sorted_members = sorted(members)
        per_member, extra = divmod(num_partitions, len(sorted_members))

        partition_idx = 0
        for i, member in enumerate(sorted_members):
            count = per_member + (1 if i < extra else 0)
            for _ in range(count):
                assignment[member].add(TopicPartition(topic, partition_idx))
                partition_idx += 1

        self._log(assignment)
        return assignment


class RoundRobinAssignmentStrategy(AssignmentStrategy):
    """
    Round-robin assignment strategy.

    Alternates partitions across consumers.
    Example: 10 partitions, 3 consumers
      Consumer 1: partitions 0, 3, 6, 9
      Consumer 2: partitions 1, 4, 7
      Consumer 3: partitions 2, 5, 8
    """

    name = "roundrobin"

    def assign(
        self,
        members: List[str],
        topic: str,
        num_partitions: int,
        previous: Optional[Assignment] = None,
    ) -> Assignment:
        assignment: Assignment = {member: set() for member in members}
        if not members:
            return assignment

        sorted_members = sorted(members)
        for partition in range(num_partitions):
            member = sorted_members[partition % len(sorted_members)]
            assignment[member].add(TopicPartition(topic, partition))

        self._log(assignment)
        return assignment


class StickyAssignmentStrategy(AssignmentStrategy):
    """
    Sticky assignment strategy.

    Keeps existing ownership where the member is still present and under its
    fair share, then hands out the remaining partitions to the least-loaded
    members. Minimizes partition movement during rebalance.
    """

    name = "sticky"

    def assign(
        self,
        members: List[str],
        topic: str,
        num_partitions: int,
        previous: Optional[Assignment] = None,
    ) -> Assignment:
        assignment: Assignment = {member: set() for member in members}
        if not members:
            return assignment

        previous = previous or {}
        sorted_members = sorted(members)
        all_partitions = [TopicPartition(topic, p) for p in range(num_partitions)]
        max_share = -(-num_partitions // len(sorted_members))

        taken: Set[TopicPartition] = set()
        for member in sorted_members:
            for tp in sorted(previous.get(member, set()), key=lambda t: t.partition):
                if tp in taken or tp.partition >= num_partitions or tp.topic != topic:
                    continue
                if len(assignment[member]) >= max_share:
                    break
                assignment[member].add(tp)
                taken.add(tp)

        for tp in all_partitions:
            if tp in taken:
                continue
            member = min(sorted_members, key=lambda m: (len(assignment[m]), m))
            assignment[member].add(tp)
            taken.add(tp)

        self._log(assignment)
        return assignment


def create_assignment_strategy(name: str) -> AssignmentStrategy:
    """
    Create assignment strategy by name.

    Args:
        name: Strategy name (range, roundrobin, sticky)

    Returns:
        Assignment strategy instance
    """
    strategies = {
        "range": RangeAssignmentStrategy,
        "roundrobin": RoundRobinAssignmentStrategy,
        "round_robin": RoundRobinAssignmentStrategy,
        "sticky": StickyAssignmentStrategy,
    }

    strategy_class = strategies.get(name.lower())
    if not strategy_class:
        raise ValueError(f"Unknown assignment strategy: {name}")

    return strategy_class()
