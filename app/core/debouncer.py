from datetime import datetime, timedelta
from typing import Optional

from app.core.errors import UnknownCurrentSize
from app.core.interfaces import CandidateTransition, ClusterSizingState, TransitionDelayConfiguration
from app.core.partition import SizePartition

STABLE = 'Stable'
PENDING = 'Pending'
READY = 'Ready'


class TransitionDebouncer:
    """Per-cluster hysteresis over the classifier output.

    A cluster whose observed size differs from its current size is Pending from
    the first observation of that target; it becomes Ready once the divergence
    has lasted for the delay of its direction. Returning to the current size
    cancels the pending transition, and switching to another target restarts
    the clock.
    """

    def __init__(self, partition: SizePartition, delays: TransitionDelayConfiguration):
        self.partition = partition
        self.increase_delay = delays.increase_delay
        self.decrease_delay = delays.decrease_delay

    def observe(self, cluster_id: str, state: ClusterSizingState, observed: str, now: datetime) -> bool:
        """Fold one classification into the state. Returns True if the state changed."""
        if state.current_size not in self.partition:
            raise UnknownCurrentSize(cluster_id, state.current_size)

        before = (state.observed_size, state.pending_since)
        if observed == state.current_size:
            state.observed_size = observed
            state.pending_since = None
        elif observed != state.observed_size or state.pending_since is None:
            state.observed_size = observed
            state.pending_since = now
        return before != (state.observed_size, state.pending_since)

    def direction(self, state: ClusterSizingState) -> Optional[str]:
        if state.pending_since is None or state.observed_size == state.current_size:
            return None
        return self.partition.direction(state.current_size, state.observed_size)

    def delay(self, direction: str) -> timedelta:
        return self.increase_delay if direction == 'increase' else self.decrease_delay

    def phase(self, state: ClusterSizingState, now: datetime) -> str:
        direction = self.direction(state)
        if direction is None:
            return STABLE
        if now - state.pending_since >= self.delay(direction):
            return READY
        return PENDING

    def is_ready(self, state: ClusterSizingState, now: datetime) -> bool:
        return self.phase(state, now) == READY

    def ready_at(self, state: ClusterSizingState) -> Optional[datetime]:
        direction = self.direction(state)
        if direction is None:
            return None
        return state.pending_since + self.delay(direction)

    def candidate(self, cluster_id: str, state: ClusterSizingState) -> CandidateTransition:
        return CandidateTransition(
            cluster_id=cluster_id,
            from_size=state.current_size,
            to_size=state.observed_size,
            direction=self.direction(state),
            pending_since=state.pending_since,
        )

    @staticmethod
    def commit(state: ClusterSizingState, size: str) -> None:
        state.current_size = size
        state.observed_size = size
        state.pending_since = None
