from datetime import timedelta

import pytest

from app.core.debouncer import PENDING, READY, STABLE, TransitionDebouncer
from app.core.errors import UnknownCurrentSize
from app.core.interfaces import ClusterSizingState

from conftest import T0


@pytest.fixture
def debouncer(partition, configuration):
    return TransitionDebouncer(partition, configuration.spec.transition_delay)


def _small():
    return ClusterSizingState(current_size="small", observed_size="small")


def test_stable_observation_is_a_no_op(debouncer):
    state = _small()
    assert debouncer.observe("a", state, "small", T0) is False
    assert debouncer.phase(state, T0) == STABLE


def test_increase_waits_for_increase_delay(debouncer):
    state = _small()
    assert debouncer.observe("a", state, "medium", T0) is True
    assert state.pending_since == T0
    assert debouncer.direction(state) == "increase"

    later = T0 + timedelta(seconds=29)
    debouncer.observe("a", state, "medium", later)
    assert state.pending_since == T0
    assert debouncer.phase(state, later) == PENDING

    assert debouncer.phase(state, T0 + timedelta(seconds=30)) == READY
    assert debouncer.ready_at(state) == T0 + timedelta(seconds=30)


def test_decrease_uses_decrease_delay(debouncer):
    state = ClusterSizingState(current_size="large", observed_size="large")
    debouncer.observe("a", state, "small", T0)
    assert debouncer.direction(state) == "decrease"
    assert debouncer.phase(state, T0 + timedelta(minutes=9, seconds=59)) == PENDING
    assert debouncer.phase(state, T0 + timedelta(minutes=10)) == READY


def test_returning_to_current_cancels(debouncer):
    state = _small()
    debouncer.observe("a", state, "large", T0)
    debouncer.observe("a", state, "small", T0 + timedelta(seconds=10))
    assert state.pending_since is None
    assert state.observed_size == "small"
    assert debouncer.phase(state, T0 + timedelta(hours=1)) == STABLE


def test_new_target_restarts_clock(debouncer):
    state = _small()
    debouncer.observe("a", state, "medium", T0)
    debouncer.observe("a", state, "large", T0 + timedelta(seconds=20))
    assert state.observed_size == "large"
    assert state.pending_since == T0 + timedelta(seconds=20)
    assert debouncer.phase(state, T0 + timedelta(seconds=40)) == PENDING


def test_skipping_classes_does_not_scale_delay(debouncer):
    state = _small()
    debouncer.observe("a", state, "large", T0)
    assert debouncer.phase(state, T0 + timedelta(seconds=30)) == READY


def test_unknown_current_size(debouncer):
    state = ClusterSizingState(current_size="huge", observed_size="huge")
    with pytest.raises(UnknownCurrentSize) as exc:
        debouncer.observe("a", state, "small", T0)
    assert exc.value.size == "huge"


def test_candidate_and_commit(debouncer):
    state = _small()
    debouncer.observe("a", state, "medium", T0)
    c = debouncer.candidate("a", state)
    assert (c.cluster_id, c.from_size, c.to_size, c.direction, c.pending_since) == ("a", "small", "medium", "increase", T0)

    TransitionDebouncer.commit(state, "medium")
    assert state.current_size == state.observed_size == "medium"
    assert state.pending_since is None
