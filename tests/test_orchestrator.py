"""Reconciliation cycle behaviour over an explicit registry and ledger."""
from datetime import timedelta

import pytest

from app.core.errors import CollaboratorFetchFailure
from app.core.interfaces import ClusterSizingState, load_configuration
from app.core.limiter import FleetTransitionLimiter
from app.core.orchestrator import run_cycle
from app.core.partition import SizePartition

from conftest import T0, sizing_spec


class Fleet:
    def __init__(self, **spec_kwargs):
        self.configuration = load_configuration(sizing_spec(**spec_kwargs))
        self.partition = SizePartition.from_configuration(self.configuration.spec.sizes)
        c = self.configuration.spec.concurrency
        self.limiter = FleetTransitionLimiter(c.limit, c.window)
        self.states = {}
        self.applied = []

    def apply(self, cluster_id, size):
        self.applied.append((cluster_id, size.name))

    def cycle(self, counts, now, **kwargs):
        kwargs.setdefault("apply_effects", self.apply)
        return run_cycle(self.partition, self.configuration.spec, self.states, self.limiter, counts, now, **kwargs)

    def seed(self, cluster_id, size, observed=None, pending_since=None):
        self.states[cluster_id] = ClusterSizingState(
            current_size=size, observed_size=observed or size, pending_since=pending_since,
        )


def _kinds(result):
    return {t.cluster_id: t.outcome for t in result.transitions}


def test_first_observation_assigns_immediately():
    fleet = Fleet()
    result = fleet.cycle({"a": 5, "b": 500}, T0)
    assert _kinds(result) == {"a": "initial", "b": "initial"}
    assert fleet.states["a"].current_size == "small"
    assert fleet.states["b"].current_size == "large"
    assert fleet.limiter.records() == []
    assert fleet.applied == [("a", "small"), ("b", "large")]


def test_debounce_timing_for_increase():
    fleet = Fleet()
    fleet.seed("a", "small")

    result = fleet.cycle({"a": 50}, T0)
    assert result.transitions == []
    assert result.pending == ["a"]

    result = fleet.cycle({"a": 50}, T0 + timedelta(seconds=29))
    assert result.transitions == []
    assert fleet.states["a"].current_size == "small"

    result = fleet.cycle({"a": 50}, T0 + timedelta(seconds=30))
    assert _kinds(result) == {"a": "committed"}
    assert result.transitions[0].direction == "increase"
    assert fleet.states["a"].current_size == "medium"
    assert fleet.states["a"].pending_since is None
    assert [r.cluster_id for r in fleet.limiter.records()] == ["a"]
    assert fleet.applied == [("a", "medium")]


def test_decrease_uses_longer_delay():
    fleet = Fleet()
    fleet.seed("a", "large")
    fleet.cycle({"a": 3}, T0)
    assert fleet.cycle({"a": 3}, T0 + timedelta(minutes=5)).transitions == []
    result = fleet.cycle({"a": 3}, T0 + timedelta(minutes=10))
    assert _kinds(result) == {"a": "committed"}
    assert result.transitions[0].direction == "decrease"
    assert fleet.states["a"].current_size == "small"


def test_no_flap_when_count_returns_before_delay():
    fleet = Fleet()
    fleet.seed("a", "small")
    counts = [50, 200, 7, 60, 150, 9]
    for i, n in enumerate(counts):
        result = fleet.cycle({"a": n}, T0 + timedelta(seconds=5 * i))
        assert result.transitions == []
    # long after every excursion, still nothing committed
    result = fleet.cycle({"a": 9}, T0 + timedelta(hours=1))
    assert result.transitions == []
    assert fleet.states["a"].current_size == "small"
    assert fleet.states["a"].pending_since is None
    assert fleet.limiter.records() == []


def test_changing_target_restarts_debounce():
    fleet = Fleet()
    fleet.seed("a", "small")
    fleet.cycle({"a": 50}, T0)
    fleet.cycle({"a": 500}, T0 + timedelta(seconds=20))
    assert fleet.cycle({"a": 500}, T0 + timedelta(seconds=40)).transitions == []
    result = fleet.cycle({"a": 500}, T0 + timedelta(seconds=50))
    assert _kinds(result) == {"a": "committed"}
    assert fleet.states["a"].current_size == "large"


def test_fairness_longest_waiting_first():
    fleet = Fleet(limit=1)
    fleet.seed("z", "small", observed="medium", pending_since=T0 - timedelta(minutes=5))
    fleet.seed("a", "small", observed="medium", pending_since=T0 - timedelta(minutes=3))
    fleet.seed("m", "small", observed="medium", pending_since=T0 - timedelta(minutes=1))

    result = fleet.cycle({"a": 50, "m": 50, "z": 50}, T0)
    assert _kinds(result) == {"z": "committed", "a": "deferred", "m": "deferred"}
    assert [t.cluster_id for t in result.transitions] == ["z", "a", "m"]
    # waiting for a slot does not restart the debounce clock
    assert fleet.states["a"].pending_since == T0 - timedelta(minutes=3)
    assert fleet.states["a"].current_size == "small"


def test_fairness_ties_broken_by_cluster_id():
    fleet = Fleet(limit=1)
    for cid in ("c", "b", "a"):
        fleet.seed(cid, "small", observed="medium", pending_since=T0 - timedelta(minutes=1))
    result = fleet.cycle({"a": 50, "b": 50, "c": 50}, T0)
    assert result.outcomes("committed")[0].cluster_id == "a"


def test_deferred_candidate_admitted_once_window_frees():
    fleet = Fleet(limit=1, window="10m")
    fleet.seed("a", "small", observed="medium", pending_since=T0 - timedelta(minutes=2))
    fleet.seed("b", "small", observed="medium", pending_since=T0 - timedelta(minutes=1))
    fleet.cycle({"a": 50, "b": 50}, T0)

    result = fleet.cycle({"a": 50, "b": 50}, T0 + timedelta(minutes=5))
    assert _kinds(result) == {"b": "deferred"}

    result = fleet.cycle({"a": 50, "b": 50}, T0 + timedelta(minutes=10, seconds=1))
    assert _kinds(result) == {"b": "committed"}
    assert fleet.states["b"].current_size == "medium"


def test_rate_limit_across_cycles():
    fleet = Fleet(limit=5, window="10m", increase="0s")
    for i in range(6):
        fleet.seed(f"c{i}", "small")
    for i in range(5):
        result = fleet.cycle({f"c{i}": 50}, T0 + timedelta(minutes=i))
        assert _kinds(result) == {f"c{i}": "committed"}

    result = fleet.cycle({"c5": 50}, T0 + timedelta(minutes=4.5))
    assert _kinds(result) == {"c5": "deferred"}
    result = fleet.cycle({"c5": 50}, T0 + timedelta(minutes=10.1))
    assert _kinds(result) == {"c5": "committed"}


def test_idempotent_for_stable_clusters():
    fleet = Fleet()
    fleet.seed("a", "small")
    fleet.seed("b", "medium")
    before = {cid: s.model_copy() for cid, s in fleet.states.items()}

    for _ in range(3):
        result = fleet.cycle({"a": 4, "b": 40}, T0)
        assert result.transitions == []
        assert result.pending == []

    assert fleet.states == before
    assert fleet.limiter.records() == []
    assert fleet.applied == []


def test_fetch_failure_leaves_state_untouched():
    fleet = Fleet()
    fleet.seed("a", "small")
    fleet.cycle({"a": 50}, T0)

    failure = CollaboratorFetchFailure("a", "timeout")
    result = fleet.cycle({"a": failure}, T0 + timedelta(seconds=10))
    assert result.skipped == {"a": "timeout"}
    assert fleet.states["a"].pending_since == T0
    assert fleet.states["a"].observed_size == "medium"

    result = fleet.cycle({"a": 50}, T0 + timedelta(seconds=30))
    assert _kinds(result) == {"a": "committed"}


def test_unknown_current_size_recovers_without_debounce():
    fleet = Fleet(limit=1)
    fleet.limiter.admit("other", T0)  # window full
    fleet.seed("a", "xlarge")
    result = fleet.cycle({"a": 40}, T0)
    assert _kinds(result) == {"a": "recovered"}
    assert result.transitions[0].from_size == "xlarge"
    assert fleet.states["a"].current_size == "medium"
    assert [r.cluster_id for r in fleet.limiter.records()] == ["other"]


def test_abort_stops_further_commits():
    fleet = Fleet(increase="0s")
    for cid in ("a", "b", "c"):
        fleet.seed(cid, "small")

    calls = []

    def should_abort():
        calls.append(1)
        return len(calls) > 1

    result = fleet.cycle({"a": 50, "b": 50, "c": 50}, T0, should_abort=should_abort)
    assert result.aborted is True
    assert _kinds(result) == {"a": "committed", "b": "aborted", "c": "aborted"}
    assert fleet.states["b"].current_size == "small"
    assert len(fleet.limiter.records()) == 1


def test_apply_failure_is_reported_and_commit_stands():
    fleet = Fleet(increase="0s")
    fleet.seed("a", "small")

    def broken(cluster_id, size):
        raise RuntimeError("apiserver unavailable")

    result = fleet.cycle({"a": 50}, T0, apply_effects=broken)
    assert result.transitions[0].outcome == "committed"
    assert result.transitions[0].apply_error == "apiserver unavailable"
    assert fleet.states["a"].current_size == "medium"


@pytest.mark.parametrize("count", [0, 10, 11, 100, 101, 2 ** 32 - 1])
def test_initial_assignment_matches_classifier(count):
    fleet = Fleet()
    fleet.cycle({"a": count}, T0)
    assert fleet.states["a"].current_size == fleet.partition.classify(count)
