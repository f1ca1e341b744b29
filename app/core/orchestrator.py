"""One reconciliation cycle over the whole fleet.

The cycle is a plain function over explicitly passed state: the per-cluster
registry and the shared limiter are owned by the caller, which must not run two
cycles at once.

Order within a cycle:
1. classify every cluster and fold the result into its debounce state;
2. sort the Ready candidates longest-waiting first (ties by cluster id);
3. admit and commit candidates in that order until the window is full.

All debounce reads happen before the first ``admit`` so the ordering is taken
over the complete Ready set.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from app.core import metrics
from app.core.debouncer import TransitionDebouncer
from app.core.errors import CollaboratorFetchFailure, UnknownCurrentSize
from app.core.interfaces import (
    CandidateTransition, ClusterSizingConfigurationSpec, ClusterSizingState, CycleResult, TransitionOutcome,
)
from app.core.limiter import FleetTransitionLimiter
from app.core.partition import SizeClass, SizePartition

logger = logging.getLogger(__name__)

EffectsApplier = Callable[[str, SizeClass], None]
NodeCountResult = Union[int, CollaboratorFetchFailure]


def candidate_order(candidate: CandidateTransition) -> Tuple[datetime, str]:
    return candidate.pending_since, candidate.cluster_id


def run_cycle(
    partition: SizePartition,
    spec: ClusterSizingConfigurationSpec,
    states: Dict[str, ClusterSizingState],
    limiter: FleetTransitionLimiter,
    node_counts: Dict[str, NodeCountResult],
    now: datetime,
    apply_effects: Optional[EffectsApplier] = None,
    should_abort: Optional[Callable[[], bool]] = None,
) -> CycleResult:
    debouncer = TransitionDebouncer(partition, spec.transition_delay)
    result = CycleResult(started_at=now)

    immediate: List[Tuple[str, Optional[str], str, str]] = []  # (cluster, from, to, kind)
    candidates: List[CandidateTransition] = []

    for cluster_id in sorted(node_counts):
        count = node_counts[cluster_id]
        if isinstance(count, CollaboratorFetchFailure):
            # leave the debounce state untouched; a gap in data is not a flap
            result.skipped[cluster_id] = count.reason
            metrics.FETCH_FAILURES.inc()
            logger.warning("sizing.fetch.failed", extra={"cluster": cluster_id, "reason": count.reason})
            continue

        observed = partition.classify(count)
        result.evaluated.append(cluster_id)
        state = states.get(cluster_id)

        if state is None:
            immediate.append((cluster_id, None, observed, 'initial'))
            continue

        try:
            debouncer.observe(cluster_id, state, observed, now)
        except UnknownCurrentSize as e:
            logger.warning("sizing.current_size.unknown", extra={"cluster": cluster_id, "size": e.size})
            immediate.append((cluster_id, state.current_size, observed, 'recovered'))
            continue

        if debouncer.is_ready(state, now):
            candidates.append(debouncer.candidate(cluster_id, state))
        elif state.pending_since is not None:
            result.pending.append(cluster_id)

    candidates.sort(key=candidate_order)

    def aborted() -> bool:
        if should_abort is not None and should_abort():
            result.aborted = True
        return result.aborted

    for cluster_id, from_size, to_size, kind in immediate:
        if aborted():
            break
        state = states.setdefault(cluster_id, ClusterSizingState())
        TransitionDebouncer.commit(state, to_size)
        metrics.ASSIGNMENTS.labels(kind=kind).inc()
        logger.info("sizing.assigned", extra={"cluster": cluster_id, "kind": kind, "from": from_size, "to": to_size})
        result.transitions.append(TransitionOutcome(
            cluster_id=cluster_id, from_size=from_size, to_size=to_size, outcome=kind, at=now,
            apply_error=_apply(apply_effects, cluster_id, partition.get(to_size)),
        ))

    window_full = False
    for c in candidates:
        if aborted():
            outcome = 'aborted'
        elif window_full or not limiter.admit(c.cluster_id, now):
            window_full = True
            outcome = 'deferred'
        else:
            outcome = 'committed'

        if outcome != 'committed':
            if outcome == 'deferred':
                metrics.DEFERRED.inc()
            logger.info("sizing.transition.%s" % outcome, extra={
                "cluster": c.cluster_id, "from": c.from_size, "to": c.to_size,
                "pending_since": c.pending_since.isoformat(),
            })
            result.transitions.append(TransitionOutcome(
                cluster_id=c.cluster_id, from_size=c.from_size, to_size=c.to_size,
                direction=c.direction, outcome=outcome, at=now,
            ))
            continue

        TransitionDebouncer.commit(states[c.cluster_id], c.to_size)
        metrics.TRANSITIONS.labels(from_size=c.from_size, to_size=c.to_size, direction=c.direction).inc()
        logger.info("sizing.transition.committed", extra={
            "cluster": c.cluster_id, "from": c.from_size, "to": c.to_size, "direction": c.direction,
            "waited_s": (now - c.pending_since).total_seconds(),
        })
        result.transitions.append(TransitionOutcome(
            cluster_id=c.cluster_id, from_size=c.from_size, to_size=c.to_size, direction=c.direction,
            outcome='committed', at=now,
            apply_error=_apply(apply_effects, c.cluster_id, partition.get(c.to_size)),
        ))

    metrics.PENDING.set(sum(1 for s in states.values() if s.pending_since is not None))
    metrics.WINDOW_USED.set(limiter.in_window(now))
    return result


def _apply(apply_effects: Optional[EffectsApplier], cluster_id: str, size: SizeClass) -> Optional[str]:
    # the commit stands even if rendering fails; collaborators re-render from the committed size
    if apply_effects is None:
        return None
    try:
        apply_effects(cluster_id, size)
    except Exception as e:
        metrics.APPLY_FAILURES.inc()
        logger.exception("sizing.effects.apply_failed", extra={"cluster": cluster_id, "size": size.name})
        return str(e)
    return None
