from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from app.core import metrics
from app.core.config_file import FileConfigurationSource
from app.core.debouncer import TransitionDebouncer
from app.core.errors import ClusterNotFound, CollaboratorFetchFailure, ConfigurationInvalid
from app.core.interfaces import (
    CONDITION_CONFIGURATION_VALID, ClusterSizingConfiguration, ClusterSizingState, Condition, CycleResult,
    load_configuration,
)
from app.core.kube import HostedClusterLabelApplier, KubeConfigurationSource
from app.core.limiter import FleetTransitionLimiter
from app.core.orchestrator import EffectsApplier, NodeCountResult, run_cycle
from app.core.partition import SizePartition
from app.core.prometheus import NodeCountSource, ObservedNodeCountSource, PromClient, PrometheusNodeCountSource
from app.core.state_store import StateStore
from app.utils.parsers import now_utc, to_iso, format_duration
from config.settings import CONFIG, REASON_AS_EXPECTED, REASON_NOT_LOADED

logger = logging.getLogger(__name__)


class ClusterSizingService:
    """Owns the active configuration, per-cluster state and the fleet ledger.

    At most one reconcile cycle runs at a time. An invalid configuration halts
    classification entirely and clusters keep their last committed size until
    a valid configuration is applied.
    """

    def __init__(
        self,
        config_source=None,
        node_source: Optional[NodeCountSource] = None,
        applier: Optional[EffectsApplier] = None,
        store: Optional[StateStore] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.config_source = config_source
        self.node_source: NodeCountSource = node_source or ObservedNodeCountSource()
        self.applier = applier
        self.store = store or StateStore(None)
        self.clock = clock

        # (configuration, partition) swapped as one value; partition is None while halted
        self._active: Tuple[Optional[ClusterSizingConfiguration], Optional[SizePartition]] = (None, None)
        self.conditions: Dict[str, Condition] = {}
        self.last_result: Optional[CycleResult] = None

        self.states, ledger = self.store.load()
        defaults = ClusterSizingConfiguration().spec.concurrency
        self.limiter = FleetTransitionLimiter(defaults.limit, defaults.window, ledger)

        self._generation = 0
        self._cycle_lock = asyncio.Lock()
        self._set_condition(False, REASON_NOT_LOADED, "no sizing configuration has been loaded")

    @classmethod
    def from_settings(cls, settings: Dict[str, Any] = CONFIG) -> 'ClusterSizingService':
        if settings["configuration_source"] == "kubernetes":
            config_source = KubeConfigurationSource()
        else:
            config_source = FileConfigurationSource(settings["configuration_path"])

        if settings["node_count_source"] == "prometheus":
            prom = PromClient(settings["prometheus_url"], settings["prometheus_cluster_label"], settings["prometheus_timeout"])
            node_source = PrometheusNodeCountSource(prom, settings["clusters"])
        else:
            node_source = ObservedNodeCountSource()

        applier = None
        if settings["effects_applier"] == "hostedcluster-label":
            applier = HostedClusterLabelApplier(dry_run=settings["dry_run"])

        return cls(config_source, node_source, applier, StateStore(settings["state_path"]))

    # ---------- configuration ----------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def configuration(self) -> Optional[ClusterSizingConfiguration]:
        return self._active[0]

    @property
    def partition(self) -> Optional[SizePartition]:
        return self._active[1]

    @property
    def halted(self) -> bool:
        return self.partition is None

    def apply_configuration(self, raw: Union[ClusterSizingConfiguration, Dict[str, Any]]) -> ClusterSizingConfiguration:
        """Validate and activate a configuration. Raises ConfigurationInvalid and halts sizing on failure."""
        try:
            cfg = raw if isinstance(raw, ClusterSizingConfiguration) else load_configuration(raw)
            partition = SizePartition.from_configuration(cfg.spec.sizes)
        except ConfigurationInvalid as e:
            self._invalidate(e)
            raise

        # generation moves after the swap: a cycle that saw the old generation is always stale
        self._active = (cfg, partition)
        self._generation += 1
        self.limiter.reconfigure(cfg.spec.concurrency.limit, cfg.spec.concurrency.window)
        metrics.CONFIG_VALID.set(1)
        self._set_condition(
            True, REASON_AS_EXPECTED,
            f"{len(partition)} size classes cover [0, +inf): {', '.join(c.describe() for c in partition)}",
        )
        logger.info("sizing.configuration.applied", extra={"generation": self._generation, "sizes": [c.name for c in partition]})
        self._publish_conditions()
        return cfg

    def reload_configuration(self) -> ClusterSizingConfiguration:
        if self.config_source is None:
            raise RuntimeError("no configuration source configured")
        try:
            cfg = self.config_source.load()
        except ConfigurationInvalid as e:
            self._invalidate(e)
            raise
        return self.apply_configuration(cfg)

    def _invalidate(self, e: ConfigurationInvalid) -> None:
        self._active = (self.configuration, None)
        self._generation += 1
        metrics.CONFIG_VALID.set(0)
        self._set_condition(False, e.rule, e.message)
        logger.error("sizing.configuration.invalid", extra={"rule": e.rule, "detail": e.message})
        self._publish_conditions()

    def _set_condition(self, ok: bool, reason: str, message: str) -> None:
        status = 'True' if ok else 'False'
        prev = self.conditions.get(CONDITION_CONFIGURATION_VALID)
        changed_at = prev.last_transition_time if prev is not None and prev.status == status else self.clock()
        self.conditions[CONDITION_CONFIGURATION_VALID] = Condition(
            type=CONDITION_CONFIGURATION_VALID, status=status, reason=reason, message=message,
            last_transition_time=changed_at, observed_generation=self._generation,
        )

    def _publish_conditions(self) -> None:
        publish = getattr(self.config_source, 'publish_conditions', None)
        if publish is None:
            return
        try:
            publish(list(self.conditions.values()))
        except Exception:
            logger.exception("sizing.conditions.publish_failed")

    # ---------- observations ----------

    def record_node_count(self, cluster_id: str, node_count: Optional[int]) -> None:
        record = getattr(self.node_source, 'record', None)
        if record is None:
            raise TypeError(f"node count source {type(self.node_source).__name__} does not accept pushed observations")
        record(cluster_id, node_count)

    async def forget_cluster(self, cluster_id: str) -> None:
        """Drop a cluster's sizing state. Waits for any in-flight cycle to finish."""
        async with self._cycle_lock:
            if cluster_id not in self.states:
                raise ClusterNotFound(cluster_id)
            states = dict(self.states)
            del states[cluster_id]
            self.states = states
            forget = getattr(self.node_source, 'forget', None)
            if forget is not None:
                forget(cluster_id)
            await asyncio.to_thread(self.store.save, states, self.limiter.records())

    # ---------- reconcile ----------

    async def reconcile(self, now: Optional[datetime] = None) -> CycleResult:
        async with self._cycle_lock:
            now = now or self.clock()
            # generation first: if it still matches later, the active pair read below is the one it names
            generation = self._generation
            configuration, partition = self._active
            if partition is None:
                cond = self.conditions[CONDITION_CONFIGURATION_VALID]
                result = CycleResult(started_at=now, halted=True, halt_reason=f"{cond.reason}: {cond.message}")
                logger.warning("sizing.cycle.halted", extra={"reason": cond.reason})
                self.last_result = result
                return result

            node_counts = await self._fetch_node_counts()

            def stale() -> bool:
                return self._generation != generation

            if stale():
                # configuration replaced while node counts were being fetched
                result = CycleResult(started_at=now, aborted=True)
                self.last_result = result
                return result

            # the cycle works on copies; readers keep seeing the previous registry until the swap
            states = {cid: s.model_copy() for cid, s in self.states.items()}
            try:
                with metrics.CYCLE_TIME.time():
                    result = await asyncio.to_thread(
                        run_cycle, partition, configuration.spec, states, self.limiter, node_counts, now,
                        self.applier, stale,
                    )
            finally:
                # commits made before a failure are already in the ledger, so their states are kept too
                self.states = states
                await asyncio.to_thread(self.store.save, states, self.limiter.records())

            logger.info("sizing.cycle.done", extra={
                "evaluated": len(result.evaluated), "skipped": len(result.skipped), "pending": len(result.pending),
                "committed": len(result.outcomes('committed')), "deferred": len(result.outcomes('deferred')),
                "aborted": result.aborted,
            })
            self.last_result = result
            return result

    async def _fetch_node_counts(self) -> Dict[str, NodeCountResult]:
        try:
            listed = await asyncio.to_thread(self.node_source.list_clusters)
        except Exception as e:
            logger.warning("sizing.clusters.list_failed", extra={"error": str(e)})
            listed = []
        cluster_ids = sorted(set(listed) | set(self.states))
        counts = await asyncio.gather(*(self._fetch(cid) for cid in cluster_ids))
        return dict(zip(cluster_ids, counts))

    async def _fetch(self, cluster_id: str) -> NodeCountResult:
        try:
            return await asyncio.to_thread(self.node_source.node_count, cluster_id)
        except CollaboratorFetchFailure as e:
            return e
        except Exception as e:
            return CollaboratorFetchFailure(cluster_id, str(e))

    async def run_periodic(self, interval: float, stop: asyncio.Event) -> None:
        logger.info("sizing.loop.started", extra={"interval_s": interval})
        while not stop.is_set():
            try:
                await self.reconcile()
            except Exception:
                logger.exception("sizing.cycle.failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # ---------- status ----------
    # views read self.states and self._active once; both are only ever replaced, never mutated in place

    def cluster_status(self, cluster_id: str) -> Dict[str, Any]:
        state = self.states.get(cluster_id)
        if state is None:
            raise ClusterNotFound(cluster_id)
        return self._describe(cluster_id, state, self._active, self.clock())

    def clusters(self) -> List[Dict[str, Any]]:
        now = self.clock()
        states, active = self.states, self._active
        return [self._describe(cid, s, active, now) for cid, s in sorted(states.items())]

    @staticmethod
    def _describe(cluster_id: str, state: ClusterSizingState, active, now: datetime) -> Dict[str, Any]:
        configuration, partition = active
        out = {'clusterID': cluster_id, **state.model_dump(by_alias=True, mode='json')}
        size = partition.get(state.current_size) if partition is not None else None
        out['effects'] = size.effects.resolved() if size is not None else None
        if size is not None:
            debouncer = TransitionDebouncer(partition, configuration.spec.transition_delay)
            ready_at = debouncer.ready_at(state)
            out['phase'] = debouncer.phase(state, now)
            out['direction'] = debouncer.direction(state)
            out['readyAt'] = to_iso(ready_at) if ready_at is not None else None
        else:
            out['phase'] = 'Unknown'
        return out

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        configuration, partition = self._active
        next_slot = self.limiter.next_slot_at(now)
        return {
            'generation': self._generation,
            'halted': partition is None,
            'conditions': [c.model_dump(by_alias=True, mode='json') for c in list(self.conditions.values())],
            'configuration': configuration.model_dump(by_alias=True, mode='json') if configuration else None,
            'limiter': {
                'limit': self.limiter.limit,
                'slidingWindow': format_duration(self.limiter.window),
                'inWindow': self.limiter.in_window(now),
                'remaining': self.limiter.remaining(now),
                'nextSlotAt': to_iso(next_slot) if next_slot is not None else None,
            },
            'clusters': len(self.states),
            'lastCycle': self.last_result.model_dump(by_alias=True, mode='json') if self.last_result else None,
        }
