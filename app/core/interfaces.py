from datetime import datetime
from typing import List, Dict, Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.core.errors import ConfigurationInvalid
from app.utils.parsers import DURATION_PATTERN, parse_duration, parse_quantity

MAX_NODE_COUNT = 2 ** 32 - 1  # uint32
CONFIGURATION_NAME = 'cluster'
CONDITION_CONFIGURATION_VALID = 'ClusterSizingConfigurationValid'


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NodeCountCriteria(_Model):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_: int = Field(..., alias='from', ge=0, le=MAX_NODE_COUNT)  # inclusive
    to: Optional[int] = Field(None, ge=0, le=MAX_NODE_COUNT)  # inclusive, None = unbounded


class Effects(_Model):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kas_memory_request: Optional[str] = Field(None, alias='kasMemoryRequest')
    kas_go_mem_limit: Optional[str] = Field(None, alias='kasGoMemLimit')
    control_plane_priority_class_name: Optional[str] = Field(None, alias='controlPlanePriorityClassName')
    etcd_priority_class_name: Optional[str] = Field(None, alias='etcdPriorityClassName')
    api_critical_priority_class_name: Optional[str] = Field(None, alias='APICriticalPriorityClassName')

    @field_validator('kas_memory_request', 'kas_go_mem_limit', mode='before')
    @classmethod
    def _check_quantity(cls, v):
        if v is None:
            return v
        v = str(v)
        parse_quantity(v)
        return v

    def resolved(self) -> Dict[str, Any]:
        """Effects with quantities converted to bytes, for renderers."""
        out: Dict[str, Any] = self.model_dump(by_alias=True, exclude_none=True)
        if self.kas_memory_request is not None:
            out['kasMemoryRequestBytes'] = parse_quantity(self.kas_memory_request)
        if self.kas_go_mem_limit is not None:
            out['kasGoMemLimitBytes'] = parse_quantity(self.kas_go_mem_limit)
        return out


class SizeConfiguration(_Model):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1)
    criteria: NodeCountCriteria
    effects: Optional[Effects] = None


class ConcurrencyConfiguration(_Model):
    sliding_window: str = Field('10m', alias='slidingWindow', pattern=DURATION_PATTERN)
    limit: int = Field(5, ge=1)

    @property
    def window(self):
        return parse_duration(self.sliding_window)


class TransitionDelayConfiguration(_Model):
    # increase/decrease refer to node count direction
    increase: str = Field('30s', pattern=DURATION_PATTERN)
    decrease: str = Field('10m', pattern=DURATION_PATTERN)

    @property
    def increase_delay(self):
        return parse_duration(self.increase)

    @property
    def decrease_delay(self):
        return parse_duration(self.decrease)


class ClusterSizingConfigurationSpec(_Model):
    sizes: List[SizeConfiguration] = Field(default_factory=list)
    concurrency: ConcurrencyConfiguration = Field(default_factory=ConcurrencyConfiguration)
    transition_delay: TransitionDelayConfiguration = Field(
        default_factory=TransitionDelayConfiguration, alias='transitionDelay'
    )


class ObjectMeta(_Model):
    name: str = CONFIGURATION_NAME
    generation: Optional[int] = None


class ClusterSizingConfiguration(_Model):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: ClusterSizingConfigurationSpec = Field(default_factory=ClusterSizingConfigurationSpec)


class Condition(_Model):
    type: str
    status: Literal['True', 'False', 'Unknown']
    reason: str
    message: str = ''
    last_transition_time: datetime = Field(..., alias='lastTransitionTime')
    observed_generation: Optional[int] = Field(None, alias='observedGeneration')


class ClusterSizingState(_Model):
    current_size: Optional[str] = Field(None, alias='currentSize')
    observed_size: Optional[str] = Field(None, alias='observedSize')
    pending_since: Optional[datetime] = Field(None, alias='pendingSince')


class TransitionRecord(_Model):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    cluster_id: str = Field(..., alias='clusterID')
    committed_at: datetime = Field(..., alias='committedAt')


class CandidateTransition(_Model):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    cluster_id: str = Field(..., alias='clusterID')
    from_size: Optional[str] = Field(None, alias='fromSize')
    to_size: str = Field(..., alias='toSize')
    direction: Optional[Literal['increase', 'decrease']] = None
    pending_since: Optional[datetime] = Field(None, alias='pendingSince')


class TransitionOutcome(_Model):
    cluster_id: str = Field(..., alias='clusterID')
    from_size: Optional[str] = Field(None, alias='fromSize')
    to_size: str = Field(..., alias='toSize')
    direction: Optional[Literal['increase', 'decrease']] = None
    # initial/recovered bypass debounce and the limiter
    outcome: Literal['committed', 'deferred', 'initial', 'recovered', 'aborted']
    at: datetime
    apply_error: Optional[str] = Field(None, alias='applyError')


class CycleResult(_Model):
    started_at: datetime = Field(..., alias='startedAt')
    halted: bool = False
    halt_reason: Optional[str] = Field(None, alias='haltReason')
    aborted: bool = False
    evaluated: List[str] = Field(default_factory=list)
    skipped: Dict[str, str] = Field(default_factory=dict)  # cluster id -> fetch failure
    pending: List[str] = Field(default_factory=list)
    transitions: List[TransitionOutcome] = Field(default_factory=list)

    def outcomes(self, kind: str) -> List[TransitionOutcome]:
        return [t for t in self.transitions if t.outcome == kind]


def load_configuration(raw: Dict[str, Any]) -> ClusterSizingConfiguration:
    """Parse a configuration object, raising ConfigurationInvalid on any schema problem.

    Accepts either the full object (``metadata`` + ``spec``) or a bare spec.
    """
    if not isinstance(raw, dict):
        raise ConfigurationInvalid(ConfigurationInvalid.SCHEMA_VIOLATION, "configuration must be a mapping")
    if 'spec' not in raw and 'metadata' not in raw:
        raw = {'spec': raw}
    try:
        cfg = ClusterSizingConfiguration.model_validate(raw)
    except ValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationInvalid(ConfigurationInvalid.SCHEMA_VIOLATION, problems) from e
    if cfg.metadata.name != CONFIGURATION_NAME:
        raise ConfigurationInvalid(
            ConfigurationInvalid.INVALID_NAME,
            f"exactly one configuration may exist and must be named '{CONFIGURATION_NAME}', got {cfg.metadata.name!r}",
        )
    return cfg
