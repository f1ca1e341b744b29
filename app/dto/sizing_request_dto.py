from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.interfaces import MAX_NODE_COUNT


class NodeCountObservation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    node_count: Optional[int] = Field(
        ..., alias='nodeCount', ge=0, le=MAX_NODE_COUNT,
        description="Current node count; null marks the cluster as unmeasurable",
    )
    reconcile: bool = Field(False, description="Run a reconcile cycle right after recording")


class ReconcileRequest(BaseModel):
    now: Optional[datetime] = Field(None, description="Evaluation time, defaults to the current time")

    @field_validator('now')
    @classmethod
    def _assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
