"""Data models for persisted instance state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..contracts import (
    Artifact,
    CamelModel,
    InstanceStatus,
    Metrics,
    Phase,
    Progress,
    ValidationRecord,
    WorkflowTemplate,
    utcnow,
)


class StorageArea(str, Enum):
    """Top-level folders of the storage root."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ARCHIVED = "archived"


class InstanceSnapshot(CamelModel):
    """Full serialized state of one workflow instance."""

    instance_id: str
    template: WorkflowTemplate
    options: Dict[str, Any] = Field(default_factory=dict)
    status: InstanceStatus
    current_phase_index: int = 0
    phases: List[Phase] = Field(default_factory=list)
    artifacts: List[Artifact] = Field(default_factory=list)
    progress: Progress = Field(default_factory=Progress)
    metrics: Metrics = Field(default_factory=Metrics)
    validation_results: List[ValidationRecord] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    persisted_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, data: str | bytes) -> "InstanceSnapshot":
        return cls.model_validate_json(data)
