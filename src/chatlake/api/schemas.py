"""
API schemas for ChatLake.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from chatlake.models.db import (
    ImportBatchStatus,
    InferenceRunStatus,
    ProjectStatus,
    RunType,
    SuggestionStatus,
)

# ===== Import batches =====


class ImportBatchResponse(BaseModel):
    """Response schema for ImportBatch."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source_system: str
    source_version: Optional[str] = None
    imported_by: Optional[str] = None
    import_label: Optional[str] = None
    status: ImportBatchStatus
    artifact_count: int
    total_conversation_count: Optional[int] = None
    processed_conversation_count: int
    progress_percentage: Optional[float] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    last_heartbeat_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ParsingFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    raw_artifact_id: UUID
    failure_stage: str
    failure_message: str
    external_conversation_id: Optional[str] = None
    occurred_at: datetime


class ImportBatchDetail(ImportBatchResponse):
    """Batch with the parsing failures of its artifacts."""

    failures: list[ParsingFailureResponse] = Field(default_factory=list)


# ===== Inference runs =====


class InferenceRunResponse(BaseModel):
    """Response schema for InferenceRun."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: UUID
    run_type: RunType
    model_name: str
    model_version: str
    input_scope: str
    input_description: Optional[str] = None
    feature_config_hash: str
    status: InferenceRunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    metrics: Optional[dict[str, Any]] = None


# ===== Suggestions and projects =====


class SuggestionResponse(BaseModel):
    """Response schema for ProjectSuggestion."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    inference_run_id: UUID
    suggested_project_key: str
    suggested_name: str
    summary: Optional[str] = None
    confidence: float
    status: SuggestionStatus
    unique_conversation_count: int
    segment_count: int
    resolved_project_id: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class SuggestedConversationResponse(BaseModel):
    """Preview of one conversation inside a suggestion."""

    model_config = ConfigDict(from_attributes=True)

    conversation_id: UUID
    title: str
    message_count: int
    first_message_at: Optional[datetime] = None


class MergeRequest(BaseModel):
    target_project_id: UUID


class ProjectResponse(BaseModel):
    """Response schema for Project."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_key: Optional[str] = None
    name: str
    description: Optional[str] = None
    status: ProjectStatus
    is_system_generated: bool
    created_at: datetime
    updated_at: datetime


class SuggestionActionResponse(BaseModel):
    """Outcome of accept, reject or merge."""

    suggestion: SuggestionResponse
    project: Optional[ProjectResponse] = None


# ===== Similarity =====


class SimilarConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    conversation_id: UUID
    title: str
    similarity: float
    message_count: int
    first_message_at: Optional[datetime] = None


# ===== Drift =====


class TopicShiftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_label: str
    previous_score: float
    current_score: float
    change: float


class DriftMetricResponse(BaseModel):
    """One drift window of a project."""

    model_config = ConfigDict(from_attributes=True)

    metric_id: UUID
    window_start: datetime
    window_end: datetime
    drift_score: float
    topic_shifts: list[TopicShiftResponse] = Field(default_factory=list)


class ProjectDriftResponse(BaseModel):
    project_id: UUID
    project_name: str
    high_drift_threshold: float
    windows: list[DriftMetricResponse] = Field(default_factory=list)
