"""
Job record, lifecycle state machine and typed payloads.

Lifecycle:
    pending -> processing -> generating -> thumbnail -> rendering -> uploading -> published
    any non-terminal status -> failed

A job in an active status may go back to pending only when the queue policy
re-delivers it after a transient failure.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from viral_machine.errors import ConfigurationError, InvalidTransition, UnknownJobType


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    generating = "generating"
    thumbnail = "thumbnail"
    rendering = "rendering"
    uploading = "uploading"
    published = "published"
    failed = "failed"


ACTIVE_STATUSES = {
    JobStatus.processing,
    JobStatus.generating,
    JobStatus.thumbnail,
    JobStatus.rendering,
    JobStatus.uploading,
}
TERMINAL_STATUSES = {JobStatus.published, JobStatus.failed}

_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.pending: {JobStatus.processing, JobStatus.failed},
    JobStatus.processing: {JobStatus.generating, JobStatus.failed, JobStatus.pending},
    JobStatus.generating: {JobStatus.thumbnail, JobStatus.failed, JobStatus.pending},
    JobStatus.thumbnail: {JobStatus.rendering, JobStatus.failed, JobStatus.pending},
    JobStatus.rendering: {JobStatus.uploading, JobStatus.failed, JobStatus.pending},
    JobStatus.uploading: {JobStatus.published, JobStatus.failed, JobStatus.pending},
    JobStatus.published: set(),
    JobStatus.failed: set(),
}

SHORT_VIDEO = "short_video"
LONG_VIDEO = "long_video"
CREATE_VIDEO = "create-video"

# keeps priority * 10**13 + epoch ms exact in a Redis score (float64)
MAX_PRIORITY = 100


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _TRANSITIONS[current]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ShortVideoPayload(BaseModel):
    type: Literal["short_video"] = SHORT_VIDEO
    channel_id: str
    niche: str
    scheduled_at: datetime | None = None


class LongVideoPayload(BaseModel):
    type: Literal["long_video"] = LONG_VIDEO
    channel_id: str
    niche: str
    scheduled_at: datetime | None = None


JobPayload = Annotated[Union[ShortVideoPayload, LongVideoPayload], Field(discriminator="type")]
PAYLOAD_TYPES = {SHORT_VIDEO, LONG_VIDEO}

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def decode_payload(data: dict[str, Any]) -> ShortVideoPayload | LongVideoPayload:
    """Decode a raw payload into its typed variant.

    Raises:
        UnknownJobType: the payload type has no variant
        ConfigurationError: the variant is known but fields are missing/invalid
    """
    job_type = data.get("type")
    if job_type not in PAYLOAD_TYPES:
        raise UnknownJobType(f"Unknown job type: {job_type!r}")
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {job_type} payload: {e.errors()[:3]}") from e


class Job(BaseModel):
    id: str
    name: str = CREATE_VIDEO
    type: str
    channel_id: str | None = None
    niche: str | None = None
    status: JobStatus = JobStatus.pending
    priority: int = 0
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    failed_stage: str | None = None
    retry_count: int = 0
    result: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def transition(self, target: JobStatus) -> None:
        """Move to ``target`` or raise InvalidTransition."""
        target = JobStatus(target)
        if not can_transition(self.status, target):
            raise InvalidTransition(self.id, self.status.value, target.value)
        self.status = target

    def decoded_payload(self) -> ShortVideoPayload | LongVideoPayload:
        return decode_payload(self.payload)


def scheduled_job_id(channel_id: str, scheduled_at: datetime) -> str:
    """Idempotency key for a scheduled slot: ``{channel_id}-{epoch_ms}``."""
    return f"{channel_id}-{int(scheduled_at.timestamp() * 1000)}"
