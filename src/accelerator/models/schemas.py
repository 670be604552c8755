from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

STOP_EVENT = "stop-tracking"


class Issue(BaseModel):
    number: int
    title: str
    body: str
    state: str = "open"
    labels: list[str] = []


# GitHub login and repository name characters; the instance id is used as a file name.
NAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


class TrackingParams(BaseModel):
    owner: str = Field(pattern=NAME_PATTERN)
    repo: str = Field(pattern=NAME_PATTERN)
    issue_number: int

    @field_validator("owner", "repo")
    @classmethod
    def _not_dots_only(cls, value: str) -> str:
        if set(value) == {"."}:
            raise ValueError("must not consist of dots only")
        return value

    @property
    def instance_id(self) -> str:
        """Deterministic id so re-delivered triggers resolve to the same instance."""
        return instance_id_for(self.owner, self.repo, self.issue_number)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def instance_id_for(owner: str, repo: str, issue_number: int) -> str:
    return f"issue-{owner}-{repo}-{issue_number}"


class StopSignal(BaseModel):
    reason: Literal["closed", "unlabeled"]
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class WorkflowState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_FIRST_DELAY = "awaiting_first_delay"
    CHECKING = "checking"
    AWAITING_NEXT_DELAY = "awaiting_next_delay"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"


class WorkflowInstance(BaseModel):
    id: str
    params: TrackingParams
    state: WorkflowState = WorkflowState.INITIALIZING
    last_check_time: datetime | None = None
    next_sleep_ms: int | None = None
    iteration: int = 0
    stop_signal: StopSignal | None = None


class CheckOutcome(BaseModel):
    """Recorded result of one agent run inside the workflow."""

    summary: str
    checked_at: datetime
    next_sleep_ms: int
    delay_chosen: bool = False


class RaceOutcome(BaseModel):
    winner: Literal["timer", "stop"]
    signal: StopSignal | None = None

    @property
    def stopped(self) -> bool:
        return self.winner == "stop"


class InstanceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class EventRecord(BaseModel):
    type: str
    payload: dict[str, Any] = {}
    received_at: datetime


class InstanceRecord(BaseModel):
    """Durable journal of one workflow instance."""

    id: str
    params: TrackingParams
    status: InstanceStatus = InstanceStatus.RUNNING
    created_at: datetime
    updated_at: datetime
    steps: dict[str, Any] = Field(default_factory=dict)
    timers: dict[str, datetime] = Field(default_factory=dict)
    result: WorkflowInstance | None = None
    error: str = ""
