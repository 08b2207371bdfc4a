"""Sync status state machine values."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncStatus(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncState(BaseModel):
    """Current sync status plus the message of the last failure."""

    model_config = ConfigDict(frozen=True)

    status: SyncStatus = SyncStatus.IDLE
    error: str | None = None
    changed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _error_only_in_error_state(self) -> SyncState:
        if self.status == SyncStatus.ERROR:
            if not self.error:
                raise ValueError("error state requires a message")
        elif self.error is not None:
            raise ValueError("error message is only valid in the error state")
        return self
