"""Sync endpoint envelope."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from pydonegeon.models._base import DonegeonBaseModel


class SyncResponse(DonegeonBaseModel):
    """Body of ``GET /api/data/sync``.

    ``updates`` is a full snapshot on an Initial Pull and a partial one on a
    Delta Pull; ``new_sync_timestamp`` is the cursor to send next time.
    """

    updates: dict[str, Any] = Field(default_factory=dict)
    new_sync_timestamp: str

    @field_validator("updates", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        # The server omits changed fields entirely; null means "nothing changed".
        return {} if value is None else value

    @field_validator("new_sync_timestamp", mode="before")
    @classmethod
    def _coerce_cursor(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            raise ValueError("newSyncTimestamp must be non-empty")
        return value
