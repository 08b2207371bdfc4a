"""Data models for Task Donegeon API responses."""

from pydonegeon.models._base import DonegeonBaseModel, Record
from pydonegeon.models.status import SystemStatus
from pydonegeon.models.sync import SyncResponse

__all__ = [
    "DonegeonBaseModel",
    "Record",
    "SyncResponse",
    "SystemStatus",
]
