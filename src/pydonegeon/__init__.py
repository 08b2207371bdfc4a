"""pydonegeon - Async Python sync client for the Task Donegeon server."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydonegeon")
except PackageNotFoundError:
    __version__ = "0+local"
from pydonegeon.client import DonegeonClient
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import (
    DonegeonConfigError,
    DonegeonError,
    DonegeonNetworkError,
    DonegeonParseError,
    DonegeonProbeError,
    DonegeonProtocolError,
    DonegeonSyncError,
)
from pydonegeon.models import Record, SyncResponse, SystemStatus
from pydonegeon.state.indexes import DerivedIndex, IndexBuilder
from pydonegeon.state.ownership import OwnedCollectionSink, OwnershipForwarder, OwnershipRegistry
from pydonegeon.state.status import SyncState, SyncStatus
from pydonegeon.state.store import CollectionStore
from pydonegeon.users import KeyValueStore, MemoryKeyValueStore, UserDirectory

__all__ = [
    "__version__",
    "CollectionStore",
    "DerivedIndex",
    "DonegeonClient",
    "DonegeonConfig",
    "DonegeonConfigError",
    "DonegeonError",
    "DonegeonNetworkError",
    "DonegeonParseError",
    "DonegeonProbeError",
    "DonegeonProtocolError",
    "DonegeonSyncError",
    "IndexBuilder",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "OwnedCollectionSink",
    "OwnershipForwarder",
    "OwnershipRegistry",
    "Record",
    "SyncResponse",
    "SyncState",
    "SyncStatus",
    "SystemStatus",
    "UserDirectory",
]
