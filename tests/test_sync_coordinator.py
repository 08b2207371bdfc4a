from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from pydonegeon._client.coordinator import AI_CAPABILITY, SyncCoordinator
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonNetworkError, DonegeonParseError, DonegeonProtocolError
from pydonegeon.state.ownership import OwnershipForwarder, OwnershipRegistry
from pydonegeon.state.status import SyncState, SyncStatus
from pydonegeon.state.store import CollectionStore
from pydonegeon.users import MemoryKeyValueStore, UserDirectory

SYNC = "/api/data/sync"
STATUS = "/api/system/status"


class _FakeTransport:
    """Scripted transport: sync responses are served in order."""

    def __init__(self, *responses: Any, status: Any = None) -> None:
        self.responses: list[Any] = list(responses)
        self.repeat_last = False
        self.status: Any = status if status is not None else {"geminiConnected": True}
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, dict[str, str] | None]] = []

    def sync_calls(self) -> list[dict[str, str] | None]:
        return [params for endpoint, params in self.calls if endpoint == SYNC]

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        self.calls.append((endpoint, dict(params) if params else None))
        if endpoint == STATUS:
            if isinstance(self.status, Exception):
                raise self.status
            return self.status
        if self.gate is not None:
            await self.gate.wait()
        item = self.responses[0] if self.repeat_last and len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _payload(cursor: str, **updates: Any) -> dict[str, Any]:
    return {"updates": updates, "newSyncTimestamp": cursor}


def _coordinator(
    transport: _FakeTransport,
    *,
    users: UserDirectory | None = None,
    **config_kwargs: Any,
) -> tuple[SyncCoordinator, CollectionStore, UserDirectory]:
    users = users if users is not None else UserDirectory()
    registry = OwnershipRegistry()
    registry.register("users", users)
    store = CollectionStore(forwarder=OwnershipForwarder(registry))
    coordinator = SyncCoordinator(config=DonegeonConfig(**config_kwargs), transport=transport, store=store)
    coordinator.add_initial_load_hook(users.on_initial_load)
    return coordinator, store, users


@pytest.mark.asyncio
async def test_initial_then_delta_pull_scenario() -> None:
    transport = _FakeTransport(
        _payload("T1", quests=[{"id": "q1", "tags": ["clean"]}], settings={"appName": "X"}),
        _payload("T2", quests=[{"id": "q2", "title": "Laundry", "tags": ["clean", "new"]}]),
    )
    coordinator, store, _ = _coordinator(transport)

    state = await coordinator.sync()

    assert state.status == SyncStatus.SUCCESS
    assert store.loaded is True
    assert coordinator.cursor == "T1"
    assert len(store.get_collection("quests")) == 1
    assert store.get_singleton("settings") == {"appName": "X"}
    assert store.get_index("allTags") == frozenset({"clean"})

    await coordinator.sync()

    assert transport.sync_calls() == [None, {"lastSync": "T1"}]
    assert coordinator.cursor == "T2"
    assert [quest["id"] for quest in store.get_collection("quests")] == ["q1", "q2"]
    assert store.get_index("allTags") == frozenset({"clean", "new"})
    assert coordinator.state.status == SyncStatus.SUCCESS
    assert store.get_singleton("settings") == {"appName": "X"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [
        DonegeonNetworkError("connection refused", endpoint=SYNC),
        DonegeonProtocolError("Server responded with status 500", status_code=500, endpoint=SYNC),
        {"updates": {"quests": {"not": "a list"}}, "newSyncTimestamp": "T2"},
        {"updates": {"quests": []}},
        ["not", "an", "object"],
    ],
)
async def test_failed_pull_leaves_store_and_cursor_untouched(failure: Any) -> None:
    transport = _FakeTransport(
        _payload("T1", quests=[{"id": "q1", "tags": ["clean"]}]),
        failure,
        _payload("T2", quests=[{"id": "q2"}]),
    )
    coordinator, store, _ = _coordinator(transport)
    await coordinator.sync()
    before = store.dump_json()

    state = await coordinator.sync()

    assert state.status == SyncStatus.ERROR
    assert state.error
    assert store.dump_json() == before
    assert coordinator.cursor == "T1"

    recovered = await coordinator.sync()

    assert recovered.status == SyncStatus.SUCCESS
    assert recovered.error is None
    assert transport.sync_calls()[-1] == {"lastSync": "T1"}
    assert coordinator.cursor == "T2"


@pytest.mark.asyncio
async def test_failed_initial_pull_keeps_store_unloaded() -> None:
    transport = _FakeTransport(
        DonegeonNetworkError("down", endpoint=SYNC),
        _payload("T1", quests=[{"id": "q1"}]),
    )
    coordinator, store, _ = _coordinator(transport)

    state = await coordinator.sync()

    assert state.status == SyncStatus.ERROR
    assert store.loaded is False
    assert coordinator.cursor is None

    await coordinator.sync()

    assert transport.sync_calls() == [None, None]
    assert store.loaded is True


@pytest.mark.asyncio
async def test_non_advancing_cursor_is_not_adopted() -> None:
    transport = _FakeTransport(
        _payload("2024-01-02T00:00:00Z"),
        _payload("2024-01-01T00:00:00Z", quests=[{"id": "q1"}]),
        _payload("2024-01-03T00:00:00Z"),
    )
    coordinator, store, _ = _coordinator(transport)
    await coordinator.sync()

    await coordinator.sync()

    assert coordinator.cursor == "2024-01-02T00:00:00Z"
    assert store.get_collection("quests") == [{"id": "q1"}]

    await coordinator.sync()

    assert transport.sync_calls()[-1] == {"lastSync": "2024-01-02T00:00:00Z"}
    assert coordinator.cursor == "2024-01-03T00:00:00Z"


@pytest.mark.asyncio
async def test_requests_during_pull_coalesce_into_one_follow_up() -> None:
    transport = _FakeTransport(_payload("T1"), _payload("T2"), _payload("T3"))
    transport.gate = asyncio.Event()
    coordinator, _, _ = _coordinator(transport, probe_enabled=False)

    coordinator.request_sync()
    await asyncio.sleep(0)
    for _ in range(5):
        coordinator.request_sync()

    assert coordinator.is_syncing is True
    assert coordinator.resync_pending is True

    transport.gate.set()
    await coordinator.wait_idle()

    assert coordinator.pull_count == 2
    assert transport.sync_calls() == [None, {"lastSync": "T1"}]
    assert coordinator.resync_pending is False
    assert coordinator.cursor == "T2"


@pytest.mark.asyncio
async def test_hold_defers_pulls_until_released() -> None:
    transport = _FakeTransport(_payload("T1"))
    coordinator, _, _ = _coordinator(transport, probe_enabled=False)

    async with coordinator.hold():
        coordinator.request_sync()
        coordinator.request_sync()
        assert coordinator.is_syncing is False
        assert coordinator.resync_pending is True

    assert coordinator.is_syncing is True
    await coordinator.wait_idle()
    assert coordinator.pull_count == 1


@pytest.mark.asyncio
async def test_probe_runs_once_after_first_initial_load() -> None:
    transport = _FakeTransport(
        DonegeonNetworkError("down", endpoint=SYNC),
        _payload("T1"),
        _payload("T2"),
    )
    coordinator, store, _ = _coordinator(transport)

    await coordinator.sync()
    assert [endpoint for endpoint, _ in transport.calls].count(STATUS) == 0

    await coordinator.sync()
    await coordinator.sync()

    assert [endpoint for endpoint, _ in transport.calls].count(STATUS) == 1
    assert store.capabilities == {AI_CAPABILITY: True}


@pytest.mark.asyncio
async def test_probe_failure_is_swallowed() -> None:
    transport = _FakeTransport(
        _payload("T1", quests=[{"id": "q1"}]),
        status=DonegeonProtocolError("not found", status_code=404, endpoint=STATUS),
    )
    coordinator, store, _ = _coordinator(transport)

    state = await coordinator.sync()

    assert state.status == SyncStatus.SUCCESS
    assert store.capabilities == {}
    assert store.get_collection("quests") == [{"id": "q1"}]


@pytest.mark.asyncio
async def test_probe_can_be_disabled() -> None:
    transport = _FakeTransport(_payload("T1"))
    coordinator, store, _ = _coordinator(transport, probe_enabled=False)

    await coordinator.sync()

    assert all(endpoint == SYNC for endpoint, _ in transport.calls)
    assert store.capabilities == {}


@pytest.mark.asyncio
async def test_status_listener_sees_transitions() -> None:
    transport = _FakeTransport(_payload("T1"), DonegeonNetworkError("down", endpoint=SYNC), _payload("T2"))
    coordinator, _, _ = _coordinator(transport, probe_enabled=False)
    seen: list[SyncState] = []
    remove = coordinator.add_status_listener(seen.append)

    await coordinator.sync()
    await coordinator.sync()
    remove()
    await coordinator.sync()

    assert [state.status for state in seen] == [
        SyncStatus.SYNCING,
        SyncStatus.SUCCESS,
        SyncStatus.SYNCING,
        SyncStatus.ERROR,
    ]
    assert seen[-1].error == "down"


@pytest.mark.asyncio
async def test_close_discards_in_flight_result() -> None:
    transport = _FakeTransport(_payload("T1", quests=[{"id": "q1"}]))
    transport.gate = asyncio.Event()
    coordinator, store, _ = _coordinator(transport)

    coordinator.request_sync()
    await asyncio.sleep(0)
    await coordinator.close()
    transport.gate.set()
    await asyncio.sleep(0)

    assert store.loaded is False
    assert store.revision == 0
    assert coordinator.state.status == SyncStatus.IDLE
    assert coordinator.cursor is None

    coordinator.request_sync()
    assert coordinator.is_syncing is False


@pytest.mark.asyncio
async def test_polling_requests_pulls_until_closed() -> None:
    transport = _FakeTransport(_payload("T1"))
    transport.repeat_last = True
    coordinator, _, _ = _coordinator(transport, probe_enabled=False, poll_interval=0.01)

    coordinator.start_polling()

    async def enough_pulls() -> None:
        while coordinator.pull_count < 3:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(enough_pulls(), 5.0)
    await coordinator.close()
    count = coordinator.pull_count
    await asyncio.sleep(0.05)

    assert coordinator.pull_count == count


@pytest.mark.asyncio
async def test_users_are_forwarded_and_selection_restored() -> None:
    users = UserDirectory(storage=MemoryKeyValueStore({"lastUserId": "u2"}))
    transport = _FakeTransport(
        _payload("T1", users=[{"id": "u1", "name": "Ann"}, {"id": "u2", "name": "Bo"}]),
        _payload("T2", users=[{"id": "u2", "gold": 10}]),
    )
    coordinator, store, users = _coordinator(transport, users=users)

    await coordinator.sync()

    assert store.get_field("users") is None
    assert users.current_user == {"id": "u2", "name": "Bo"}

    await coordinator.sync()

    assert users.current_user == {"id": "u2", "name": "Bo", "gold": 10}


@pytest.mark.asyncio
async def test_apply_update_and_removal_use_merge_path() -> None:
    transport = _FakeTransport(_payload("T1", quests=[{"id": "q1", "tags": ["a"]}]))
    coordinator, store, users = _coordinator(transport, probe_enabled=False)
    await coordinator.sync()
    updates: list[int] = []
    coordinator.add_update_listener(lambda: updates.append(1))

    coordinator.apply_update({"quests": [{"id": "q2", "tags": ["b"]}], "users": [{"id": "u1"}]})
    coordinator.apply_removal({"quests": ["q1"]})

    assert [quest["id"] for quest in store.get_collection("quests")] == ["q2"]
    assert store.get_index("allTags") == frozenset({"b"})
    assert users.get_user("u1") == {"id": "u1"}
    assert updates == [1, 1]
    assert coordinator.cursor == "T1"


@pytest.mark.asyncio
async def test_apply_update_rejects_malformed_records() -> None:
    transport = _FakeTransport(_payload("T1", quests=[{"id": "q1"}]))
    coordinator, store, _ = _coordinator(transport, probe_enabled=False)
    await coordinator.sync()
    before = store.dump_json()

    with pytest.raises(DonegeonParseError):
        coordinator.apply_update({"quests": [{"title": "no id"}]})

    assert store.dump_json() == before


@pytest.mark.asyncio
async def test_sync_inside_hold_only_records_request() -> None:
    transport = _FakeTransport(_payload("T1", quests=[{"id": "q1"}]))
    coordinator, store, _ = _coordinator(transport, probe_enabled=False)

    async with coordinator.hold():
        state = await coordinator.sync()

        assert state.status == SyncStatus.IDLE
        assert coordinator.pull_count == 0
        assert coordinator.resync_pending is True
        assert store.loaded is False

    await coordinator.wait_idle()

    assert coordinator.pull_count == 1
    assert store.loaded is True
    assert coordinator.state.status == SyncStatus.SUCCESS


@pytest.mark.asyncio
async def test_malformed_record_in_undeclared_collection_is_parse_error() -> None:
    transport = _FakeTransport(
        _payload("T1"),
        _payload("T2", widgets=[{"id": "w1", "size": 1}]),
        _payload("T3", widgets=[{"name": "no id"}]),
    )
    coordinator, store, _ = _coordinator(transport, probe_enabled=False)
    await coordinator.sync()
    await coordinator.sync()
    before = store.dump_json()

    state = await coordinator.sync()

    assert state.status == SyncStatus.ERROR
    assert "widgets" in state.error
    assert "KeyError" not in state.error
    assert store.dump_json() == before
    assert coordinator.cursor == "T2"


@pytest.mark.asyncio
async def test_apply_update_checks_undeclared_collection_records() -> None:
    transport = _FakeTransport(_payload("T1", widgets=[{"id": "w1"}]))
    coordinator, store, _ = _coordinator(transport, probe_enabled=False)
    await coordinator.sync()
    before = store.dump_json()

    with pytest.raises(DonegeonParseError):
        coordinator.apply_update({"widgets": [{"name": "no id"}]})
    with pytest.raises(DonegeonParseError):
        coordinator.apply_update({"widgets": {"id": "w2"}})

    assert store.dump_json() == before
