"""High-level async client for the Task Donegeon sync API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

import aiohttp

from pydonegeon._client.coordinator import AI_CAPABILITY, SyncCoordinator
from pydonegeon._client.push import ChangeListener, SseChangeListener
from pydonegeon._constants import USERS_COLLECTION
from pydonegeon._mqtt import MqttChangeListener
from pydonegeon._transport import HttpTransport
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonError
from pydonegeon.state.indexes import IndexBuilder
from pydonegeon.state.ownership import OwnedCollectionSink, OwnershipForwarder, OwnershipRegistry
from pydonegeon.state.status import SyncState
from pydonegeon.state.store import CollectionStore
from pydonegeon.users import KeyValueStore, UserDirectory

_logger = logging.getLogger(__name__)


class DonegeonClient:
    """Async client keeping a local replica of a Task Donegeon server.

    Usage::

        async with DonegeonClient(config) as client:
            await client.start()
            quests = client.store.get_collection("quests")
    """

    def __init__(
        self,
        config: DonegeonConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        storage: KeyValueStore | None = None,
        users: UserDirectory | None = None,
        owners: Mapping[str, OwnedCollectionSink] | None = None,
        index_builder: IndexBuilder | None = None,
        on_status_change: Callable[[SyncState], None] | None = None,
        on_update: Callable[[], None] | None = None,
    ) -> None:
        self._config = config if config is not None else DonegeonConfig.from_env()
        self._external_session = session is not None
        self._http_session = session
        self._users = users if users is not None else UserDirectory(storage=storage)

        registry = OwnershipRegistry()
        registry.register(USERS_COLLECTION, self._users)
        for collection, owner in (owners or {}).items():
            registry.register(collection, owner)
        self._store = CollectionStore(
            forwarder=OwnershipForwarder(registry),
            index_builder=index_builder,
        )

        self._transport: HttpTransport | None = None
        self._coordinator: SyncCoordinator | None = None
        self._listener: ChangeListener | None = None
        self._on_status_change = on_status_change
        self._on_update = on_update

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DonegeonClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = HttpTransport(self._config, self._http_session)
        coordinator = SyncCoordinator(
            config=self._config,
            transport=self._transport,
            store=self._store,
        )
        coordinator.add_initial_load_hook(self._users.on_initial_load)
        if self._on_status_change is not None:
            coordinator.add_status_listener(self._on_status_change)
        if self._on_update is not None:
            coordinator.add_update_listener(self._on_update)
        self._coordinator = coordinator
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> SyncState:
        """Run the Initial Pull, then start the push listener and poll timer.

        A failed Initial Pull is reported through the returned state; the
        push channel is started regardless so the next signal retries it.
        """
        coordinator = self._require_coordinator()
        state = await coordinator.sync()
        self._start_listener()
        coordinator.start_polling()
        return state

    def _start_listener(self) -> None:
        if self._listener is not None or self._config.push_transport == "none":
            return
        coordinator = self._require_coordinator()
        if self._config.push_transport == "mqtt":
            self._listener = MqttChangeListener(
                config=self._config,
                on_signal=coordinator.request_sync,
                loop=asyncio.get_running_loop(),
            )
        else:
            assert self._transport is not None  # noqa: S101
            self._listener = SseChangeListener(
                config=self._config,
                transport=self._transport,
                on_signal=coordinator.request_sync,
            )
        _logger.debug("Starting %s push listener", self._config.push_transport)
        self._listener.start()

    async def close(self) -> None:
        """Stop push and polling, cancel any in-flight Pull, release HTTP."""
        listener, self._listener = self._listener, None
        if listener is not None:
            await listener.stop()
        if self._coordinator is not None:
            await self._coordinator.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_coordinator(self) -> SyncCoordinator:
        if self._coordinator is None:
            raise DonegeonError("Client not initialized. Use 'async with DonegeonClient(...) as client:'")
        return self._coordinator

    # ------------------------------------------------------------------
    # Sync triggers
    # ------------------------------------------------------------------

    def request_sync(self) -> None:
        """Ask for a Pull without waiting (coalesced if one is running)."""
        self._require_coordinator().request_sync()

    async def sync(self) -> SyncState:
        """Pull now and wait for the result.

        Inside :meth:`hold` this only records the request; the Pull runs
        once the hold is released.
        """
        return await self._require_coordinator().sync()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Defer Pulls while a server mutation is in flight."""
        async with self._require_coordinator().hold():
            yield

    def apply_update(self, delta: Mapping[str, Any]) -> None:
        """Merge the records a business action got back from the server."""
        self._require_coordinator().apply_update(delta)

    def apply_removal(self, ids_by_collection: Mapping[str, Iterable[str]]) -> None:
        """Drop records the server confirmed as deleted."""
        self._require_coordinator().apply_removal(ids_by_collection)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def config(self) -> DonegeonConfig:
        return self._config

    @property
    def store(self) -> CollectionStore:
        return self._store

    @property
    def users(self) -> UserDirectory:
        return self._users

    @property
    def coordinator(self) -> SyncCoordinator:
        return self._require_coordinator()

    @property
    def sync_state(self) -> SyncState:
        return self._store.sync_state

    @property
    def is_ai_configured(self) -> bool:
        """Probe result; False until (and unless) the probe succeeded."""
        return self._store.capabilities.get(AI_CAPABILITY, False)

    @property
    def push_listener(self) -> ChangeListener | None:
        return self._listener
