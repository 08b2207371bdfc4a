"""Sync coordination for DonegeonClient.

Owns:
- the sync cursor and the status state machine
- running Initial/Delta Pulls, one at a time, with coalesced follow-ups
- the one-shot post-load work (owner hooks + capability probe)
- the generic merge/remove path business actions submit results through
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from pydonegeon._transport import Transport
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonProbeError, DonegeonSyncError
from pydonegeon.ingestion.normalize import is_newer_cursor, validate_removals, validate_updates
from pydonegeon.ingestion.probe import fetch_system_status
from pydonegeon.ingestion.pull import PullKind, PullResult, fetch_sync
from pydonegeon.state.reconcile import FieldKind
from pydonegeon.state.status import SyncState, SyncStatus
from pydonegeon.state.store import CollectionStore, default_kinds

_logger = logging.getLogger(__name__)

#: Capability name under which the probe result is stored.
AI_CAPABILITY = "ai"

StatusListener = Callable[[SyncState], None]
UpdateListener = Callable[[], None]


class SyncCoordinator:
    """Keeps a :class:`CollectionStore` in step with the server.

    At most one Pull runs at a time. A request that arrives while a Pull is
    in flight (or while a hold is active) is not dropped: it sets a pending
    flag, and exactly one follow-up Pull runs once the current one settles,
    however many requests were coalesced into it.
    """

    def __init__(
        self,
        *,
        config: DonegeonConfig,
        transport: Transport,
        store: CollectionStore,
        kinds: Mapping[str, FieldKind] | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._store = store
        self._kinds: dict[str, FieldKind] = dict(kinds) if kinds is not None else default_kinds()
        self._cursor: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._pending = False
        self._holds = 0
        self._closed = False
        self._initial_load_done = False
        self._initial_load_hooks: list[Callable[[], None]] = []
        self._status_listeners: list[StatusListener] = []
        self._update_listeners: list[UpdateListener] = []
        self._pull_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> str | None:
        return self._cursor

    @property
    def state(self) -> SyncState:
        return self._store.sync_state

    @property
    def is_syncing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def resync_pending(self) -> bool:
        return self._pending

    @property
    def pull_count(self) -> int:
        """Number of Pulls issued so far (successful or not)."""
        return self._pull_count

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a callback for every status transition; returns a remover."""
        self._status_listeners.append(listener)
        return lambda: self._remove(self._status_listeners, listener)

    def add_update_listener(self, listener: UpdateListener) -> Callable[[], None]:
        """Register a callback fired after every committed store mutation."""
        self._update_listeners.append(listener)
        return lambda: self._remove(self._update_listeners, listener)

    def add_initial_load_hook(self, hook: Callable[[], None]) -> None:
        """Run *hook* once, right after the first successful Initial Pull."""
        self._initial_load_hooks.append(hook)

    @staticmethod
    def _remove(listeners: list[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _set_state(self, status: SyncStatus, error: str | None = None) -> None:
        state = SyncState(status=status, error=error)
        self._store.set_sync_state(state)
        for listener in list(self._status_listeners):
            try:
                listener(state)
            except Exception:
                _logger.debug("status listener failed", exc_info=True)

    def _notify_update(self) -> None:
        for listener in list(self._update_listeners):
            try:
                listener()
            except Exception:
                _logger.debug("update listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def request_sync(self) -> None:
        """Ask for a Pull without waiting for it.

        Safe to call from push callbacks, timers and user actions alike.
        """
        if self._closed:
            _logger.debug("Sync requested after close; ignored")
            return
        if self._holds > 0 or self.is_syncing:
            self._pending = True
            return
        self._pending = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def sync(self) -> SyncState:
        """Request a Pull and wait until it (and any coalesced follow-up) settles.

        Under :meth:`hold` no Pull starts: the request is only recorded as
        pending and the current state is returned. The Pull runs when the
        last hold is released.
        """
        self.request_sync()
        if self._holds > 0:
            _logger.debug("Sync requested during hold; deferred until release")
        await self.wait_idle()
        return self._store.sync_state

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Defer Pulls while a mutation is in flight on the server.

        Requests made during the hold are coalesced into one Pull that runs
        when the last hold is released.
        """
        self._holds += 1
        try:
            yield
        finally:
            self._holds -= 1
            if self._holds == 0 and self._pending and not self._closed:
                self.request_sync()

    def start_polling(self) -> None:
        """Start the fallback timer if ``poll_interval`` is set."""
        interval = self._config.poll_interval
        if interval <= 0 or self._closed:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop(interval))

    async def _poll_loop(self, interval: float) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            self.request_sync()

    # ------------------------------------------------------------------
    # Pull execution
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            self._pending = False
            await self._pull_once()
            if self._closed or not self._pending or self._holds > 0:
                return
            _logger.debug("Running coalesced follow-up sync")

    async def _pull_once(self) -> None:
        self._pull_count += 1
        self._set_state(SyncStatus.SYNCING)
        try:
            result = await fetch_sync(
                config=self._config,
                transport=self._transport,
                cursor=self._cursor,
                kinds=self._kinds,
            )
        except DonegeonSyncError as exc:
            _logger.warning("Sync failed: %s", exc)
            self._set_state(SyncStatus.ERROR, str(exc) or type(exc).__name__)
            return
        except Exception as exc:
            _logger.exception("Unexpected error during sync")
            self._set_state(SyncStatus.ERROR, f"Unexpected sync error: {exc!r}")
            return

        if self._closed:
            return

        try:
            self._apply(result)
        except DonegeonSyncError as exc:
            _logger.warning("Sync result rejected: %s", exc)
            self._set_state(SyncStatus.ERROR, str(exc) or type(exc).__name__)
            return
        except Exception as exc:
            _logger.exception("Failed to apply sync result")
            self._set_state(SyncStatus.ERROR, f"Failed to apply sync result: {exc!r}")
            return

        self._set_state(SyncStatus.SUCCESS)
        self._notify_update()

        if result.kind == PullKind.INITIAL:
            await self._after_initial_load()

    def _apply(self, result: PullResult) -> None:
        if result.kind == PullKind.INITIAL:
            self._store.replace_all(result.updates)
        else:
            # Undeclared fields only get a kind once the store has seen them.
            updates = validate_updates(
                result.updates,
                self._store.inferred_kinds(),
                endpoint=self._config.sync_endpoint,
            )
            self._store.merge_upsert(updates)
        self._advance_cursor(result.cursor)

    def _advance_cursor(self, cursor: str) -> None:
        if is_newer_cursor(cursor, self._cursor):
            self._cursor = cursor
            return
        _logger.warning(
            "Server returned non-advancing sync cursor %s (held %s); keeping held cursor",
            cursor,
            self._cursor,
        )

    async def _after_initial_load(self) -> None:
        if self._initial_load_done:
            return
        self._initial_load_done = True

        for hook in list(self._initial_load_hooks):
            try:
                hook()
            except Exception:
                _logger.debug("initial load hook failed", exc_info=True)

        if self._config.probe_enabled:
            await self._probe()

    async def _probe(self) -> None:
        """Best-effort capability probe: never retried, never a sync error."""
        try:
            status = await fetch_system_status(config=self._config, transport=self._transport)
        except DonegeonProbeError:
            _logger.debug("Capability probe failed", exc_info=True)
            return
        if self._closed:
            return
        self._store.set_capability(AI_CAPABILITY, status.capability(self._config.probe_flag))

    # ------------------------------------------------------------------
    # Generic merge path for confirmed business actions
    # ------------------------------------------------------------------

    def apply_update(self, delta: Mapping[str, Any]) -> None:
        """Merge server-confirmed records, exactly as a Delta Pull would.

        Raises :class:`DonegeonParseError` if a declared field has the wrong
        shape; the store is left untouched in that case.
        """
        validated = validate_updates(delta, {**self._store.inferred_kinds(), **self._kinds})
        self._store.merge_upsert(validated)
        self._notify_update()

    def apply_removal(self, ids_by_collection: Mapping[str, Iterable[str]]) -> None:
        """Drop server-confirmed deletions from the store (or their owner)."""
        self._store.remove_by_ids(validate_removals(ids_by_collection))
        self._notify_update()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel any in-flight Pull so its result is never applied."""
        self._closed = True
        self._pending = False
        tasks = [task for task in (self._task, self._poll_task) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._task = None
        self._poll_task = None
        if self._store.sync_state.status == SyncStatus.SYNCING:
            self._set_state(SyncStatus.IDLE)
