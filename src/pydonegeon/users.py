"""Users directory: the subsystem that exclusively owns the ``users`` collection.

The sync engine never writes users into its own store. Pulled user entries
are forwarded here instead (see :mod:`pydonegeon.state.ownership`), so this
directory can keep its own invariants: the identity of the currently
selected user, and the persisted "last selected user" used to restore the
selection after the first full load.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from pydonegeon._constants import LAST_USER_ID_KEY

_logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal persisted key/value storage (e.g. browser local storage)."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local :class:`KeyValueStore`."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class UserDirectory:
    """Ordered user list plus the current selection.

    Implements :class:`pydonegeon.state.ownership.OwnedCollectionSink`.
    """

    def __init__(
        self,
        *,
        storage: KeyValueStore | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._storage: KeyValueStore = storage if storage is not None else MemoryKeyValueStore()
        self._users: dict[str, dict[str, Any]] = {}
        self._current_id: str | None = None
        self._restored = False
        self._on_change = on_change

    # ------------------------------------------------------------------
    # OwnedCollectionSink
    # ------------------------------------------------------------------

    def has_item(self, item_id: str) -> bool:
        return item_id in self._users

    def update_item(self, item_id: str, fields: Mapping[str, Any]) -> None:
        user = self._users.get(item_id)
        if user is None:
            _logger.warning("Update for unknown user id=%s ignored", item_id)
            return
        user.update(copy.deepcopy(dict(fields)))
        self._notify()

    def add_items(self, records: list[dict[str, Any]]) -> None:
        for record in records:
            self._users[record["id"]] = copy.deepcopy(record)
        if records:
            self._notify()

    def replace_items(self, records: list[dict[str, Any]]) -> None:
        self._users = {record["id"]: copy.deepcopy(record) for record in records}
        if self._current_id is not None and self._current_id not in self._users:
            _logger.debug("Current user id=%s vanished from snapshot; clearing selection", self._current_id)
            self._current_id = None
        self._notify()

    def remove_items(self, item_ids: set[str]) -> None:
        removed = False
        for item_id in item_ids:
            removed = self._users.pop(item_id, None) is not None or removed
        if self._current_id in item_ids:
            self.set_current_user(None)
        if removed:
            self._notify()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def on_initial_load(self) -> None:
        """Restore the persisted selection once, after the first full load."""
        if self._restored:
            return
        self._restored = True
        last_id = self._storage.get(LAST_USER_ID_KEY)
        if last_id is None:
            return
        if last_id in self._users:
            self._current_id = last_id
            _logger.debug("Restored current user id=%s", last_id)
        else:
            _logger.debug("Persisted user id=%s not found; selection not restored", last_id)

    def set_current_user(self, user_id: str | None) -> None:
        if user_id is not None and user_id not in self._users:
            raise KeyError(f"unknown user id {user_id!r}")
        self._current_id = user_id
        if user_id is None:
            self._storage.delete(LAST_USER_ID_KEY)
        else:
            self._storage.set(LAST_USER_ID_KEY, user_id)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def users(self) -> list[dict[str, Any]]:
        return copy.deepcopy(list(self._users.values()))

    @property
    def current_user(self) -> dict[str, Any] | None:
        if self._current_id is None:
            return None
        return copy.deepcopy(self._users.get(self._current_id))

    @property
    def is_first_run(self) -> bool:
        """No users exist yet on the server."""
        return not self._users

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user is not None else None

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception:
            _logger.debug("users on_change callback failed", exc_info=True)
