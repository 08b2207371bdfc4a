"""Deterministic in-memory collection store.

This is the only component that holds the local replica of server-owned
fields. It is mutated exclusively by the sync coordinator through the three
reconciliation operations below; everything else only reads it.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable, Mapping
from typing import Any

from pydonegeon._constants import KNOWN_COLLECTIONS, KNOWN_SCALARS, KNOWN_SINGLETONS
from pydonegeon.state import reconcile
from pydonegeon.state.indexes import IndexBuilder
from pydonegeon.state.ownership import OwnershipForwarder, OwnershipRegistry
from pydonegeon.state.reconcile import FieldKind
from pydonegeon.state.status import SyncState


def default_kinds() -> dict[str, FieldKind]:
    kinds: dict[str, FieldKind] = {name: FieldKind.COLLECTION for name in KNOWN_COLLECTIONS}
    kinds.update({name: FieldKind.SINGLETON for name in KNOWN_SINGLETONS})
    kinds.update({name: FieldKind.SCALAR for name in KNOWN_SCALARS})
    return kinds


def _empty_value(kind: FieldKind) -> Any:
    # Every declared scalar so far is list-valued (loginHistory).
    return {} if kind == FieldKind.SINGLETON else []


def _jsonable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return copy.deepcopy(value)


class CollectionStore:
    """In-memory store for the server's collections and singleton fields.

    Every mutation follows the same sequence: owned entries are extracted
    and forwarded to their owner, the remaining payload is reconciled into
    a *new* field mapping, derived indexes are rebuilt from it, and only then
    is the result committed. Readers therefore never observe a partially
    applied payload.
    """

    def __init__(
        self,
        *,
        forwarder: OwnershipForwarder | None = None,
        index_builder: IndexBuilder | None = None,
        kinds: Mapping[str, FieldKind] | None = None,
    ) -> None:
        self._forwarder = forwarder if forwarder is not None else OwnershipForwarder(OwnershipRegistry())
        self._index_builder = index_builder if index_builder is not None else IndexBuilder()
        self._kinds: dict[str, FieldKind] = dict(kinds) if kinds is not None else default_kinds()
        owned = self._forwarder.registry.collections
        self._fields: dict[str, Any] = {
            name: _empty_value(kind) for name, kind in self._kinds.items() if name not in owned
        }
        self._indexes: dict[str, Any] = self._index_builder.build(self._fields)
        self._loaded = False
        self._revision = 0
        self._sync_state = SyncState()
        self._capabilities: dict[str, bool] = {}

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def replace_all(self, snapshot: Mapping[str, Any]) -> None:
        """Replace every field present in a full snapshot and mark loaded."""
        owned, rest = self._forwarder.registry.partition(snapshot)
        fields = reconcile.replace_all(self._fields, rest, self._kinds)
        indexes = self._index_builder.build(fields)
        self._forwarder.forward_replace(owned)
        self._commit(fields, indexes)
        self._loaded = True

    def merge_upsert(self, delta: Mapping[str, Any]) -> None:
        """Merge a partial payload (collections by id, singletons by key)."""
        owned, rest = self._forwarder.registry.partition(delta)
        fields = reconcile.merge_upsert(self._fields, rest, self._kinds)
        indexes = self._index_builder.build(fields)
        self._forwarder.forward_upsert(owned)
        self._commit(fields, indexes)

    def remove_by_ids(self, ids_by_collection: Mapping[str, Iterable[str]]) -> None:
        """Drop records by id from each named collection."""
        owned, rest = self._forwarder.registry.partition(ids_by_collection)
        fields = reconcile.remove_by_ids(self._fields, rest, self._kinds)
        indexes = self._index_builder.build(fields)
        self._forwarder.forward_remove(owned)
        self._commit(fields, indexes)

    def _commit(self, fields: dict[str, Any], indexes: dict[str, Any]) -> None:
        self._fields = fields
        self._indexes = indexes
        self._revision += 1

    # ------------------------------------------------------------------
    # Coordinator-only bookkeeping
    # ------------------------------------------------------------------

    def set_sync_state(self, state: SyncState) -> None:
        self._sync_state = state

    def set_capability(self, name: str, value: bool) -> None:
        self._capabilities[name] = value

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def revision(self) -> int:
        """Number of committed mutations since creation."""
        return self._revision

    @property
    def sync_state(self) -> SyncState:
        return self._sync_state

    @property
    def capabilities(self) -> dict[str, bool]:
        return dict(self._capabilities)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def kind_of(self, name: str) -> FieldKind:
        return reconcile.resolve_kind(name, self._kinds, self._fields.get(name))

    def inferred_kinds(self) -> dict[str, FieldKind]:
        """Kinds of undeclared fields, as classified from their held value."""
        kinds: dict[str, FieldKind] = {}
        for name, value in self._fields.items():
            if name in self._kinds:
                continue
            inferred = reconcile.infer_kind(value)
            if inferred is not None:
                kinds[name] = inferred
        return kinds

    def get_field(self, name: str) -> Any:
        """Deep copy of any field, or None if the store has never seen it."""
        return copy.deepcopy(self._fields.get(name))

    def get_collection(self, name: str) -> list[dict[str, Any]]:
        value = self._fields.get(name)
        if not isinstance(value, list):
            return []
        return copy.deepcopy(value)

    def get_singleton(self, name: str) -> dict[str, Any]:
        value = self._fields.get(name)
        if not isinstance(value, dict):
            return {}
        return copy.deepcopy(value)

    def get_index(self, name: str) -> Any:
        if name not in self._indexes:
            raise KeyError(f"unknown derived index {name!r}")
        return copy.deepcopy(self._indexes[name])

    def dump(self) -> dict[str, Any]:
        """Serializable copy of the store content (excluding sync status)."""
        return {
            "loaded": self._loaded,
            "fields": copy.deepcopy(self._fields),
            "indexes": {name: _jsonable(value) for name, value in self._indexes.items()},
            "capabilities": dict(self._capabilities),
        }

    def dump_json(self) -> str:
        return json.dumps(self.dump(), sort_keys=True, separators=(",", ":"))
