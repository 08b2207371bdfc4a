"""Ownership partition: collections written by another subsystem.

Some collections (by default ``users``) are owned by a sibling subsystem that
keeps its own copy and its own invariants (e.g. which user is currently
selected). The store never merges their entries; instead the forwarder routes
them to the registered owner. Two writers therefore never race on the same
records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

_logger = logging.getLogger(__name__)


class OwnedCollectionSink(Protocol):
    """Structural interface of a subsystem that owns a collection."""

    def has_item(self, item_id: str) -> bool: ...

    def update_item(self, item_id: str, fields: Mapping[str, Any]) -> None: ...

    def add_items(self, records: list[dict[str, Any]]) -> None: ...

    def replace_items(self, records: list[dict[str, Any]]) -> None: ...

    def remove_items(self, item_ids: set[str]) -> None: ...


class OwnershipRegistry:
    """Maps collection names to their exclusive write owner."""

    def __init__(self) -> None:
        self._owners: dict[str, OwnedCollectionSink] = {}

    def register(self, collection: str, owner: OwnedCollectionSink) -> None:
        existing = self._owners.get(collection)
        if existing is not None and existing is not owner:
            raise ValueError(f"collection {collection!r} already has an owner")
        self._owners[collection] = owner

    def unregister(self, collection: str) -> None:
        self._owners.pop(collection, None)

    def owner(self, collection: str) -> OwnedCollectionSink | None:
        return self._owners.get(collection)

    def is_owned(self, collection: str) -> bool:
        return collection in self._owners

    @property
    def collections(self) -> frozenset[str]:
        return frozenset(self._owners)

    def partition(self, payload: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Split a payload into ``(owned, unowned)`` entries."""
        owned: dict[str, Any] = {}
        unowned: dict[str, Any] = {}
        for name, value in payload.items():
            if name in self._owners:
                owned[name] = value
            else:
                unowned[name] = value
        return owned, unowned


class OwnershipForwarder:
    """Routes extracted owned entries to their owner."""

    def __init__(self, registry: OwnershipRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> OwnershipRegistry:
        return self._registry

    def _owner(self, collection: str) -> OwnedCollectionSink:
        owner = self._registry.owner(collection)
        if owner is None:
            raise KeyError(f"collection {collection!r} has no registered owner")
        return owner

    def forward_replace(self, owned: Mapping[str, Iterable[dict[str, Any]]]) -> None:
        """Hand a full snapshot of each owned collection to its owner."""
        for collection, records in owned.items():
            items = list(records)
            _logger.debug("Forwarding snapshot of %d %s to owner", len(items), collection)
            self._owner(collection).replace_items(items)

    def forward_upsert(self, owned: Mapping[str, Iterable[dict[str, Any]]]) -> None:
        """Update existing items in place, insert the rest as new.

        Entries are handled one by one so that a later entry with the same id
        in the same batch updates the one inserted before it.
        """
        for collection, records in owned.items():
            owner = self._owner(collection)
            updated = inserted = 0
            for record in records:
                item_id = record["id"]
                if owner.has_item(item_id):
                    owner.update_item(item_id, record)
                    updated += 1
                else:
                    owner.add_items([record])
                    inserted += 1
            _logger.debug("Forwarded %s: updated=%d inserted=%d", collection, updated, inserted)

    def forward_remove(self, owned_ids: Mapping[str, Iterable[str]]) -> None:
        for collection, ids in owned_ids.items():
            doomed = set(ids)
            if doomed:
                self._owner(collection).remove_items(doomed)
