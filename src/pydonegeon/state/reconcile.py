"""Deterministic reconciliation of pulled payloads into store fields.

Pure functions only: every function takes the current field mapping and
returns a new one, leaving its inputs untouched. The store decides when the
result is committed, which is what keeps a failed Pull from leaving a
half-applied state behind.

This module intentionally contains *no* payload validation. The ingestion
boundary guarantees that collection values are lists of dicts carrying a
string ``id`` and that singleton values are dicts.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any


class FieldKind(StrEnum):
    COLLECTION = "collection"
    SINGLETON = "singleton"
    SCALAR = "scalar"


def is_record(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("id"), str)


def infer_kind(value: Any) -> FieldKind | None:
    """Classify a value, or return None when it is ambiguous (empty list)."""
    if isinstance(value, list):
        if not value:
            return None
        return FieldKind.COLLECTION if all(is_record(item) for item in value) else FieldKind.SCALAR
    if isinstance(value, dict):
        return FieldKind.SINGLETON
    return FieldKind.SCALAR


def resolve_kind(
    name: str,
    kinds: Mapping[str, FieldKind],
    existing: Any = None,
    incoming: Any = None,
) -> FieldKind:
    """Kind of a field: declared first, then inferred from either side."""
    declared = kinds.get(name)
    if declared is not None:
        return declared
    for candidate in (existing, incoming):
        inferred = infer_kind(candidate)
        if inferred is not None:
            return inferred
    return FieldKind.SCALAR


def upsert_records(existing: Iterable[dict[str, Any]], incoming: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Overlay *incoming* onto *existing* by id.

    Pre-existing ids keep their relative position (overwritten in place),
    new ids are appended in the order they arrive. Applying the same
    *incoming* twice yields the same list as applying it once.
    """
    merged: dict[str, dict[str, Any]] = {item["id"]: item for item in existing}
    for item in incoming:
        merged[item["id"]] = copy.deepcopy(item)
    return list(merged.values())


def replace_all(
    fields: Mapping[str, Any],
    snapshot: Mapping[str, Any],
    kinds: Mapping[str, FieldKind],
) -> dict[str, Any]:
    """Replace every field present in a full snapshot.

    Fields the snapshot does not mention keep their current value. Only valid
    for full snapshots; a partial payload must go through :func:`merge_upsert`.
    """
    result = dict(fields)
    for name, value in snapshot.items():
        if resolve_kind(name, kinds, incoming=value) == FieldKind.COLLECTION:
            # Rebuilding through the id map also collapses duplicate ids.
            result[name] = upsert_records((), value)
        else:
            result[name] = copy.deepcopy(value)
    return result


def merge_upsert(
    fields: Mapping[str, Any],
    delta: Mapping[str, Any],
    kinds: Mapping[str, FieldKind],
) -> dict[str, Any]:
    """Merge a partial payload.

    Collections are upserted by id, singletons are merged shallowly key by
    key, everything else is replaced outright.
    """
    result = dict(fields)
    for name, value in delta.items():
        existing = fields.get(name)
        kind = resolve_kind(name, kinds, existing, value)
        if kind == FieldKind.COLLECTION:
            result[name] = upsert_records(existing or (), value)
        elif kind == FieldKind.SINGLETON and isinstance(existing, dict):
            merged = dict(existing)
            merged.update(copy.deepcopy(value))
            result[name] = merged
        else:
            result[name] = copy.deepcopy(value)
    return result


def remove_by_ids(
    fields: Mapping[str, Any],
    ids_by_collection: Mapping[str, Iterable[str]],
    kinds: Mapping[str, FieldKind],
) -> dict[str, Any]:
    """Drop every record whose id is in the removal set of its collection.

    Names that are not collections in the current fields are ignored.
    """
    result = dict(fields)
    for name, ids in ids_by_collection.items():
        existing = fields.get(name)
        if not isinstance(existing, list):
            continue
        if resolve_kind(name, kinds, existing) != FieldKind.COLLECTION:
            continue
        doomed = set(ids)
        if not doomed:
            continue
        result[name] = [item for item in existing if item.get("id") not in doomed]
    return result
