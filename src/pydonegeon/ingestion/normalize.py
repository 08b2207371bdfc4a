"""Normalization helpers for pulled payloads and cursors.

Centralizes payload shape validation so the reconciler can stay free of
defensive checks.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from pydonegeon.exceptions import DonegeonParseError
from pydonegeon.models._base import Record
from pydonegeon.state.reconcile import FieldKind

_RECORDS = TypeAdapter(list[Record])


def validate_updates(
    updates: Mapping[str, Any],
    kinds: Mapping[str, FieldKind],
    *,
    endpoint: str = "",
) -> dict[str, Any]:
    """Check every field of an ``updates`` payload against its declared kind.

    Declared collections must be lists of records with a string ``id``;
    declared singletons must be objects. Undeclared fields pass through and
    are classified by the reconciler from their shape.

    Raises
    ------
    DonegeonParseError
        A declared field has the wrong shape.
    """
    validated: dict[str, Any] = {}
    for name, value in updates.items():
        kind = kinds.get(name)
        if kind == FieldKind.COLLECTION:
            if not isinstance(value, list):
                raise DonegeonParseError(
                    f"Field {name!r} must be a list, got {type(value).__name__}",
                    endpoint=endpoint,
                )
            try:
                _RECORDS.validate_python(value)
            except ValidationError as exc:
                raise DonegeonParseError(
                    f"Field {name!r} contains records without a string id: {exc.error_count()} error(s)",
                    endpoint=endpoint,
                ) from exc
        elif kind == FieldKind.SINGLETON and not isinstance(value, dict):
            raise DonegeonParseError(
                f"Field {name!r} must be an object, got {type(value).__name__}",
                endpoint=endpoint,
            )
        validated[name] = value
    return validated


def validate_removals(ids_by_collection: Mapping[str, Iterable[str]]) -> dict[str, frozenset[str]]:
    """Materialize a removal request, rejecting non-string ids."""
    result: dict[str, frozenset[str]] = {}
    for name, ids in ids_by_collection.items():
        if isinstance(ids, str):
            raise TypeError(f"removal ids for {name!r} must be an iterable of ids, not a string")
        materialized = frozenset(ids)
        if any(not isinstance(item_id, str) for item_id in materialized):
            raise TypeError(f"removal ids for {name!r} must be strings")
        result[name] = materialized
    return result


def parse_cursor(value: str) -> datetime | None:
    """Interpret a cursor as an ISO-8601 timestamp when it is one."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def is_newer_cursor(candidate: str, held: str | None) -> bool:
    """Return True if *candidate* moves the sync position forward.

    Cursors are opaque, but the server issues ISO-8601 timestamps; those are
    compared as instants. Anything else falls back to string ordering.
    """
    if held is None:
        return True
    candidate_ts = parse_cursor(candidate)
    held_ts = parse_cursor(held)
    if candidate_ts is not None and held_ts is not None:
        return candidate_ts > held_ts
    return candidate > held
