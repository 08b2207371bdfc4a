"""Derived indexes computed from store collections.

Indexes are never patched incrementally: after every store mutation the
whole set is recomputed from the committed fields, so the result is always
identical to a from-scratch computation.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydonegeon._constants import ALL_TAGS_INDEX, QUESTS_COLLECTION


@dataclass(frozen=True)
class DerivedIndex:
    """A named value computed purely from the store's fields."""

    name: str
    compute: Callable[[Mapping[str, Any]], Any]


def collect_tags(records: Iterable[Any], key: str = "tags") -> frozenset[str]:
    """Deduplicated set of every string found in each record's *key* list."""
    tags: set[str] = set()
    for record in records:
        if not isinstance(record, dict):
            continue
        values = record.get(key)
        if not isinstance(values, list):
            continue
        tags.update(value for value in values if isinstance(value, str))
    return frozenset(tags)


def _all_quest_tags(fields: Mapping[str, Any]) -> frozenset[str]:
    quests = fields.get(QUESTS_COLLECTION)
    return collect_tags(quests if isinstance(quests, list) else ())


ALL_TAGS = DerivedIndex(name=ALL_TAGS_INDEX, compute=_all_quest_tags)


class IndexBuilder:
    """Recomputes a fixed set of derived indexes."""

    def __init__(self, indexes: Iterable[DerivedIndex] = (ALL_TAGS,)) -> None:
        self._indexes: tuple[DerivedIndex, ...] = tuple(indexes)
        names = [index.name for index in self._indexes]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate derived index names: {names}")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(index.name for index in self._indexes)

    def build(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        return {index.name: index.compute(fields) for index in self._indexes}
