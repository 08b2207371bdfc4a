"""Base models for Task Donegeon API responses.

Every response model inherits from :class:`DonegeonBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase API keys map
  automatically to snake_case fields.
* A ``raw`` dict that captures the original payload.

Entity records themselves stay plain dicts inside the store; :class:`Record`
only exists to validate their shape at the ingestion boundary.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator
from pydantic.alias_generators import to_camel


class DonegeonBaseModel(BaseModel):
    """Base for Task Donegeon API response models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original API response dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        if "raw" in values:
            return values
        merged = dict(values)
        merged["raw"] = values
        return merged


class Record(BaseModel):
    """An identity-bearing entity as sent by the server.

    Only ``id`` is interpreted; every other key is carried through untouched.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: StrictStr
