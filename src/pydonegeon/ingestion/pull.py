"""Initial and Delta Pull against the sync endpoint."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from pydonegeon._constants import CURSOR_PARAM
from pydonegeon._transport import Transport
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonParseError
from pydonegeon.ingestion.normalize import validate_updates
from pydonegeon.models.sync import SyncResponse
from pydonegeon.state.reconcile import FieldKind

_logger = logging.getLogger(__name__)


class PullKind(StrEnum):
    INITIAL = "initial"
    DELTA = "delta"


@dataclass(frozen=True)
class PullResult:
    """A validated sync response, ready to hand to the store."""

    kind: PullKind
    cursor: str
    updates: dict[str, Any] = field(default_factory=dict)
    requested_cursor: str | None = None


async def fetch_sync(
    *,
    config: DonegeonConfig,
    transport: Transport,
    cursor: str | None,
    kinds: Mapping[str, FieldKind],
) -> PullResult:
    """Run one Pull: a full snapshot without *cursor*, a delta with it.

    Nothing is applied here; a failure anywhere (transport, status, body)
    raises before the caller touches the store.
    """
    endpoint = config.sync_endpoint
    params = {CURSOR_PARAM: cursor} if cursor is not None else None
    kind = PullKind.DELTA if cursor is not None else PullKind.INITIAL

    body = await transport.get_json(endpoint, params)

    if not isinstance(body, dict):
        raise DonegeonParseError(f"Sync response from {endpoint} is not an object", endpoint=endpoint)
    try:
        response = SyncResponse.model_validate(body)
    except ValidationError as exc:
        raise DonegeonParseError(
            f"Malformed sync response from {endpoint}: {exc.error_count()} error(s)",
            endpoint=endpoint,
        ) from exc

    updates = validate_updates(response.updates, kinds, endpoint=endpoint)
    _logger.debug(
        "%s pull returned %d field(s) cursor=%s",
        kind.value,
        len(updates),
        response.new_sync_timestamp,
    )
    return PullResult(
        kind=kind,
        cursor=response.new_sync_timestamp,
        updates=updates,
        requested_cursor=cursor,
    )
