"""Best-effort capability probe."""

from __future__ import annotations

from pydantic import ValidationError

from pydonegeon._transport import Transport
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonError, DonegeonProbeError
from pydonegeon.models.status import SystemStatus


async def fetch_system_status(*, config: DonegeonConfig, transport: Transport) -> SystemStatus:
    """Fetch the server's optional-integration status.

    Every failure is reported as :class:`DonegeonProbeError`, which callers
    log and swallow.
    """
    endpoint = config.status_endpoint
    try:
        body = await transport.get_json(endpoint)
    except DonegeonError as exc:
        raise DonegeonProbeError(f"Status probe failed: {exc}", endpoint=endpoint) from exc

    if not isinstance(body, dict):
        raise DonegeonProbeError(f"Status response from {endpoint} is not an object", endpoint=endpoint)
    try:
        return SystemStatus.model_validate(body)
    except ValidationError as exc:
        raise DonegeonProbeError(f"Malformed status response from {endpoint}", endpoint=endpoint) from exc
