"""System status model returned by the capability probe."""

from __future__ import annotations

from pydonegeon.models._base import DonegeonBaseModel


class SystemStatus(DonegeonBaseModel):
    """Body of ``GET /api/system/status``."""

    gemini_connected: bool = False

    def capability(self, flag: str) -> bool:
        """Return a boolean capability flag by its wire name.

        Anything that is not a JSON boolean counts as ``False``.
        """
        value = self.raw.get(flag)
        return value if isinstance(value, bool) else False
