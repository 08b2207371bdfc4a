#!/usr/bin/env python3
"""Sync against a Task Donegeon server and dump the local replica.

Runs an Initial Pull, optionally keeps listening on the push channel for a
while, then prints a summary of every field (or the whole store as JSON).

Usage
-----
::

    export DONEGEON_BASE_URL="http://localhost:3000"
    python scripts/dump_store.py

Options::

    --json               Output the store as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --watch SECONDS      Stay connected and apply pushed changes for SECONDS
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydonegeon import DonegeonClient, DonegeonConfig, SyncState  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _describe(value: Any) -> str:
    if isinstance(value, list):
        return f"{len(value)} item(s)"
    if isinstance(value, dict):
        return f"{len(value)} key(s)"
    return repr(value)


def _on_status(state: SyncState) -> None:
    suffix = f" ({state.error})" if state.error else ""
    print(f"  [{state.changed_at:%H:%M:%S}] sync {state.status.value}{suffix}", file=sys.stderr)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Dump the pydonegeon store after a sync")
    parser.add_argument("--json", dest="json_mode", action="store_true", help="Output as JSON")
    parser.add_argument("--output", "-o", help="Write output to file")
    parser.add_argument("--watch", type=float, default=0.0, help="Seconds to keep applying pushed changes")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {} if args.watch > 0 else {"push_transport": "none"}
    config = DonegeonConfig.from_env(**overrides)

    async with DonegeonClient(config, on_status_change=_on_status) as client:
        state = await client.start()
        if args.watch > 0:
            await asyncio.sleep(args.watch)
            await client.coordinator.wait_idle()
        cursor = client.coordinator.cursor
        dump = client.store.dump()
        users = client.users.users
        ai = client.is_ai_configured

    result: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "base_url": config.base_url,
        "status": state.status.value,
        "cursor": cursor,
        "users": users,
        **dump,
    }

    if args.json_mode:
        payload = json.dumps(result, indent=2, default=str, ensure_ascii=False)
        if args.output:
            Path(args.output).write_text(payload, encoding="utf-8")
            print(f"JSON written to {args.output}", file=sys.stderr)
        else:
            print(payload)
        return

    out: list[str] = [_section("pydonegeon dump_store")]
    out.append(f"  time      : {result['timestamp']}")
    out.append(f"  server    : {config.base_url}")
    out.append(f"  status    : {state.status.value}" + (f" ({state.error})" if state.error else ""))
    out.append(f"  cursor    : {cursor}")
    out.append(f"  ai        : {ai}")
    out.append(f"  users     : {len(users)}")

    out.append(_section("FIELDS"))
    for name, value in sorted(dump["fields"].items()):
        out.append(f"  {name}: {_describe(value)}")

    out.append(_section("INDEXES"))
    for name, value in sorted(dump["indexes"].items()):
        out.append(f"  {name}: {value}")

    text = "\n".join(out)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Summary written to {args.output}", file=sys.stderr)
    else:
        print(text)


if __name__ == "__main__":
    asyncio.run(main())
