#!/usr/bin/env python3
"""Poll the BudBox controller once and dump what the library sees.

Prints every decoded variable of the status feed, the connection state,
and the remote watering record, so you can check a rig's wiring and
variable names without the dashboard.

Usage
-----
Set environment variables and run::

    export BUDBOX_CONTROLLER_URL="http://192.168.0.213"
    python scripts/dump_feed.py

Options::

    --json               Output as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --write NAME=VALUE   Write an actuator before polling (repeatable)
    --skip-watering      Do not fetch the watering record
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

from pybudbox import BudboxClient, BudboxConfig, BudboxError  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _parse_write(value: str) -> tuple[str, float]:
    name, sep, raw = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    try:
        return name.strip(), float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"value for {name!r} must be numeric, got {raw!r}") from exc


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Poll a BudBox controller once for debugging / development.",
    )
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument(
        "--write",
        action="append",
        type=_parse_write,
        default=[],
        metavar="NAME=VALUE",
        help="Write an actuator before polling (repeatable)",
    )
    parser.add_argument("--skip-watering", action="store_true", help="Skip the watering record")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = BudboxConfig.from_env()
    result: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "controller": config.status_url,
        "writes": [],
    }

    async with BudboxClient(config, autorun=False) as client:
        for name, value in args.write:
            try:
                ack = await client.write_variable(name, value)
                result["writes"].append(ack.model_dump(mode="json"))
            except BudboxError as exc:
                result["writes"].append({"name": name, "error": str(exc)})

        snapshot = await client.refresh()
        link = client.link
        result["state"] = str(link.state)
        result["error"] = str(link.last_error) if link.last_error is not None else None
        result["online"] = link.state.is_online
        result["variables"] = snapshot.as_values() if snapshot is not None else {}
        result["kinds"] = (
            {name: str(var.kind) for name, var in snapshot.variables.items()} if snapshot is not None else {}
        )

        if not args.skip_watering:
            outcome = await client.refresh_watering()
            result["watering"] = {
                "outcome": str(outcome),
                "state": client.resource.model_dump(by_alias=True),
            }

    if args.json_mode:
        payload = json.dumps(result, indent=2, default=str, ensure_ascii=False)
        if args.output:
            Path(args.output).write_text(payload, encoding="utf-8")
            print(f"JSON written to {args.output}", file=sys.stderr)
        else:
            print(payload)
        return

    out: list[str] = [_section("pybudbox dump_feed")]
    out.append(f"  time       : {result['timestamp']}")
    out.append(f"  controller : {result['controller']}")
    out.append(f"  state      : {result['state']}")
    if result["error"]:
        out.append(f"  error      : {result['error']}")
    for write in result["writes"]:
        out.append(f"  write      : {write}")

    out.append(_section("VARIABLES"))
    if not result["variables"]:
        out.append("  (none)")
    for name, value in result["variables"].items():
        out.append(f"  {name:<20} {result['kinds'][name]:<5} {value}")

    if "watering" in result:
        out.append(_section("WATERING"))
        out.append(f"  fetch      : {result['watering']['outcome']}")
        for key, value in result["watering"]["state"].items():
            out.append(f"  {key:<20} {value}")

    text = "\n".join(out)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Output written to {args.output}")
    else:
        print(text)


if __name__ == "__main__":
    asyncio.run(main())
