from __future__ import annotations

import json
from typing import List

import yaml

from .objects.base import Snapshot
from .timeutil import format_instant

OUTPUT_FORMATS = ("yaml", "json")


def render_get(snapshot: Snapshot, output: str = "yaml") -> str:
    """The latest recorded object body as YAML (default) or JSON."""
    body = snapshot.body
    if output == "json":
        return json.dumps(body, indent=2, default=str)
    if output != "yaml":
        raise ValueError(f"unknown output format: {output}")
    if body is None:
        return "null"
    return yaml.safe_dump(body, sort_keys=False, default_flow_style=False).rstrip("\n")


def _heading(title: str) -> List[str]:
    return [title, "-" * len(title)]


def render_describe(snapshot: Snapshot) -> str:
    lines: List[str] = _heading(str(snapshot.identity))

    summary = snapshot.summary_fields()
    for label, value in summary:
        lines.append(f"{label}: {value}")
    if summary:
        lines.append("")

    for label, ts in snapshot.timestamp_fields():
        lines.append(f"{label}: {format_instant(ts)}")

    for title, body in snapshot.sections():
        lines.append("")
        lines.extend(_heading(title))
        lines.extend(body)

    lines.append("")
    lines.extend(_heading("Events"))
    if not snapshot.events:
        lines.append("<none>")
    for e in snapshot.events:
        line = f"{format_instant(e.timestamp)}  {e.event_kind.value:<18}"
        if e.description:
            line += f"  {e.description}"
        lines.append(line.rstrip())

    return "\n".join(lines)
