"""
Rich rendering helpers shared by CLI commands.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def print_json(payload: Any) -> None:
    """Emit ``payload`` as JSON; enums and other objects fall back to ``str``."""
    console.print_json(json.dumps(payload, default=str))


def print_table(
    rows: Iterable[Mapping[str, Any]],
    *,
    title: str,
    columns: list[str] | None = None,
) -> None:
    """Render mappings as a table. Columns default to the first row's keys."""
    rows = list(rows)
    if not rows:
        console.print(f"[dim]No {title.lower()}.[/dim]")
        return
    table = Table(title=title)
    names = columns or list(rows[0])
    for name in names:
        table.add_column(name)
    for row in rows:
        table.add_row(*(_cell(row.get(name)) for name in names))
    console.print(table)


def print_dict(data: Mapping[str, Any], *, title: str) -> None:
    """Render one mapping as a key/value table."""
    table = Table(title=title, show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    for key, value in data.items():
        table.add_row(key, _cell(value))
    console.print(table)
