"""CSV export of standings (pure formatting, read-only)."""
from __future__ import annotations

import csv
from io import StringIO
from typing import Any, Dict, List, Sequence

from .standings import standings_by_category
from .types import Document

CSV_BOM = "\ufeff"


def _crew_label(crew: Sequence[Any]) -> str:
    parts = []
    for member in crew:
        name = member.get("name", "")
        role = member.get("role") or member.get("funcao") or ""
        parts.append(f"{name} ({role})" if role else name)
    return "; ".join(parts)


def standings_rows(document: Document) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for category, standings in standings_by_category(document):
        for index, standing in enumerate(standings, start=1):
            rows.append(
                {
                    "categoria": category.get("name", ""),
                    "posicao": index,
                    "equipe": standing.team_name,
                    "popeiro": standing.skipper,
                    "tripulacao": _crew_label(standing.crew),
                    "ultimo_tempo_registrado": standing.latest_race_time or "N/A",
                    "melhor_posicao_obtida": standing.best_position,
                }
            )
    return rows


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return str(value)


def rows_to_csv(rows: Sequence[Dict[str, Any]]) -> str:
    """CSV text with a BOM (for Excel); columns are the union of row keys."""
    if not rows:
        return ""
    headers: List[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)
    buf = StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(headers)
    for row in rows:
        w.writerow([_cell(row.get(key)) for key in headers])
    return CSV_BOM + buf.getvalue()
