import csv
import io
import logging
from datetime import date
from typing import Optional

from .vocabulary import sort_key

logger = logging.getLogger(__name__)

# column order for the exported stock list; trait columns follow in
# name order
EXPORT_FIELDNAMES = [
    "Kistennummer",
    "Datum",
    "Sorte(n)",
    "Sortierung",
    "Füllstand",
]

EXPORT_FILE_PREFIX = "Kartoffelkisten_Bestand"
BOM = "\ufeff"


def export_trait_names(snapshot: dict) -> list[str]:
    return sorted(
        (trait["name"] for trait in snapshot.get("customTraits") or []), key=sort_key
    )


def export_rows(snapshot: dict) -> list[list[str]]:
    """Return one row per box in id order, header row excluded.

    Missing values are exported as empty strings and varieties are joined
    with ``"; "``.
    """

    traits = export_trait_names(snapshot)
    rows = []
    for box in sorted(snapshot.get("boxes") or [], key=lambda b: b["id"]):
        values = box.get("customTraits") or {}
        rows.append(
            [
                str(box["id"]),
                box.get("date") or "",
                "; ".join(box.get("varieties") or []),
                box.get("sorting") or "",
                box.get("fillLevel") or "",
                *(values.get(name) or "" for name in traits),
            ]
        )
    return rows


def build_export_csv(snapshot: dict) -> str:
    """Return the export as text, prefixed with a byte-order mark.

    Fields containing a comma, quote or line break are quoted with inner
    quotes doubled.
    """

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=",", lineterminator="\n")
    writer.writerow(EXPORT_FIELDNAMES + export_trait_names(snapshot))
    writer.writerows(export_rows(snapshot))
    text = buffer.getvalue()
    # no trailing newline after the last row
    if text.endswith("\n"):
        text = text[:-1]
    return BOM + text


def export_file_name(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{EXPORT_FILE_PREFIX}_{today.isoformat()}.csv"


def write_export_csv(snapshot: dict, path: str) -> None:
    """Write the export for ``snapshot`` to ``path`` as UTF-8 with BOM."""

    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(build_export_csv(snapshot))
    logger.info("Exported %d boxes to %s", len(snapshot.get("boxes") or []), path)
