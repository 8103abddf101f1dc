"""Read-only projections of a snapshot used by the presentation layer."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .config import (
    DEFAULT_FILL_LEVEL_WEIGHT,
    FILL_LEVEL_WEIGHTS,
    NO_FILL_LEVEL_LABEL,
    NO_SORTING_LABEL,
    NO_VARIETY_LABEL,
    STALE_DAYS_THRESHOLD,
    STATUS_COLORS,
    VARIETY_COLORS,
)
from .vocabulary import sort_key

logger = logging.getLogger(__name__)


class BoxStatus(str, Enum):
    DEFAULT = "default"
    UPDATED = "updated"
    STALE = "stale"


STATUS_LABELS = {
    BoxStatus.DEFAULT: "Leer",
    BoxStatus.UPDATED: "Aktualisiert",
    BoxStatus.STALE: "Überfällig",
}


def _parse_date(value: Any) -> date | None:
    """Return ``date`` extracted from ISO string ``value``.

    Empty or malformed values return ``None`` instead of raising an error.
    """
    if isinstance(value, date):
        return value
    if not value:
        return None
    value = str(value).split("T", 1)[0]
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_empty(box: dict) -> bool:
    """A box without varieties, sorting and date counts as empty."""

    return not box.get("varieties") and not box.get("sorting") and not box.get("date")


def filter_boxes(
    boxes: Iterable[dict],
    search_term: str = "",
    variety: str = "",
    sorting: str = "",
    fill_level: str = "",
) -> List[dict]:
    """Return boxes matching every active filter, in their original order.

    ``search_term`` matches any box whose id contains it as a substring; the
    other filters require an exact match.  Empty filters are ignored.
    """

    search_term = (search_term or "").strip()
    result = []
    for box in boxes:
        if search_term and search_term not in str(box["id"]):
            continue
        if variety and variety not in (box.get("varieties") or []):
            continue
        if sorting and box.get("sorting") != sorting:
            continue
        if fill_level and box.get("fillLevel") != fill_level:
            continue
        result.append(box)
    return result


def box_status(box: dict, today: Optional[date] = None) -> BoxStatus:
    """Return whether ``box`` is undated, recently updated or stale."""

    stored = _parse_date(box.get("date"))
    if stored is None:
        if box.get("date"):
            logger.warning("Box %s has an unreadable date %r", box.get("id"), box.get("date"))
        return BoxStatus.DEFAULT
    today = today or date.today()
    if (today - stored).days > STALE_DAYS_THRESHOLD:
        return BoxStatus.STALE
    return BoxStatus.UPDATED


def status_label(status: BoxStatus) -> str:
    return STATUS_LABELS.get(status, "")


def box_color(box: dict, today: Optional[date] = None) -> str:
    """Return the display color for ``box``.

    Undated and stale boxes use their status color.  Updated boxes take the
    color of their first variety, or the generic updated color.
    """

    status = box_status(box, today)
    if status is not BoxStatus.UPDATED:
        return STATUS_COLORS[status.value]
    varieties = box.get("varieties") or []
    if varieties and varieties[0] in VARIETY_COLORS:
        return VARIETY_COLORS[varieties[0]]
    return STATUS_COLORS[BoxStatus.UPDATED.value]


def fill_level_weight(fill_level: Optional[str]) -> float:
    return FILL_LEVEL_WEIGHTS.get(fill_level or "", DEFAULT_FILL_LEVEL_WEIGHT)


def summarize(boxes: Iterable[dict]) -> Dict[str, Any]:
    """Return weighted stock counts grouped by variety, sorting and fill level.

    Empty boxes are only counted.  Every other box adds its fill-level weight
    to each of its varieties (a box with two varieties counts fully for
    both) and to the sorting below it, while the fill-level leaves count
    boxes.  Boxes without variety, sorting or fill level are grouped under
    sentinel labels.
    """

    empty_boxes = 0
    totals: Dict[str, float] = defaultdict(float)
    sorting_totals: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    fill_counts: Dict[str, Dict[str, Dict[str, int]]] = defaultdict(
        lambda: defaultdict(lambda: defaultdict(int))
    )

    for box in boxes:
        if is_empty(box):
            empty_boxes += 1
            continue
        varieties = box.get("varieties") or [NO_VARIETY_LABEL]
        sorting = box.get("sorting") or NO_SORTING_LABEL
        fill_level = box.get("fillLevel") or NO_FILL_LEVEL_LABEL
        weight = fill_level_weight(box.get("fillLevel"))
        for variety in varieties:
            totals[variety] += weight
            sorting_totals[variety][sorting] += weight
            fill_counts[variety][sorting][fill_level] += 1

    return {
        "empty_boxes": empty_boxes,
        "varieties": [
            {
                "name": variety,
                "weighted_total": totals[variety],
                "sortings": [
                    {
                        "name": sorting,
                        "weighted_total": sorting_totals[variety][sorting],
                        "fill_levels": [
                            {"name": level, "count": count}
                            for level, count in sorted(
                                fill_counts[variety][sorting].items(),
                                key=lambda item: sort_key(item[0]),
                            )
                        ],
                    }
                    for sorting in sorted(sorting_totals[variety], key=sort_key)
                ],
            }
            for variety in sorted(totals, key=sort_key)
        ],
    }
