"""Default state used when the remote document does not exist yet."""

from __future__ import annotations

from typing import Any

from .config import (
    DEFAULT_FILL_LEVELS,
    DEFAULT_SORTINGS,
    DEFAULT_VARIETIES,
    TOTAL_BOXES,
)

SNAPSHOT_KEYS = ("boxes", "varieties", "sortings", "fillLevels", "customTraits")


def initial_snapshot(total_boxes: int = TOTAL_BOXES) -> dict[str, Any]:
    """Return the canonical empty state.

    Every box only carries its id, the vocabularies hold the starter lists
    in their configured order (lists are only re-sorted by later edits)
    and no custom traits are defined.
    """

    return {
        "boxes": [{"id": i} for i in range(1, total_boxes + 1)],
        "varieties": list(DEFAULT_VARIETIES),
        "sortings": list(DEFAULT_SORTINGS),
        "fillLevels": list(DEFAULT_FILL_LEVELS),
        "customTraits": [],
    }


def is_valid_snapshot(data: Any) -> bool:
    """Return ``True`` when ``data`` has the shape of a stored snapshot."""

    if not isinstance(data, dict):
        return False
    if any(key not in data for key in SNAPSHOT_KEYS):
        return False
    if not isinstance(data["boxes"], list):
        return False
    return all(isinstance(box, dict) and "id" in box for box in data["boxes"])
