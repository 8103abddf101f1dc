"""Cascading edits on boxes and their controlled vocabularies.

Every function takes the current snapshot and returns a new one; the input is
never modified.  Boxes that an operation does not touch are shared between
the old and the new snapshot.  Operations on values that do not exist are
no-ops and return the snapshot unchanged.

Whether a box references a value is decided by exact string comparison, while
uniqueness of vocabulary entries is case-insensitive.  Callers are expected to
validate new names with :func:`validate_new_name` before calling the add and
rename operations.
"""

from __future__ import annotations

import datetime as dt
import unicodedata
from typing import Any, Iterable, Optional

Snapshot = dict[str, Any]
Box = dict[str, Any]

BOX_FIELDS = ("varieties", "sorting", "date", "fillLevel", "customTraits")


class VocabularyError(ValueError):
    """Raised when a new vocabulary name is rejected."""


class DuplicateNameError(VocabularyError):
    """Raised when a name already exists (ignoring case)."""


# Helpers --------------------------------------------------------------------


def sort_key(value: str) -> tuple[str, str]:
    """Return a key ordering ``value`` the way people expect to read it.

    Accents are stripped and case is folded so ``"Äpfel"`` sorts next to
    ``"apfel"``; the raw string breaks ties to keep the order stable.
    """

    text = unicodedata.normalize("NFKD", value or "")
    text = "".join(char for char in text if not unicodedata.combining(char))
    return text.casefold(), value or ""


def has_duplicate(items: Iterable[str], name: str, ignore: Optional[str] = None) -> bool:
    """Return ``True`` if ``name`` matches an entry of ``items`` ignoring case.

    ``ignore`` excludes one entry from the comparison, which allows renaming
    an entry to a different capitalisation of itself.
    """

    target = (name or "").strip().casefold()
    return any(item.casefold() == target for item in items if item != ignore)


def validate_new_name(items: Iterable[str], name: str | None, old: Optional[str] = None) -> str:
    """Return the trimmed ``name`` or raise :class:`VocabularyError`."""

    trimmed = (name or "").strip()
    if not trimmed:
        raise VocabularyError("Name must not be empty")
    if has_duplicate(list(items), trimmed, ignore=old):
        raise DuplicateNameError(f'An entry named "{trimmed}" already exists')
    return trimmed


def trait_names(snapshot: Snapshot) -> list[str]:
    return [trait["name"] for trait in snapshot.get("customTraits") or []]


def get_trait(snapshot: Snapshot, name: str) -> Optional[dict[str, Any]]:
    for trait in snapshot.get("customTraits") or []:
        if trait["name"] == name:
            return trait
    return None


def get_box(snapshot: Snapshot, box_id: int) -> Optional[Box]:
    for box in snapshot.get("boxes") or []:
        if box["id"] == box_id:
            return box
    return None


def _sorted(items: Iterable[str]) -> list[str]:
    return sorted(items, key=sort_key)


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _without(box: Box, key: str) -> Box:
    return {k: v for k, v in box.items() if k != key}


def _map_boxes(snapshot: Snapshot, update) -> list[Box]:
    """Return boxes with ``update(box)`` applied; ``None`` keeps the box."""

    boxes = []
    for box in snapshot.get("boxes") or []:
        changed = update(box)
        boxes.append(box if changed is None else changed)
    return boxes


# Single-valued lists (sortings, fill levels) ---------------------------------


def _add_entry(snapshot: Snapshot, key: str, name: str) -> Snapshot:
    items = snapshot.get(key) or []
    if not name or has_duplicate(items, name):
        return snapshot
    return {**snapshot, key: _sorted([*items, name])}


def _rename_entry(snapshot: Snapshot, key: str, field: str, old: str, new: str) -> Snapshot:
    items = snapshot.get(key) or []
    if old not in items or not new or old == new or has_duplicate(items, new, ignore=old):
        return snapshot

    def update(box: Box) -> Optional[Box]:
        if box.get(field) == old:
            return {**box, field: new}
        return None

    return {
        **snapshot,
        key: _sorted(new if item == old else item for item in items),
        "boxes": _map_boxes(snapshot, update),
    }


def _delete_entry(snapshot: Snapshot, key: str, field: str, name: str) -> Snapshot:
    items = snapshot.get(key) or []
    if name not in items:
        return snapshot

    def update(box: Box) -> Optional[Box]:
        if box.get(field) == name:
            return _without(box, field)
        return None

    return {
        **snapshot,
        key: [item for item in items if item != name],
        "boxes": _map_boxes(snapshot, update),
    }


def add_sorting(snapshot: Snapshot, name: str) -> Snapshot:
    return _add_entry(snapshot, "sortings", name)


def rename_sorting(snapshot: Snapshot, old: str, new: str) -> Snapshot:
    return _rename_entry(snapshot, "sortings", "sorting", old, new)


def delete_sorting(snapshot: Snapshot, name: str) -> Snapshot:
    return _delete_entry(snapshot, "sortings", "sorting", name)


def add_fill_level(snapshot: Snapshot, name: str) -> Snapshot:
    return _add_entry(snapshot, "fillLevels", name)


def rename_fill_level(snapshot: Snapshot, old: str, new: str) -> Snapshot:
    return _rename_entry(snapshot, "fillLevels", "fillLevel", old, new)


def delete_fill_level(snapshot: Snapshot, name: str) -> Snapshot:
    return _delete_entry(snapshot, "fillLevels", "fillLevel", name)


# Varieties (multi-valued on boxes) ------------------------------------------


def add_variety(snapshot: Snapshot, name: str) -> Snapshot:
    return _add_entry(snapshot, "varieties", name)


def rename_variety(snapshot: Snapshot, old: str, new: str) -> Snapshot:
    """Rename ``old`` to ``new`` in the list and in every box using it.

    The varieties of each affected box are re-sorted after the replacement.
    """

    items = snapshot.get("varieties") or []
    if old not in items or not new or old == new or has_duplicate(items, new, ignore=old):
        return snapshot

    def update(box: Box) -> Optional[Box]:
        current = box.get("varieties") or []
        if old not in current:
            return None
        renamed = _unique(new if v == old else v for v in current)
        return {**box, "varieties": _sorted(renamed)}

    return {
        **snapshot,
        "varieties": _sorted(new if v == old else v for v in items),
        "boxes": _map_boxes(snapshot, update),
    }


def delete_variety(snapshot: Snapshot, name: str) -> Snapshot:
    """Remove ``name`` from the list and from every box using it.

    Boxes keep their remaining varieties; a box that only held ``name`` is
    left without varieties but keeps all other fields.
    """

    items = snapshot.get("varieties") or []
    if name not in items:
        return snapshot

    def update(box: Box) -> Optional[Box]:
        current = box.get("varieties") or []
        if name not in current:
            return None
        return {**box, "varieties": [v for v in current if v != name]}

    return {
        **snapshot,
        "varieties": [v for v in items if v != name],
        "boxes": _map_boxes(snapshot, update),
    }


# Custom traits --------------------------------------------------------------


def _sorted_traits(traits: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(traits, key=lambda trait: sort_key(trait["name"]))


def add_trait(snapshot: Snapshot, name: str) -> Snapshot:
    names = trait_names(snapshot)
    if not name or has_duplicate(names, name):
        return snapshot
    traits = [*(snapshot.get("customTraits") or []), {"name": name, "options": []}]
    return {**snapshot, "customTraits": _sorted_traits(traits)}


def rename_trait(snapshot: Snapshot, old: str, new: str) -> Snapshot:
    """Rename trait ``old`` and move every box value to the ``new`` key."""

    names = trait_names(snapshot)
    if old not in names or not new or old == new or has_duplicate(names, new, ignore=old):
        return snapshot

    traits = [
        {**trait, "name": new} if trait["name"] == old else trait
        for trait in snapshot.get("customTraits") or []
    ]

    def update(box: Box) -> Optional[Box]:
        values = box.get("customTraits") or {}
        if old not in values:
            return None
        moved = {k: v for k, v in values.items() if k != old}
        moved[new] = values[old]
        return {**box, "customTraits": moved}

    return {
        **snapshot,
        "customTraits": _sorted_traits(traits),
        "boxes": _map_boxes(snapshot, update),
    }


def delete_trait(snapshot: Snapshot, name: str) -> Snapshot:
    if name not in trait_names(snapshot):
        return snapshot

    def update(box: Box) -> Optional[Box]:
        values = box.get("customTraits") or {}
        if name not in values:
            return None
        return {**box, "customTraits": _without(values, name)}

    return {
        **snapshot,
        "customTraits": [t for t in snapshot["customTraits"] if t["name"] != name],
        "boxes": _map_boxes(snapshot, update),
    }


def _replace_trait(snapshot: Snapshot, name: str, options: list[str]) -> list[dict[str, Any]]:
    return [
        {**trait, "options": options} if trait["name"] == name else trait
        for trait in snapshot.get("customTraits") or []
    ]


def add_trait_option(snapshot: Snapshot, trait_name: str, option: str) -> Snapshot:
    trait = get_trait(snapshot, trait_name)
    if trait is None:
        return snapshot
    options = trait.get("options") or []
    if not option or has_duplicate(options, option):
        return snapshot
    return {
        **snapshot,
        "customTraits": _replace_trait(snapshot, trait_name, _sorted([*options, option])),
    }


def rename_trait_option(snapshot: Snapshot, trait_name: str, old: str, new: str) -> Snapshot:
    trait = get_trait(snapshot, trait_name)
    if trait is None:
        return snapshot
    options = trait.get("options") or []
    if old not in options or not new or old == new or has_duplicate(options, new, ignore=old):
        return snapshot

    def update(box: Box) -> Optional[Box]:
        values = box.get("customTraits") or {}
        if values.get(trait_name) != old:
            return None
        return {**box, "customTraits": {**values, trait_name: new}}

    renamed = _sorted(new if o == old else o for o in options)
    return {
        **snapshot,
        "customTraits": _replace_trait(snapshot, trait_name, renamed),
        "boxes": _map_boxes(snapshot, update),
    }


def delete_trait_option(snapshot: Snapshot, trait_name: str, option: str) -> Snapshot:
    trait = get_trait(snapshot, trait_name)
    if trait is None or option not in (trait.get("options") or []):
        return snapshot

    def update(box: Box) -> Optional[Box]:
        values = box.get("customTraits") or {}
        if values.get(trait_name) != option:
            return None
        return {**box, "customTraits": _without(values, trait_name)}

    remaining = [o for o in trait["options"] if o != option]
    return {
        **snapshot,
        "customTraits": _replace_trait(snapshot, trait_name, remaining),
        "boxes": _map_boxes(snapshot, update),
    }


# Box edits ------------------------------------------------------------------


def _normalize_value(field: str, value: Any) -> Any:
    if field == "date" and isinstance(value, dt.date):
        return value.isoformat()
    if field == "varieties" and value is not None:
        return _unique(value)
    return value


def _merge_fields(box: Box, fields: dict[str, Any]) -> Box:
    """Return ``box`` with ``fields`` applied.

    Plain fields are overwritten; ``None`` or empty values unset them.
    ``customTraits`` is merged key by key and an empty value removes the key.
    """

    merged = dict(box)
    for field in BOX_FIELDS:
        if field not in fields:
            continue
        value = _normalize_value(field, fields[field])
        if field == "customTraits":
            traits = dict(box.get("customTraits") or {})
            for key, trait_value in (value or {}).items():
                if trait_value:
                    traits[key] = trait_value
                else:
                    traits.pop(key, None)
            merged["customTraits"] = traits
        elif value in (None, "", []):
            merged.pop(field, None)
        else:
            merged[field] = value
    merged["id"] = box["id"]
    return merged


def save_box(snapshot: Snapshot, box_id: int, fields: dict[str, Any]) -> Snapshot:
    """Merge ``fields`` into the box ``box_id``."""

    if get_box(snapshot, box_id) is None:
        return snapshot
    return {
        **snapshot,
        "boxes": _map_boxes(
            snapshot, lambda box: _merge_fields(box, fields) if box["id"] == box_id else None
        ),
    }


def clear_box(snapshot: Snapshot, box_id: int) -> Snapshot:
    """Reset box ``box_id`` so that only its id remains."""

    return bulk_clear(snapshot, [box_id])


def bulk_payload(fields: dict[str, Any]) -> dict[str, Any]:
    """Return the part of ``fields`` a bulk edit applies.

    Only truthy values are kept, so an absent field and an empty one both
    mean "leave as is".  Custom traits with empty values are dropped too.
    """

    payload = {
        field: fields[field]
        for field in BOX_FIELDS
        if field != "customTraits" and fields.get(field)
    }
    traits = {k: v for k, v in (fields.get("customTraits") or {}).items() if v}
    if traits:
        payload["customTraits"] = traits
    return payload


def bulk_apply(snapshot: Snapshot, ids: Iterable[int], fields: dict[str, Any]) -> Snapshot:
    """Apply ``fields`` to every box listed in ``ids``.

    Custom traits are merged into each box, so keys not mentioned in
    ``fields`` survive.
    """

    payload = bulk_payload(fields)
    targets = set(ids)
    if not payload or not targets:
        return snapshot
    return {
        **snapshot,
        "boxes": _map_boxes(
            snapshot, lambda box: _merge_fields(box, payload) if box["id"] in targets else None
        ),
    }


def bulk_clear(snapshot: Snapshot, ids: Iterable[int]) -> Snapshot:
    targets = set(ids)
    if not any(box["id"] in targets for box in snapshot.get("boxes") or []):
        return snapshot
    return {
        **snapshot,
        "boxes": _map_boxes(
            snapshot, lambda box: {"id": box["id"]} if box["id"] in targets else None
        ),
    }
