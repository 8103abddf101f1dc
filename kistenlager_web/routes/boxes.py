"""Box editing, summary and export API routes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, status

from kistenlager import csv_utils, views, vocabulary
from kistenlager.sync import SyncEngine

from .. import schemas
from ..engine import get_engine

router = APIRouter(tags=["boxes"])

logger = logging.getLogger(__name__)

# request field -> snapshot key
FIELD_KEYS = {
    "varieties": "varieties",
    "sorting": "sorting",
    "date": "date",
    "fill_level": "fillLevel",
    "custom_traits": "customTraits",
}


def _to_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {FIELD_KEYS[key]: value for key, value in data.items() if key in FIELD_KEYS}


def _box_read(box: dict) -> schemas.BoxRead:
    state = views.box_status(box)
    return schemas.BoxRead(
        id=box["id"],
        varieties=box.get("varieties") or [],
        sorting=box.get("sorting"),
        date=box.get("date"),
        fill_level=box.get("fillLevel"),
        custom_traits=box.get("customTraits") or {},
        status=state.value,
        status_label=views.status_label(state),
        color=views.box_color(box),
    )


def _require_box(snapshot: dict, box_id: int) -> dict:
    box = vocabulary.get_box(snapshot, box_id)
    if box is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Kiste nicht gefunden")
    return box


def _check_references(snapshot: dict, fields: dict[str, Any]) -> None:
    """Reject values that are not part of the current vocabularies."""

    unknown: list[str] = []
    for variety in fields.get("varieties") or []:
        if variety not in snapshot["varieties"]:
            unknown.append(variety)
    if fields.get("sorting") and fields["sorting"] not in snapshot["sortings"]:
        unknown.append(fields["sorting"])
    if fields.get("fillLevel") and fields["fillLevel"] not in snapshot["fillLevels"]:
        unknown.append(fields["fillLevel"])
    for trait_name, option in (fields.get("customTraits") or {}).items():
        trait = vocabulary.get_trait(snapshot, trait_name)
        if trait is None:
            unknown.append(trait_name)
        elif option and option not in trait["options"]:
            unknown.append(option)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unbekannte Werte: {', '.join(unknown)}",
        )


@router.get("/boxes", response_model=list[schemas.BoxRead])
async def list_boxes(
    search: str = "",
    variety: str = "",
    sorting: str = "",
    fill_level: str = "",
    engine: SyncEngine = Depends(get_engine),
):
    boxes = views.filter_boxes(
        engine.snapshot["boxes"],
        search_term=search,
        variety=variety,
        sorting=sorting,
        fill_level=fill_level,
    )
    return [_box_read(box) for box in boxes]


@router.get("/boxes/{box_id}", response_model=schemas.BoxRead)
async def get_box(box_id: int, engine: SyncEngine = Depends(get_engine)):
    return _box_read(_require_box(engine.snapshot, box_id))


@router.put("/boxes/{box_id}", response_model=schemas.BoxRead)
async def save_box(
    box_id: int,
    payload: schemas.BoxUpdate,
    engine: SyncEngine = Depends(get_engine),
):
    _require_box(engine.snapshot, box_id)
    fields = _to_fields(payload.model_dump(exclude_unset=True))
    _check_references(engine.snapshot, fields)
    snapshot = engine.apply(vocabulary.save_box, box_id, fields)
    return _box_read(_require_box(snapshot, box_id))


@router.delete("/boxes/{box_id}", response_model=schemas.BoxRead)
async def clear_box(box_id: int, engine: SyncEngine = Depends(get_engine)):
    _require_box(engine.snapshot, box_id)
    snapshot = engine.apply(vocabulary.clear_box, box_id)
    return _box_read(_require_box(snapshot, box_id))


@router.post("/boxes/bulk", response_model=list[schemas.BoxRead])
async def bulk_edit(payload: schemas.BulkEdit, engine: SyncEngine = Depends(get_engine)):
    data = payload.model_dump(exclude_unset=True)
    ids = data.pop("ids")
    fields = vocabulary.bulk_payload(_to_fields(data))
    _check_references(engine.snapshot, fields)
    snapshot = engine.apply(vocabulary.bulk_apply, ids, fields)
    logger.info("Bulk edit of %d boxes: %s", len(ids), sorted(fields))
    targets = set(ids)
    return [_box_read(box) for box in snapshot["boxes"] if box["id"] in targets]


@router.post("/boxes/bulk-clear", response_model=list[schemas.BoxRead])
async def bulk_clear(payload: schemas.BulkClear, engine: SyncEngine = Depends(get_engine)):
    snapshot = engine.apply(vocabulary.bulk_clear, payload.ids)
    targets = set(payload.ids)
    return [_box_read(box) for box in snapshot["boxes"] if box["id"] in targets]


@router.get("/summary", response_model=schemas.Summary)
async def summary(engine: SyncEngine = Depends(get_engine)):
    return views.summarize(engine.snapshot["boxes"])


@router.get("/export.csv")
async def export_csv(engine: SyncEngine = Depends(get_engine)):
    content = csv_utils.build_export_csv(engine.snapshot)
    filename = csv_utils.export_file_name()
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
