"""Routes maintaining varieties, sortings, fill levels and custom traits.

Names are validated here before the cascading edit runs: empty names are
rejected with ``422`` and names that already exist (ignoring case) with
``409``.  Entry and option names are the last path segment and may contain
``/`` (sent as ``%2F``); trait names may not.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from kistenlager import vocabulary
from kistenlager.sync import SyncEngine

from .. import schemas
from ..engine import get_engine

router = APIRouter(tags=["vocabulary"])

# url segment -> (snapshot key, add, rename, delete)
LIST_KINDS = {
    "varieties": (
        "varieties",
        vocabulary.add_variety,
        vocabulary.rename_variety,
        vocabulary.delete_variety,
    ),
    "sortings": (
        "sortings",
        vocabulary.add_sorting,
        vocabulary.rename_sorting,
        vocabulary.delete_sorting,
    ),
    "fill-levels": (
        "fillLevels",
        vocabulary.add_fill_level,
        vocabulary.rename_fill_level,
        vocabulary.delete_fill_level,
    ),
}


def _vocabulary_read(snapshot: dict) -> schemas.VocabularyRead:
    return schemas.VocabularyRead(
        varieties=snapshot["varieties"],
        sortings=snapshot["sortings"],
        fill_levels=snapshot["fillLevels"],
        custom_traits=[
            schemas.TraitRead(name=trait["name"], options=trait.get("options") or [])
            for trait in snapshot["customTraits"]
        ],
    )


def _validated(items: list[str], name: str, old: str | None = None) -> str:
    try:
        return vocabulary.validate_new_name(items, name, old=old)
    except vocabulary.DuplicateNameError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f'Ein Element mit dem Namen "{name.strip()}" existiert bereits.',
        ) from exc
    except vocabulary.VocabularyError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc


def _validated_trait_name(snapshot: dict, name: str, old: str | None = None) -> str:
    # trait names are a path segment in front of their options
    trimmed = _validated(vocabulary.trait_names(snapshot), name, old=old)
    if "/" in trimmed:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Merkmalsnamen dürfen keinen Schrägstrich enthalten.",
        )
    return trimmed


def _kind(kind: str):
    try:
        return LIST_KINDS[kind]
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown list: {kind}"
        ) from None


def _require_item(items: list[str], name: str) -> None:
    if name not in items:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Element nicht gefunden")


def _require_trait(snapshot: dict, name: str) -> dict:
    trait = vocabulary.get_trait(snapshot, name)
    if trait is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Merkmal nicht gefunden")
    return trait


@router.get("/vocabulary", response_model=schemas.VocabularyRead)
async def get_vocabulary(engine: SyncEngine = Depends(get_engine)):
    return _vocabulary_read(engine.snapshot)


@router.post(
    "/vocabulary/{kind}",
    response_model=schemas.VocabularyRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_entry(kind: str, payload: schemas.NameCreate, engine: SyncEngine = Depends(get_engine)):
    key, add, _rename, _delete = _kind(kind)
    name = _validated(engine.snapshot[key], payload.name)
    return _vocabulary_read(engine.apply(add, name))


@router.put("/vocabulary/{kind}/{name:path}", response_model=schemas.VocabularyRead)
async def rename_entry(
    kind: str,
    name: str,
    payload: schemas.NameRename,
    engine: SyncEngine = Depends(get_engine),
):
    key, _add, rename, _delete = _kind(kind)
    items = engine.snapshot[key]
    _require_item(items, name)
    new_name = _validated(items, payload.name, old=name)
    return _vocabulary_read(engine.apply(rename, name, new_name))


@router.delete("/vocabulary/{kind}/{name:path}", response_model=schemas.VocabularyRead)
async def delete_entry(kind: str, name: str, engine: SyncEngine = Depends(get_engine)):
    key, _add, _rename, delete = _kind(kind)
    _require_item(engine.snapshot[key], name)
    return _vocabulary_read(engine.apply(delete, name))


@router.post("/traits", response_model=schemas.VocabularyRead, status_code=status.HTTP_201_CREATED)
async def add_trait(payload: schemas.NameCreate, engine: SyncEngine = Depends(get_engine)):
    name = _validated_trait_name(engine.snapshot, payload.name)
    return _vocabulary_read(engine.apply(vocabulary.add_trait, name))


@router.put("/traits/{name}", response_model=schemas.VocabularyRead)
async def rename_trait(
    name: str, payload: schemas.NameRename, engine: SyncEngine = Depends(get_engine)
):
    _require_trait(engine.snapshot, name)
    new_name = _validated_trait_name(engine.snapshot, payload.name, old=name)
    return _vocabulary_read(engine.apply(vocabulary.rename_trait, name, new_name))


@router.delete("/traits/{name}", response_model=schemas.VocabularyRead)
async def delete_trait(name: str, engine: SyncEngine = Depends(get_engine)):
    _require_trait(engine.snapshot, name)
    return _vocabulary_read(engine.apply(vocabulary.delete_trait, name))


@router.post(
    "/traits/{name}/options",
    response_model=schemas.VocabularyRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_trait_option(
    name: str, payload: schemas.NameCreate, engine: SyncEngine = Depends(get_engine)
):
    trait = _require_trait(engine.snapshot, name)
    option = _validated(trait.get("options") or [], payload.name)
    return _vocabulary_read(engine.apply(vocabulary.add_trait_option, name, option))


@router.put("/traits/{name}/options/{option:path}", response_model=schemas.VocabularyRead)
async def rename_trait_option(
    name: str,
    option: str,
    payload: schemas.NameRename,
    engine: SyncEngine = Depends(get_engine),
):
    trait = _require_trait(engine.snapshot, name)
    options = trait.get("options") or []
    _require_item(options, option)
    new_option = _validated(options, payload.name, old=option)
    return _vocabulary_read(
        engine.apply(vocabulary.rename_trait_option, name, option, new_option)
    )


@router.delete("/traits/{name}/options/{option:path}", response_model=schemas.VocabularyRead)
async def delete_trait_option(name: str, option: str, engine: SyncEngine = Depends(get_engine)):
    trait = _require_trait(engine.snapshot, name)
    _require_item(trait.get("options") or [], option)
    return _vocabulary_read(engine.apply(vocabulary.delete_trait_option, name, option))
