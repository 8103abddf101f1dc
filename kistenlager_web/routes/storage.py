"""Raw access to the stored state document.

These endpoints make this server usable as the central store for other
instances running with ``KISTENLAGER_STORE=http``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from kistenlager.document_store import DocumentExistsError, DocumentNotFoundError

from .. import schemas
from ..database import get_session
from ..store import insert_document, read_document, replace_document

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{document_id}", response_model=schemas.StorageDocument)
def get_document(document_id: int, session: Session = Depends(get_session)):
    document = read_document(session, document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.post("", response_model=schemas.StorageDocument, status_code=status.HTTP_201_CREATED)
def create_document(payload: schemas.StorageDocument, session: Session = Depends(get_session)):
    document = payload.model_dump()
    try:
        insert_document(session, document)
        # a concurrent insert can still win between the check and the commit
        session.commit()
    except (DocumentExistsError, IntegrityError) as exc:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"document {document['id']} already exists",
        ) from exc
    return document


@router.put("/{document_id}", response_model=schemas.StorageDocument)
def put_document(
    document_id: int,
    payload: schemas.StorageDocument,
    session: Session = Depends(get_session),
):
    document = {**payload.model_dump(), "id": document_id}
    try:
        replace_document(session, document)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    session.commit()
    return document
