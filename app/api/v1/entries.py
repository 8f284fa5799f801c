from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.core.exceptions import ValidationError
from app.models.entry import Entry
from app.models.user import User
from app.schemas.entry import (
    DeleteEntryResponse,
    EntryListResponse,
    EntryResponse,
    EntryView,
    ToggleStarRequest,
    ToggleTrashRequest,
    UpdateEntryRequest,
)
from app.services import entry_store
from app.services.upload import store_upload
from app.utils.blob_storage import BlobStorage, get_blob_storage

router = APIRouter()


def to_response(db: Session, entry: Entry, path: Optional[str] = None) -> EntryResponse:
    response = EntryResponse.model_validate(entry)
    response.path = path if path is not None else entry_store.entry_path(db, entry)
    return response


@router.get("", response_model=EntryListResponse)
async def list_entries(
    parent_id: Optional[UUID] = Query(None),
    view: EntryView = Query(EntryView.FILES),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if view == EntryView.STARRED:
        entries = entry_store.list_starred(db, current_user.id)
        return {
            "parent_id": None,
            "path": "/",
            "entries": [to_response(db, entry) for entry in entries],
        }
    if view == EntryView.TRASH:
        entries = entry_store.list_trash(db, current_user.id)
        return {
            "parent_id": None,
            "path": "/",
            "entries": [to_response(db, entry) for entry in entries],
        }

    entries = entry_store.list_children(db, current_user.id, parent_id)
    parent = db.get(Entry, parent_id) if parent_id else None
    folder_path = entry_store.entry_path(db, parent)
    prefix = "" if folder_path == "/" else folder_path
    return {
        "parent_id": parent_id,
        "path": folder_path,
        "entries": [to_response(db, entry, f"{prefix}/{entry.name}") for entry in entries],
    }


# Upload a file, or create a folder when is_folder is set
@router.post("", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
async def create_entry(
    request: Request,
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    is_folder: bool = Form(False),
    parent_id: Optional[UUID] = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: BlobStorage = Depends(get_blob_storage),
):
    if is_folder:
        if file is not None:
            raise ValidationError("Folders cannot carry file content")
        entry = entry_store.create_folder(db, current_user.id, name, parent_id)
    else:
        entry = await store_upload(
            db, storage, current_user.id, file, parent_id, request=request
        )
    return to_response(db, entry)


@router.get("/{entry_id}", response_model=EntryResponse)
async def get_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    entry = entry_store.get_entry(db, entry_id, current_user.id)
    return to_response(db, entry)


# Rename and/or move. An explicit "parent_id": null moves to the root.
@router.patch("/{entry_id}", response_model=EntryResponse)
async def update_entry(
    entry_id: UUID,
    body: UpdateEntryRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    parent_id = body.parent_id if "parent_id" in body.model_fields_set else entry_store.UNSET
    if body.name is None and parent_id is entry_store.UNSET:
        raise ValidationError("Nothing to update")

    entry = entry_store.update_entry(
        db, entry_id, current_user.id, name=body.name, parent_id=parent_id
    )
    return to_response(db, entry)


@router.patch("/{entry_id}/star", response_model=EntryResponse)
async def toggle_star(
    entry_id: UUID,
    body: Optional[ToggleStarRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    value = body.is_starred if body else None
    entry = entry_store.toggle_star(db, entry_id, current_user.id, value)
    return to_response(db, entry)


@router.patch("/{entry_id}/trash", response_model=EntryResponse)
async def toggle_trash(
    entry_id: UUID,
    body: Optional[ToggleTrashRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    value = body.is_trash if body else None
    entry = entry_store.set_trash(db, entry_id, current_user.id, value)
    return to_response(db, entry)


@router.delete("/{entry_id}", response_model=DeleteEntryResponse)
async def delete_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: BlobStorage = Depends(get_blob_storage),
):
    deleted = entry_store.permanently_delete(db, entry_id, current_user.id, storage)
    return {"id": entry_id, "deleted": deleted}
