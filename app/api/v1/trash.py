from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.api.v1.entries import to_response
from app.core.database import get_db
from app.models.user import User
from app.schemas.entry import EmptyTrashResponse, EntryListResponse
from app.services import entry_store
from app.utils.blob_storage import BlobStorage, get_blob_storage

router = APIRouter()


@router.get("", response_model=EntryListResponse)
async def list_trash(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    entries = entry_store.list_trash(db, current_user.id)
    return {
        "parent_id": None,
        "path": "/",
        "entries": [to_response(db, entry) for entry in entries],
    }


@router.delete("", response_model=EmptyTrashResponse)
async def empty_trash(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: BlobStorage = Depends(get_blob_storage),
):
    deleted = entry_store.empty_trash(db, current_user.id, storage)
    return {"deleted": deleted}
