import logging
import mimetypes
import os
import uuid
from typing import Optional
from uuid import UUID

from fastapi import Request, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.exceptions import ClientDisconnected, ValidationError
from app.models.entry import Entry
from app.services import entry_store
from app.utils.blob_storage import BlobStorage, build_object_key
from app.utils.get_unique_name import get_unique_entry_name

logger = logging.getLogger(__name__)


def resolve_content_type(upload: UploadFile) -> str:
    content_type = upload.content_type
    if not content_type or content_type == "application/octet-stream":
        content_type = mimetypes.guess_type(upload.filename)[0] or content_type
    return content_type or "application/octet-stream"


async def store_upload(
    db: Session,
    storage: BlobStorage,
    user_id: int,
    upload: Optional[UploadFile],
    parent_id: Optional[UUID] = None,
    request: Optional[Request] = None,
) -> Entry:
    """Write the blob, then record it.

    No row is created when the blob write fails, and the blob is removed
    again when the row cannot be written. A client that disconnected while
    the body was read gets neither; a started blob write is not interrupted.
    """
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    entry_store.get_parent_folder(db, parent_id, user_id)

    content_type = resolve_content_type(upload)
    if content_type not in settings.allowed_content_types:
        raise ValidationError(f"File type '{content_type}' is not allowed")

    data = await upload.read()
    if len(data) > settings.max_upload_size:
        raise ValidationError(
            f"File exceeds the maximum size of {settings.max_upload_size} bytes"
        )

    filename = entry_store.validate_name(os.path.basename(upload.filename))
    name = get_unique_entry_name(db, user_id, parent_id, filename)

    if request is not None and await request.is_disconnected():
        logger.info(f"Client went away before upload of {name} was stored")
        raise ClientDisconnected("Client disconnected before the upload was stored")

    entry_id = uuid.uuid4()
    object_key = build_object_key(user_id, entry_id, name)
    stored_path = await run_in_threadpool(storage.put, object_key, data, content_type)

    file_url = storage.public_url(stored_path)
    thumbnail_url = None
    if content_type.startswith("image/"):
        thumbnail_url = storage.thumbnail_url(stored_path, settings.thumbnail_size)

    try:
        return entry_store.create_entry(
            db,
            user_id,
            name,
            is_folder=False,
            parent_id=parent_id,
            size=len(data),
            mime_type=content_type,
            storage_path=stored_path,
            file_url=file_url,
            thumbnail_url=thumbnail_url,
            entry_id=entry_id,
        )
    except Exception:
        logger.warning(f"Recording upload {stored_path} failed, removing blob")
        entry_store.remove_blobs(storage, [stored_path])
        raise
