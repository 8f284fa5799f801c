"""Record store for the file/folder tree.

Every function is scoped by ``user_id``. Entries owned by another user are
reported exactly like missing ones. Flag changes are applied with single
conditional UPDATE statements so concurrent requests cannot lose updates.
"""

import logging
import uuid
from datetime import datetime, timezone
from collections import defaultdict
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from app.models.entry import Entry
from app.utils.blob_storage import BlobStorage
from app.utils.get_unique_name import get_unique_entry_name, next_free_name

logger = logging.getLogger(__name__)

# Marker for "parent_id not supplied", since None means the root
UNSET = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _owned(db: Session, user_id: int):
    return db.query(Entry).filter(Entry.user_id == user_id)


def _parent_filter(parent_id: Optional[UUID]):
    if parent_id is None:
        return Entry.parent_id.is_(None)
    return Entry.parent_id == parent_id


def validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if "/" in name or name in (".", ".."):
        raise ValidationError(f"Invalid name '{name}'")
    if len(name) > 255:
        raise ValidationError("Name must be at most 255 characters")
    return name


def get_entry(
    db: Session, entry_id: UUID, user_id: int, include_trashed: bool = True
) -> Entry:
    query = _owned(db, user_id).filter(Entry.id == entry_id)
    if not include_trashed:
        query = query.filter(Entry.is_trash == False)
    entry = query.first()
    if not entry:
        raise NotFoundError("Entry not found")
    return entry


def get_parent_folder(
    db: Session, parent_id: Optional[UUID], user_id: int
) -> Optional[Entry]:
    """Resolve the folder a new or moved entry goes into."""
    if parent_id is None:
        return None
    parent = _owned(db, user_id).filter(Entry.id == parent_id).first()
    if not parent:
        raise ValidationError("Parent folder not found")
    if not parent.is_folder:
        raise ValidationError("Parent is not a folder")
    if parent.is_trash:
        raise ValidationError("Parent folder is in the trash")
    return parent


def name_taken(
    db: Session,
    user_id: int,
    parent_id: Optional[UUID],
    name: str,
    exclude_id: Optional[UUID] = None,
) -> bool:
    query = _owned(db, user_id).filter(
        _parent_filter(parent_id),
        Entry.name == name,
        Entry.is_trash == False,
    )
    if exclude_id is not None:
        query = query.filter(Entry.id != exclude_id)
    return db.query(query.exists()).scalar()


def entry_path(db: Session, entry: Optional[Entry]) -> str:
    """Build ``/a/b/c`` from the parent chain. ``None`` is the root."""
    if entry is None:
        return "/"

    parts = [entry.name]
    seen = {entry.id}
    parent_id = entry.parent_id
    while parent_id is not None:
        if parent_id in seen:
            logger.warning(f"Cycle detected in parent chain of entry {entry.id}")
            break
        seen.add(parent_id)
        parent = db.get(Entry, parent_id)
        if parent is None:
            break
        parts.append(parent.name)
        parent_id = parent.parent_id
    return "/" + "/".join(reversed(parts))


def collect_descendant_ids(db: Session, user_id: int, root_id: UUID) -> List[UUID]:
    """Breadth-first walk over child lookups. The root id comes first."""
    found = [root_id]
    visited = {root_id}
    frontier = [root_id]
    while frontier:
        rows = (
            db.query(Entry.id)
            .filter(Entry.user_id == user_id, Entry.parent_id.in_(frontier))
            .all()
        )
        frontier = []
        for (child_id,) in rows:
            if child_id in visited:
                continue
            visited.add(child_id)
            found.append(child_id)
            frontier.append(child_id)
    return found


def is_ancestor(db: Session, user_id: int, ancestor_id: UUID, target_id: UUID) -> bool:
    """True when ``ancestor_id`` is ``target_id`` or one of its ancestors."""
    current = target_id
    seen = set()
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        current = (
            db.query(Entry.parent_id)
            .filter(Entry.id == current, Entry.user_id == user_id)
            .scalar()
        )
    return False


def create_entry(
    db: Session,
    user_id: int,
    name: str,
    is_folder: bool,
    parent_id: Optional[UUID] = None,
    size: int = 0,
    mime_type: Optional[str] = None,
    storage_path: Optional[str] = None,
    file_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
    entry_id: Optional[UUID] = None,
) -> Entry:
    name = validate_name(name)
    get_parent_folder(db, parent_id, user_id)

    if is_folder and (file_url or storage_path or thumbnail_url):
        raise ValidationError("Folders cannot reference stored content")

    if name_taken(db, user_id, parent_id, name):
        raise ConflictError(f"An entry named '{name}' already exists in this folder")

    entry = Entry(
        id=entry_id or uuid.uuid4(),
        user_id=user_id,
        parent_id=parent_id,
        name=name,
        size=0 if is_folder else size,
        mime_type=None if is_folder else mime_type,
        is_folder=is_folder,
        storage_path=storage_path,
        file_url=file_url,
        thumbnail_url=thumbnail_url,
        created_at=_now(),
        updated_at=_now(),
    )
    try:
        db.add(entry)
        db.commit()
    except IntegrityError:
        # a concurrent request took the name after the check above
        db.rollback()
        raise ConflictError(f"An entry named '{name}' already exists in this folder")
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(entry)

    logger.info(
        f"User {user_id} created {'folder' if is_folder else 'file'} {entry.id} ({name})"
    )
    return entry


def create_folder(
    db: Session, user_id: int, name: str, parent_id: Optional[UUID] = None
) -> Entry:
    return create_entry(db, user_id, name, is_folder=True, parent_id=parent_id)


def list_children(db: Session, user_id: int, parent_id: Optional[UUID] = None) -> List[Entry]:
    if parent_id is not None:
        parent = get_entry(db, parent_id, user_id, include_trashed=False)
        if not parent.is_folder:
            raise NotFoundError("Folder not found")

    return (
        _owned(db, user_id)
        .filter(_parent_filter(parent_id), Entry.is_trash == False)
        .order_by(Entry.name.asc(), Entry.id.asc())
        .all()
    )


def list_starred(db: Session, user_id: int) -> List[Entry]:
    return (
        _owned(db, user_id)
        .filter(Entry.is_starred == True, Entry.is_trash == False)
        .order_by(Entry.name.asc(), Entry.id.asc())
        .all()
    )


def list_trash(db: Session, user_id: int) -> List[Entry]:
    return (
        _owned(db, user_id)
        .filter(Entry.is_trash == True)
        .order_by(Entry.name.asc(), Entry.id.asc())
        .all()
    )


def update_entry(
    db: Session,
    entry_id: UUID,
    user_id: int,
    name: Optional[str] = None,
    parent_id=UNSET,
) -> Entry:
    """Rename and/or move a live entry."""
    entry = get_entry(db, entry_id, user_id, include_trashed=False)

    target_name = validate_name(name) if name is not None else entry.name
    target_parent_id = entry.parent_id

    if parent_id is not UNSET:
        get_parent_folder(db, parent_id, user_id)
        if parent_id is not None and is_ancestor(db, user_id, entry.id, parent_id):
            raise ValidationError("Cannot move an entry into itself or its descendants")
        target_parent_id = parent_id

    if name_taken(db, user_id, target_parent_id, target_name, exclude_id=entry.id):
        raise ConflictError(
            f"An entry named '{target_name}' already exists in this folder"
        )

    entry.name = target_name
    entry.parent_id = target_parent_id
    entry.updated_at = _now()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            f"An entry named '{target_name}' already exists in this folder"
        )
    db.refresh(entry)
    return entry


def rename_entry(db: Session, entry_id: UUID, user_id: int, name: str) -> Entry:
    return update_entry(db, entry_id, user_id, name=name)


def move_entry(
    db: Session, entry_id: UUID, user_id: int, parent_id: Optional[UUID]
) -> Entry:
    return update_entry(db, entry_id, user_id, parent_id=parent_id)


def read_flag(db: Session, entry_id: UUID, user_id: int, column):
    """Current value of one flag column, or ``None`` if the entry is not visible."""
    row = (
        db.query(column)
        .filter(Entry.id == entry_id, Entry.user_id == user_id)
        .first()
    )
    return None if row is None else row[0]


def toggle_star(
    db: Session, entry_id: UUID, user_id: int, value: Optional[bool] = None
) -> Entry:
    """Flip ``is_starred``, or set it to ``value``.

    The write is ``UPDATE ... WHERE is_starred != target``: when two
    requests race from the same starting state only the first one applies.
    """
    if value is None:
        current = read_flag(db, entry_id, user_id, Entry.is_starred)
        if current is None:
            raise NotFoundError("Entry not found")
        value = not current

    (
        _owned(db, user_id)
        .filter(Entry.id == entry_id, Entry.is_starred != value)
        .update({Entry.is_starred: value, Entry.updated_at: _now()}, synchronize_session=False)
    )
    db.commit()

    entry = get_entry(db, entry_id, user_id)
    db.refresh(entry)
    return entry


def set_trash(
    db: Session, entry_id: UUID, user_id: int, value: Optional[bool] = None
) -> Entry:
    """Move an entry and its descendants to or from the trash.

    ``value=None`` flips the current state. The entry row is updated
    conditionally first; if another request already applied the change
    nothing else is touched.
    """
    current = read_flag(db, entry_id, user_id, Entry.is_trash)
    if current is None:
        raise NotFoundError("Entry not found")
    target = (not current) if value is None else value
    now = _now()

    changes = {Entry.is_trash: target, Entry.updated_at: now}
    if not target:
        changes.update(_restore_location(db, user_id, entry_id))

    changed = (
        _owned(db, user_id)
        .filter(Entry.id == entry_id, Entry.is_trash != target)
        .update(changes, synchronize_session=False)
    )
    if not changed:
        db.rollback()
        return get_entry(db, entry_id, user_id)

    descendant_ids = collect_descendant_ids(db, user_id, entry_id)[1:]
    if descendant_ids:
        if not target:
            _dedupe_restored_names(db, user_id, descendant_ids)
        (
            _owned(db, user_id)
            .filter(Entry.id.in_(descendant_ids))
            .update({Entry.is_trash: target, Entry.updated_at: now}, synchronize_session=False)
        )

    db.commit()
    logger.info(
        f"User {user_id} {'trashed' if target else 'restored'} entry {entry_id} "
        f"with {len(descendant_ids)} descendant(s)"
    )
    entry = get_entry(db, entry_id, user_id)
    db.refresh(entry)
    return entry


def _restore_location(db: Session, user_id: int, entry_id: UUID) -> dict:
    """Parent and name a trashed entry gets when it comes back."""
    parent_id, name = (
        db.query(Entry.parent_id, Entry.name)
        .filter(Entry.id == entry_id, Entry.user_id == user_id)
        .one()
    )

    # A restored entry cannot live under a folder that is still trashed
    if parent_id is not None and read_flag(db, parent_id, user_id, Entry.is_trash) is not False:
        parent_id = None

    if name_taken(db, user_id, parent_id, name, exclude_id=entry_id):
        name = get_unique_entry_name(db, user_id, parent_id, name)
    return {Entry.parent_id: parent_id, Entry.name: name}


def _dedupe_restored_names(db: Session, user_id: int, entry_ids: List[UUID]):
    # Siblings trashed at different times may share a name
    rows = (
        db.query(Entry.id, Entry.parent_id, Entry.name)
        .filter(Entry.user_id == user_id, Entry.id.in_(entry_ids))
        .order_by(Entry.created_at.asc(), Entry.id.asc())
        .all()
    )
    by_parent = defaultdict(list)
    for row in rows:
        by_parent[row.parent_id].append(row)

    for siblings in by_parent.values():
        taken = {row.name for row in siblings}
        kept = set()
        for row in siblings:
            if row.name not in kept:
                kept.add(row.name)
                continue
            new_name = next_free_name(row.name, taken)
            taken.add(new_name)
            kept.add(new_name)
            (
                _owned(db, user_id)
                .filter(Entry.id == row.id)
                .update({Entry.name: new_name}, synchronize_session=False)
            )


def move_to_trash(db: Session, entry_id: UUID, user_id: int) -> Entry:
    return set_trash(db, entry_id, user_id, value=True)


def restore_from_trash(db: Session, entry_id: UUID, user_id: int) -> Entry:
    return set_trash(db, entry_id, user_id, value=False)


def remove_blobs(storage: BlobStorage, paths: Iterable[str]):
    """Delete blobs after their rows are gone. Failures are only logged."""
    paths = [p for p in paths if p]
    if not paths:
        return
    try:
        storage.delete(paths)
    except StorageFailure as e:
        logger.warning(f"Could not remove {len(paths)} blob(s): {e.message}")


def permanently_delete(
    db: Session, entry_id: UUID, user_id: int, storage: BlobStorage
) -> int:
    entry = get_entry(db, entry_id, user_id)
    if not entry.is_trash:
        raise ValidationError("Only entries in the trash can be deleted permanently")

    ids = collect_descendant_ids(db, user_id, entry.id)
    paths = [
        path
        for (path,) in db.query(Entry.storage_path).filter(
            Entry.id.in_(ids), Entry.storage_path.isnot(None)
        )
    ]
    deleted = (
        _owned(db, user_id)
        .filter(Entry.id.in_(ids))
        .delete(synchronize_session="fetch")
    )
    db.commit()
    logger.info(f"User {user_id} permanently deleted {deleted} entry(ies) under {entry_id}")

    remove_blobs(storage, paths)
    return deleted


def empty_trash(db: Session, user_id: int, storage: BlobStorage) -> int:
    trashed = _owned(db, user_id).filter(Entry.is_trash == True)
    paths = [
        entry.storage_path for entry in trashed.all() if entry.storage_path
    ]
    deleted = trashed.delete(synchronize_session="fetch")
    db.commit()
    logger.info(f"User {user_id} emptied trash, {deleted} entry(ies) removed")

    remove_blobs(storage, paths)
    return deleted
