import os
import re
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.entry import Entry


def get_unique_entry_name(
    db: Session, user_id: int, parent_id: Optional[UUID], name: str
) -> str:
    """Return ``name`` or the next free ``stem (n).ext`` among live siblings."""
    base_title = name.strip()
    stem, ext = os.path.splitext(base_title)
    if not stem:
        stem, ext = base_title, ""

    parent_filter = (
        Entry.parent_id.is_(None) if parent_id is None else Entry.parent_id == parent_id
    )
    existing_names = (
        db.query(Entry.name)
        .filter(
            Entry.user_id == user_id,
            parent_filter,
            Entry.is_trash == False,
            Entry.name.like(f"{stem}%"),
        )
        .all()
    )

    max_suffix = 0
    is_exact_match = False
    suffix_pattern = re.compile(
        rf"^{re.escape(stem)}\s*\((?P<suffix>\d+)\){re.escape(ext)}$"
    )

    for (existing_name,) in existing_names:
        if existing_name == base_title:
            is_exact_match = True
            continue

        match = suffix_pattern.match(existing_name)
        if match:
            max_suffix = max(max_suffix, int(match.group("suffix")))

    if not is_exact_match:
        return base_title
    return f"{stem} ({max_suffix + 1}){ext}"


def next_free_name(name: str, taken) -> str:
    """First ``stem (n).ext`` not in ``taken``."""
    stem, ext = os.path.splitext(name)
    if not stem:
        stem, ext = name, ""

    suffix = 1
    while f"{stem} ({suffix}){ext}" in taken:
        suffix += 1
    return f"{stem} ({suffix}){ext}"
