import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.sql import func
from app.core.database import Base


class Entry(Base):
    """A file or folder. Folders form a tree through ``parent_id``."""

    __tablename__ = "entries"
    __table_args__ = (
        Index("ix_entries_user_parent", "user_id", "parent_id"),
        # Live siblings have distinct names. Root entries share a NULL parent,
        # which only PostgreSQL 15+ can compare (NULLS NOT DISTINCT).
        Index(
            "uq_entries_live_sibling_name",
            "user_id",
            "parent_id",
            "name",
            unique=True,
            postgresql_where=text("NOT is_trash"),
            postgresql_nulls_not_distinct=True,
            sqlite_where=text("NOT is_trash"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(
        Uuid, ForeignKey("entries.id", ondelete="CASCADE"), nullable=True
    )
    name = Column(String(255), nullable=False)
    size = Column(BigInteger, default=0, nullable=False)
    mime_type = Column(String(255), nullable=True)
    is_folder = Column(Boolean, default=False, nullable=False)

    # Blob storage references, always null for folders
    storage_path = Column(String(1024), nullable=True)
    file_url = Column(String(2048), nullable=True)
    thumbnail_url = Column(String(2048), nullable=True)

    is_starred = Column(Boolean, default=False, nullable=False)
    is_trash = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
