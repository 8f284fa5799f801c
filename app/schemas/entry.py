from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum


class EntryView(str, Enum):
    FILES = "files"
    STARRED = "starred"
    TRASH = "trash"


class EntryResponse(BaseModel):
    id: UUID = Field(..., description="Unique identifier of the entry")
    user_id: int = Field(..., description="ID of the owning user")
    parent_id: Optional[UUID] = Field(None, description="Parent folder id, null for root")
    name: str = Field(..., description="Display name")
    path: str = Field("", description="Full path computed from the parent chain")
    size: int = Field(0, description="Size in bytes, 0 for folders")
    mime_type: Optional[str] = Field(None, description="Content type of the file")
    is_folder: bool = Field(..., description="Whether the entry is a folder")
    file_url: Optional[str] = Field(None, description="Public URL of the stored blob")
    thumbnail_url: Optional[str] = Field(None, description="Thumbnail URL for images")
    is_starred: bool = Field(..., description="Whether the entry is starred")
    is_trash: bool = Field(..., description="Whether the entry is in the trash")
    created_at: Optional[datetime] = Field(None, description="Creation time")
    updated_at: Optional[datetime] = Field(None, description="Last update time")
    model_config = {"from_attributes": True}


class EntryListResponse(BaseModel):
    parent_id: Optional[UUID] = Field(None, description="Folder being listed, null for root")
    path: str = Field(..., description="Path of the folder being listed")
    entries: List[EntryResponse]


class UpdateEntryRequest(BaseModel):
    name: Optional[str] = Field(None, description="New name of the entry")
    parent_id: Optional[UUID] = Field(
        None, description="New parent folder id, explicit null moves to root"
    )


class ToggleStarRequest(BaseModel):
    is_starred: Optional[bool] = Field(
        None, description="Target state, omitted to flip the current one"
    )


class ToggleTrashRequest(BaseModel):
    is_trash: Optional[bool] = Field(
        None, description="Target state, omitted to flip the current one"
    )


class DeleteEntryResponse(BaseModel):
    id: UUID
    deleted: int = Field(..., description="Number of entries removed, descendants included")


class EmptyTrashResponse(BaseModel):
    deleted: int = Field(..., description="Number of entries removed")
