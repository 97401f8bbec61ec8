"""File request/response schemas."""
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from snaptag.schemas.base import CamelModel, CamelORMModel
from snaptag.services.image_analysis import DEFAULT_TAG_STYLE, MAX_TAGS, normalize_tags


class FilePatch(CamelModel):
    """Metadata edit. Only the fields present in the payload are applied.

    ``description`` may be set to null to clear it; ``tags`` set to null
    clears the list.
    """
    model_config = {**CamelModel.model_config, "extra": "forbid"}

    filename: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None
    tags: Optional[list[str]] = None

    @field_validator("filename")
    @classmethod
    def _filename_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Filename cannot be empty")
        trimmed = v.strip()
        if not trimmed:
            raise ValueError("Filename cannot be empty")
        return trimmed

    @field_validator("tags")
    @classmethod
    def _tags_within_cap(cls, v: Optional[list[str]]) -> list[str]:
        if v is None:
            return []
        cleaned = normalize_tags(v, limit=len(v) + 1)
        if len(cleaned) > MAX_TAGS:
            raise ValueError(f"At most {MAX_TAGS} tags are allowed")
        return cleaned

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class FileResponse(CamelORMModel):
    id: uuid.UUID
    filename: str
    file_path: str
    file_size: int
    mime_type: Optional[str] = None
    public_url: Optional[str] = None
    user_id: str
    status: str
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_image: bool
    has_ai_analysis: bool
    file_size_mb: Optional[float] = None


class TagStyleRequest(CamelModel):
    tag_style: str = DEFAULT_TAG_STYLE


class BulkIdsRequest(CamelModel):
    ids: list[str] = Field(default_factory=list)


class BulkRegenerateRequest(BulkIdsRequest):
    tag_style: str = DEFAULT_TAG_STYLE


class BulkUpdateRequest(CamelModel):
    # Items are validated one by one so a bad entry fails alone
    files: list[dict[str, Any]] = Field(default_factory=list)
