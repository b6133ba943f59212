"""Template request/response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = ""
    theme: str = "MODERN"
    category: str = "quotation"
    scope: str = "quotation"
    elements: list[dict[str, Any]] = []  # stored as given; validated per element at render time
    settings: dict[str, Any] = {}
    branding: dict[str, Any] = {}
    is_default: bool = False
    created_by: str | None = None


class TemplateReplace(BaseModel):
    """Full update: every field is supplied and replaces the stored value."""

    name: str = Field(..., min_length=1, max_length=128)
    description: str
    theme: str
    category: str
    scope: str
    elements: list[dict[str, Any]]
    settings: dict[str, Any]
    branding: dict[str, Any]
    is_default: bool
    is_active: bool = True


class TemplatePatch(BaseModel):
    """Partial update guarded by the version the caller last read."""

    expected_version: int = Field(..., ge=1)
    name: str | None = Field(None, min_length=1, max_length=128)
    description: str | None = None
    theme: str | None = None
    category: str | None = None
    scope: str | None = None
    elements: list[dict[str, Any]] | None = None
    settings: dict[str, Any] | None = None
    branding: dict[str, Any] | None = None
    is_default: bool | None = None
    is_active: bool | None = None


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str
    theme: str
    category: str
    scope: str
    elements: list[dict[str, Any]]
    settings: dict[str, Any]
    branding: dict[str, Any]
    is_default: bool
    is_active: bool
    version: int
    created_by: str | None
    created_at: datetime | None
    updated_at: datetime | None


class TemplateSummary(BaseModel):
    id: str
    name: str
    description: str
    theme: str
    category: str
    scope: str
    is_default: bool
    is_active: bool
    version: int
    element_count: int
    updated_at: datetime | None


class VersionConflictResponse(BaseModel):
    detail: str
    expected_version: int
    actual_version: int


class DuplicateRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=128)


class PreviewRequest(BaseModel):
    """Ad-hoc preview: an unsaved template, a stored one, or the default; sample data when ``data`` is omitted."""

    template: dict[str, Any] | None = None
    template_id: str | None = None
    data: dict[str, Any] | None = None


class SyncResponse(BaseModel):
    created: list[str]
    updated: list[str]
    message: str
