"""Engine value types: templates, elements, render contexts and rendered documents."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quotedocs.engine.elements import ElementType, normalize_type


def new_element_id() -> str:
    return f"element_{uuid.uuid4().hex[:12]}"


def _maybe_json(value: Any) -> Any:
    """Decode values that older builders stored as serialized JSON strings."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "[") and not stripped.startswith("{{"):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


class TemplateElement(BaseModel):
    # Unknown keys (position, conditional, ...) are preserved for round-trips
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_element_id)
    type: str
    content: Any = None
    style: dict[str, Any] = Field(default_factory=dict)
    visible: bool = True
    config: dict[str, Any] | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, v: Any) -> Any:
        return _maybe_json(v)

    @field_validator("style", mode="before")
    @classmethod
    def _decode_style(cls, v: Any) -> Any:
        v = _maybe_json(v)
        return v if isinstance(v, dict) else {}

    @field_validator("config", mode="before")
    @classmethod
    def _decode_config(cls, v: Any) -> Any:
        v = _maybe_json(v)
        return v if isinstance(v, dict) else None

    @field_validator("visible", mode="before")
    @classmethod
    def _visible_default(cls, v: Any) -> Any:
        return True if v is None else v

    @property
    def kind(self) -> ElementType | None:
        return normalize_type(self.type)


class Template(BaseModel):
    """A document layout: an ordered list of elements plus theme and page settings."""

    id: str | None = None
    name: str = ""
    description: str = ""
    theme: str = "MODERN"
    category: str = "quotation"
    scope: str = "quotation"
    elements: list[TemplateElement] = []
    settings: dict[str, Any] = {}
    branding: dict[str, Any] = {}
    is_default: bool = False
    is_active: bool = True
    version: int = 1
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("elements", mode="before")
    @classmethod
    def _decode_elements(cls, v: Any) -> Any:
        v = _maybe_json(v)
        if v is None:
            return []
        return v

    @field_validator("settings", "branding", mode="before")
    @classmethod
    def _decode_mapping(cls, v: Any) -> Any:
        v = _maybe_json(v)
        return v if isinstance(v, dict) else {}


class RenderContext(BaseModel):
    """Business data merged into a template. Extra buckets are kept and addressable."""

    model_config = ConfigDict(extra="allow")

    company: dict[str, Any] = {}
    client: dict[str, Any] = {}
    customer: dict[str, Any] = {}
    quotation: dict[str, Any] = {}
    items: list[dict[str, Any]] = []
    totals: dict[str, Any] = {}
    tax: dict[str, Any] = {}

    def as_mapping(self) -> dict[str, Any]:
        """Return a detached plain-dict copy, with ``client``/``customer`` filled from each other."""
        data = self.model_dump()
        if not data["client"] and data["customer"]:
            data["client"] = dict(data["customer"])
        elif not data["customer"] and data["client"]:
            data["customer"] = dict(data["client"])
        return data


class RenderedDocument(BaseModel):
    html: str
    template_id: str | None
    template_name: str
    generated_at: datetime
