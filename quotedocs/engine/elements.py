"""Element vocabulary: the typed blocks a template is composed of.

Each known element kind has a content schema. Templates are stored with
loosely-typed content (whatever the builder UI wrote), and the schema for an
element is only applied at render time through :func:`parse_content`, so a
single malformed element can be isolated instead of rejecting the template.

Builder UIs write camelCase keys (``showHeader``); both that and snake_case
are accepted.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from quotedocs.engine.errors import MalformedElement


class ElementType(StrEnum):
    HEADER = "header"
    COMPANY_INFO = "company_info"
    CLIENT_INFO = "client_info"
    QUOTATION_INFO = "quotation_info"
    ITEMS_TABLE = "items_table"
    TOTALS = "totals"
    TERMS = "terms"
    SIGNATURE = "signature"
    TEXT = "text"
    TABLE = "table"


# Tags written by older template builders
LEGACY_ALIASES: dict[str, ElementType] = {
    "custom_text": ElementType.TEXT,
    "section": ElementType.TEXT,
    "content": ElementType.TEXT,
    "customer": ElementType.CLIENT_INFO,
    "field": ElementType.QUOTATION_INFO,
    "total": ElementType.TOTALS,
}


def normalize_type(tag: str | None) -> ElementType | None:
    """Map a raw element tag to a known kind, or None if unrecognised."""
    if not tag:
        return None
    tag = str(tag).strip().lower()
    try:
        return ElementType(tag)
    except ValueError:
        return LEGACY_ALIASES.get(tag)


class ContentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    # Field populated when the stored content is a bare string
    string_field: ClassVar[str | None] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_bare_content(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, str):
            if cls.string_field is None:
                raise ValueError("string content is not supported for this element")
            return {cls.string_field: data}
        return data


# ── Shared pieces ───────────────────────────────────────────────────


class InfoField(ContentModel):
    label: str | None = None
    value: str = ""


class ColumnSpec(ContentModel):
    key: str = ""
    label: str = ""
    width: str | None = None
    alignment: str = "left"
    format: str | None = None  # currency | number | date | text
    value: str | None = None  # cell template, e.g. "{{item_rate}}"

    @model_validator(mode="before")
    @classmethod
    def _coerce_bare_content(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"key": data, "label": data}
        return data


class TotalsField(ContentModel):
    label: str
    value: str = ""
    show_if: str = "always"
    emphasized: bool = False


# ── Per-kind content ────────────────────────────────────────────────


class HeaderContent(ContentModel):
    string_field: ClassVar[str | None] = "title"

    title: str = "{{company.name}}"
    subtitle: str | None = "QUOTATION"
    show_date: bool = False
    show_quotation_number: bool = False
    alignment: str = "center"


class InfoContent(ContentModel):
    string_field: ClassVar[str | None] = "title"

    title: str | None = None
    fields: list[InfoField | str] = []
    layout: str = "vertical"
    alignment: str = "left"


class CompanyInfoContent(InfoContent):
    fields: list[InfoField | str] = [
        "{{company.name}}",
        "{{company.address}}",
        "{{company.phone}}",
        "{{company.email}}",
        "{{company.website}}",
    ]


class ClientInfoContent(InfoContent):
    title: str | None = "Bill To:"
    fields: list[InfoField | str] = [
        "{{client.name}}",
        "{{client.company}}",
        "{{client.address}}",
        "{{client.phone}}",
        "{{client.email}}",
    ]


class QuotationInfoContent(InfoContent):
    layout: str = "table"
    alignment: str = "right"
    fields: list[InfoField | str] = [
        InfoField(label="Quotation #", value="{{quotation.number}}"),
        InfoField(label="Date", value="{{quotation.date}}"),
        InfoField(label="Valid Until", value="{{quotation.validUntil}}"),
    ]


class TableContent(ContentModel):
    """Shared by ``table`` and ``items_table``; ``config`` keys override content keys."""

    string_field: ClassVar[str | None] = "title"

    title: str | None = None
    rows: list[list[Any]] = []
    columns: list[ColumnSpec] | dict[str, bool] = []
    show_header: bool = True
    column_widths: list[str | None] = []
    alternate_rows: bool = True

    @field_validator("rows")
    @classmethod
    def _rows_are_lists(cls, rows: list[list[Any]]) -> list[list[Any]]:
        return [list(row) for row in rows]


class TotalsContent(ContentModel):
    string_field: ClassVar[str | None] = "title"

    title: str | None = None
    fields: list[TotalsField] = [
        TotalsField(label="Subtotal", value="{{totals.subtotal}}"),
        TotalsField(label="Discount", value="{{totals.discount}}", show_if="hasDiscount"),
        TotalsField(label="Tax", value="{{totals.tax}}", show_if="hasTax"),
        TotalsField(label="Total", value="{{totals.total}}", emphasized=True),
    ]
    alignment: str = "right"


class TermsContent(ContentModel):
    string_field: ClassVar[str | None] = "text"

    title: str = "Terms & Conditions"
    text: str = "{{quotation.terms}}"
    default_text: str = "Please review the terms and conditions before accepting this quotation."
    show_title: bool = True


class SignatureContent(ContentModel):
    string_field: ClassVar[str | None] = "title"

    title: str = "Authorized Signature"
    name: str = "For {{company.name}}"
    show_name: bool = True
    show_date: bool = True
    signature_line: bool = True
    alignment: str = "right"


class TextContent(ContentModel):
    string_field: ClassVar[str | None] = "text"

    title: str | None = None
    text: str = ""


CONTENT_MODELS: dict[ElementType, type[ContentModel]] = {
    ElementType.HEADER: HeaderContent,
    ElementType.COMPANY_INFO: CompanyInfoContent,
    ElementType.CLIENT_INFO: ClientInfoContent,
    ElementType.QUOTATION_INFO: QuotationInfoContent,
    ElementType.ITEMS_TABLE: TableContent,
    ElementType.TABLE: TableContent,
    ElementType.TOTALS: TotalsContent,
    ElementType.TERMS: TermsContent,
    ElementType.SIGNATURE: SignatureContent,
    ElementType.TEXT: TextContent,
}


def parse_content(
    kind: ElementType, content: Any, config: dict[str, Any] | None = None
) -> ContentModel:
    """Validate raw element content against the schema for ``kind``.

    For table kinds the element ``config`` is layered over the content.
    Raises :class:`MalformedElement` when the shape does not fit.
    """
    model = CONTENT_MODELS[kind]
    data: Any = content
    if config:
        if data is None:
            data = {}
        elif isinstance(data, str):
            data = {model.string_field: data}
        if not isinstance(data, dict):
            raise MalformedElement(kind.value, "content must be an object")
        data = {**data, **config}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'content'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedElement(kind.value, errors) from exc
