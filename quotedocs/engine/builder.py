"""Fluent template construction plus the built-in fallback templates."""

from __future__ import annotations

import copy
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from quotedocs.engine.elements import CONTENT_MODELS, ElementType, normalize_type
from quotedocs.engine.merge import format_date
from quotedocs.engine.model import RenderContext, Template, TemplateElement
from quotedocs.engine.themes import PALETTES, Theme, get_palette

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    "pageSize": "A4",
    "orientation": "portrait",
    "margins": {"top": 20, "right": 20, "bottom": 20, "left": 20},
    "currency": "INR",
}

DEFAULT_TEMPLATE_ID = "default"
EMERGENCY_TEMPLATE_ID = "emergency"


def default_content(kind: ElementType | None) -> dict[str, Any]:
    if kind is None:
        return {}
    if kind is ElementType.HEADER:
        return {
            "title": "{{company.name}}",
            "subtitle": "QUOTATION",
            "showDate": True,
            "showQuotationNumber": True,
            "alignment": "center",
        }
    if kind is ElementType.QUOTATION_INFO:
        content = CONTENT_MODELS[kind]().model_dump(by_alias=True, exclude_none=True)
        content["fields"].append({"label": "Terms", "value": "{{quotation.paymentTerms}}"})
        return content
    if kind is ElementType.TOTALS:
        content = CONTENT_MODELS[kind]().model_dump(by_alias=True, exclude_none=True)
        content["fields"][2]["label"] = "Tax ({{tax.rate}}%)"
        return content
    if kind is ElementType.TEXT:
        return {"text": "Custom text content"}
    return CONTENT_MODELS[kind]().model_dump(by_alias=True, exclude_none=True)


def default_style(kind: ElementType | None, theme: str | None) -> dict[str, Any]:
    palette = get_palette(theme)
    style: dict[str, Any] = {
        "fontFamily": palette.font_family,
        "fontSize": "14px",
        "color": "#000000",
        "backgroundColor": "transparent",
        "padding": "10px",
        "margin": "5px 0",
        "border": "none",
    }
    if kind is ElementType.HEADER:
        style.pop("border")
        style.update(
            fontSize="24px",
            fontWeight="bold",
            color=palette.primary_color,
            textAlign="center",
            padding="20px",
            borderBottom=f"2px solid {palette.primary_color}",
        )
    elif kind in (ElementType.ITEMS_TABLE, ElementType.TABLE):
        style.update(border="1px solid #e5e7eb", borderRadius="4px")
    elif kind is ElementType.TOTALS:
        style.update(
            fontWeight="500",
            backgroundColor="#f9fafb",
            border="1px solid #e5e7eb",
            borderRadius="4px",
        )
    return style


class TemplateBuilder:
    """Assembles a :class:`Template` in memory. One builder per request; never shared."""

    def __init__(self, template: Template | None = None):
        self.template = template.model_copy(deep=True) if template else Template(settings=copy.deepcopy(DEFAULT_SETTINGS))

    @classmethod
    def create_template(cls, **meta: Any) -> TemplateBuilder:
        meta.setdefault("settings", copy.deepcopy(DEFAULT_SETTINGS))
        elements = meta.pop("elements", None) or []
        builder = cls(Template(**meta))
        builder.template.elements = [TemplateElement.model_validate(el) for el in elements]
        return builder

    def _find(self, element_id: str) -> int:
        for index, element in enumerate(self.template.elements):
            if element.id == element_id:
                return index
        raise KeyError(f"Element {element_id!r} not found")

    def add_element(
        self,
        element_type: str,
        content: Any = None,
        *,
        style: dict[str, Any] | None = None,
        visible: bool = True,
        config: dict[str, Any] | None = None,
        element_id: str | None = None,
        **extra: Any,
    ) -> TemplateBuilder:
        kind = normalize_type(element_type)
        merged: Any = default_content(kind)
        if isinstance(content, dict):
            merged = {**merged, **content}
        elif content is not None:
            merged = content

        data: dict[str, Any] = {
            "type": element_type,
            "content": merged,
            "style": {**default_style(kind, self.template.theme), **(style or {})},
            "visible": visible,
            "config": config,
            **extra,
        }
        if element_id:
            data["id"] = element_id
        self.template.elements.append(TemplateElement.model_validate(data))
        return self

    def update_element(self, element_id: str, **changes: Any) -> TemplateBuilder:
        index = self._find(element_id)
        current = self.template.elements[index].model_dump()
        current.update(changes)
        current["id"] = element_id
        self.template.elements[index] = TemplateElement.model_validate(current)
        return self

    def remove_element(self, element_id: str) -> TemplateBuilder:
        self.template.elements = [el for el in self.template.elements if el.id != element_id]
        return self

    def reorder_elements(self, element_ids: list[str]) -> TemplateBuilder:
        """Put the listed elements first, in that order; unlisted ones keep their relative order after them."""
        by_id = {el.id: el for el in self.template.elements}
        ordered = [by_id[i] for i in dict.fromkeys(element_ids) if i in by_id]
        seen = {el.id for el in ordered}
        ordered += [el for el in self.template.elements if el.id not in seen]
        self.template.elements = ordered
        return self

    def apply_theme(self, theme: str) -> TemplateBuilder:
        try:
            palette = PALETTES[Theme(str(theme).upper())]
        except ValueError:
            raise ValueError(f"Invalid theme: {theme!r}") from None

        self.template.theme = str(theme).upper()
        for element in self.template.elements:
            element.style = {**element.style, "fontFamily": palette.font_family}
            if element.kind is ElementType.HEADER:
                element.style["color"] = palette.primary_color
        return self

    def build(self) -> Template:
        return self.template.model_copy(deep=True)

    def export_template(self) -> dict[str, Any]:
        data = self.template.model_dump(mode="json")
        data["exported_at"] = datetime.now(timezone.utc).isoformat()
        return data

    @classmethod
    def import_template(cls, data: dict[str, Any]) -> TemplateBuilder:
        """Start a builder from exported data. Identity and bookkeeping are reset."""
        payload = {
            k: v
            for k, v in data.items()
            if k not in ("id", "version", "is_default", "created_at", "updated_at", "exported_at")
        }
        return cls(Template.model_validate(payload))


# ── Built-in templates ──────────────────────────────────────────────


def default_quotation_template() -> Template:
    """The synthesized layout used when the store has no usable template."""
    builder = TemplateBuilder.create_template(
        id=DEFAULT_TEMPLATE_ID,
        name="Default Quotation Template",
        description="Built-in layout used when no template is configured",
        theme=Theme.MODERN.value,
    )
    for kind in (
        ElementType.HEADER,
        ElementType.COMPANY_INFO,
        ElementType.CLIENT_INFO,
        ElementType.QUOTATION_INFO,
        ElementType.ITEMS_TABLE,
        ElementType.TOTALS,
        ElementType.TERMS,
        ElementType.SIGNATURE,
    ):
        builder.add_element(kind.value, element_id=f"default-{kind.value}")
    return builder.build()


def emergency_template() -> Template:
    return Template(
        id=EMERGENCY_TEMPLATE_ID,
        name="Emergency Template",
        description="Minimal layout",
        elements=[
            TemplateElement(id="emergency-header", type="header", content={"title": "{{company.name}}", "subtitle": "QUOTATION"}),
            TemplateElement(id="emergency-client", type="client_info", content={}),
            TemplateElement(id="emergency-items", type="items_table", content={}),
            TemplateElement(id="emergency-totals", type="totals", content={}),
        ],
        settings=copy.deepcopy(DEFAULT_SETTINGS),
    )


def fallback_template() -> Template:
    """Synthesized default, or the emergency layout if even that cannot be built."""
    try:
        return default_quotation_template()
    except Exception:
        logger.exception("Building the default template failed, using emergency template")
        return emergency_template()


def sample_context(today: date | None = None) -> RenderContext:
    """Representative data for previews of templates that have no quotation attached."""
    today = today or date.today()
    return RenderContext(
        company={
            "name": "ASP Cranes Pvt. Ltd.",
            "address": "Industrial Area, Pune, Maharashtra 411019",
            "phone": "+91 99999 88888",
            "email": "sales@aspcranes.com",
            "website": "www.aspcranes.com",
        },
        client={
            "name": "John Doe",
            "company": "Construction Corp.",
            "address": "Mumbai, Maharashtra",
            "phone": "+91 98765 43210",
            "email": "john@constructioncorp.com",
        },
        quotation={
            "id": "sample",
            "number": "QUO-2025-001",
            "date": format_date(today),
            "validUntil": format_date(today + timedelta(days=30)),
            "machineType": "Tower Crane",
            "duration": "30 days",
            "paymentTerms": "50% advance, balance on completion",
            "terms": "This quotation is valid for 30 days. All rates are inclusive of GST.",
        },
        items=[
            {
                "no": 1,
                "description": "Tower Crane Rental - Potain MC 175",
                "capacity": "175MT",
                "jobType": "monthly",
                "quantity": 1,
                "duration": "30 days",
                "rate": 25000,
                "rental": 750000,
                "mobilization": 50000,
                "demobilization": 50000,
                "amount": 850000,
            },
            {
                "no": 2,
                "description": "Mobile Crane - Liebherr LTM 1090",
                "capacity": "90MT",
                "jobType": "daily",
                "quantity": 1,
                "duration": "5 days",
                "rate": 15000,
                "rental": 75000,
                "mobilization": 10000,
                "demobilization": 10000,
                "amount": 95000,
            },
        ],
        totals={
            "subtotal": 825000,
            "discount": 25000,
            "tax": 144000,
            "total": 944000,
        },
        tax={"rate": 18},
    )
