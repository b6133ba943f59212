"""Renderer: template + render context -> one self-contained HTML document.

Each element is turned into a small view dict (merged strings only) and the
whole document is produced by a single autoescaping Jinja2 template, so
nothing a template author types can reach the page as markup.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import jinja2

from quotedocs.engine.elements import (
    ElementType,
    InfoContent,
    InfoField,
    TableContent,
    parse_content,
)
from quotedocs.engine.errors import MalformedElement
from quotedocs.engine.merge import Lookup, generic_rows, item_rows, should_show
from quotedocs.engine.model import RenderContext, RenderedDocument, Template, TemplateElement
from quotedocs.engine.themes import Palette, get_palette

logger = logging.getLogger(__name__)

DEFAULT_MARGINS = {"top": 20, "right": 20, "bottom": 20, "left": 20}

# ── Markup ──────────────────────────────────────────────────────────

DOCUMENT_TEMPLATE = """\
{%- macro attrs(el) -%}
class="element element-{{ el.kind }}{% for c in el.classes %} {{ c }}{% endfor %}"{% if el.style %} style="{{ el.style }}"{% endif %}
{%- endmacro -%}

{%- macro header(el) -%}
<header {{ attrs(el) }}>
{% if el.logo_url %}<img class="logo" src="{{ el.logo_url }}" alt="">
{% endif %}
<h1>{{ el.title }}</h1>
{% if el.subtitle %}<h2>{{ el.subtitle }}</h2>
{% endif %}
{% for label, value in el.meta %}<p class="header-meta"><span class="label">{{ label }}:</span> {{ value }}</p>
{% endfor %}
</header>
{%- endmacro -%}

{%- macro info(el) -%}
<section {{ attrs(el) }}>
{% if el.title %}<h3>{{ el.title }}</h3>
{% endif %}
<dl>
{% for label, value in el.fields %}
{% if label %}<dt>{{ label }}</dt>{% endif %}<dd>{{ value }}</dd>
{% endfor %}
</dl>
</section>
{%- endmacro -%}

{%- macro table(el) -%}
<div {{ attrs(el) }}>
{% if el.title %}<h3>{{ el.title }}</h3>
{% endif %}
<table class="{{ el.table_class }}">
{% if el.show_header %}
<thead>
<tr>{% for col in el.columns %}<th style="{{ col.style }}">{{ col.label }}</th>{% endfor %}</tr>
</thead>
{% endif %}
<tbody>
{% for row in el.rows %}
<tr class="data-row{% if el.alternate_rows and loop.index is even %} alternate-row{% endif %}">{% for cell, align in row %}<td style="text-align: {{ align }}">{{ cell }}</td>{% endfor %}</tr>
{% else %}
{% if el.empty_message %}<tr class="empty-row"><td colspan="{{ el.columns|length or 1 }}">{{ el.empty_message }}</td></tr>{% endif %}
{% endfor %}
</tbody>
</table>
</div>
{%- endmacro -%}

{%- macro totals(el) -%}
<div {{ attrs(el) }}>
{% if el.title %}<h3>{{ el.title }}</h3>
{% endif %}
<table class="totals-table">
{% for row in el.rows %}
<tr{% if row.emphasized %} class="emphasized"{% endif %}><td class="label">{{ row.label }}:</td><td class="value">{{ row.value }}</td></tr>
{% endfor %}
</table>
</div>
{%- endmacro -%}

{%- macro block(el) -%}
<div {{ attrs(el) }}>
{% if el.title %}<h3>{{ el.title }}</h3>
{% endif %}
<div class="{{ el.body_class }}">{{ el.text }}</div>
</div>
{%- endmacro -%}

{%- macro signature(el) -%}
<div {{ attrs(el) }}>
<div class="signature-area">
<h4>{{ el.title }}</h4>
{% if el.signature_line %}<div class="signature-line"></div>
{% endif %}
{% if el.name %}<div class="signature-name">{{ el.name }}</div>
{% endif %}
{% if el.show_date %}<div class="signature-date">Date: _______________</div>
{% endif %}
</div>
</div>
{%- endmacro -%}

<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Quotation {{ number }}</title>
<style>
{{ css|safe }}
</style>
</head>
<body class="{{ 'preview' if preview else 'document' }}">
<div class="quotation-container">
{% for el in elements %}
{% if el.macro == "header" %}{{ header(el) }}
{% elif el.macro == "info" %}{{ info(el) }}
{% elif el.macro == "table" %}{{ table(el) }}
{% elif el.macro == "totals" %}{{ totals(el) }}
{% elif el.macro == "signature" %}{{ signature(el) }}
{% else %}{{ block(el) }}
{% endif %}
{% endfor %}
</div>
</body>
</html>
"""

THEME_CSS = """\
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: {{ p.font_family }}; color: #000; line-height: 1.6; background: {{ '#f5f5f5' if preview else 'white' }}; }
.quotation-container { max-width: 800px; margin: {{ '20px auto' if preview else '0 auto' }}; background: white; padding: {{ margins }};{% if preview %} box-shadow: 0 2px 10px rgba(0,0,0,0.1);{% endif %} }
.element { margin: 5px 0; }
.element-header { text-align: center; margin-bottom: 30px; padding-bottom: 20px; border-bottom: 2px solid {{ p.primary_color }}; }
.element-header h1 { font-size: 2.5em; color: {{ p.primary_color }}; margin-bottom: 5px; font-weight: bold; }
.element-header h2 { font-size: 1.2em; color: {{ p.secondary_color }}; font-weight: normal; }
.element-header .logo { max-height: 80px; margin-bottom: 10px; }
.element-header .header-meta { font-size: 0.9em; color: {{ p.secondary_color }}; }
dl { margin: 0; }
dt { font-weight: 500; color: {{ p.secondary_color }}; }
dd { margin: 0 0 4px 0; }
.layout-table dl { display: grid; grid-template-columns: max-content auto; column-gap: 12px; }
.align-right { text-align: right; }
.align-right.layout-table dl { justify-content: end; }
.align-center { text-align: center; }
.items-table { width: 100%; border-collapse: collapse; margin: 20px 0; }
.items-table th, .items-table td { padding: 12px 8px; border: 1px solid #ddd; }
.items-table th { background-color: {{ p.primary_color }}; color: white; font-weight: bold; }
.items-table .alternate-row { background-color: #f9f9f9; }
.items-table .empty-row td { text-align: center; padding: 20px; color: #666; }
.totals-table { width: 300px; margin-left: auto; border-collapse: collapse; }
.totals-table td { padding: 8px 12px; border-bottom: 1px solid #eee; }
.totals-table .label { text-align: left; font-weight: 500; }
.totals-table .value { text-align: right; font-weight: bold; }
.totals-table .emphasized { background-color: {{ p.primary_color }}; color: white; font-weight: bold; }
.signature-area { margin-top: 40px; }
.signature-line { border-bottom: 2px solid #333; width: 250px; height: 50px; margin: 20px 0 10px auto; }
.terms-content { font-size: 0.9em; color: {{ p.secondary_color }}; line-height: 1.5; white-space: pre-line; }
.text-content { line-height: 1.5; white-space: pre-line; }
.element-generic { padding: 10px; background: #f9f9f9; border: 1px dashed #ccc; }
@media print {
  body { background: white; }
  .quotation-container { box-shadow: none; margin: 0; max-width: none; }
  .element-header, .element-totals, .element-signature { page-break-inside: avoid; }
  .items-table tr { page-break-inside: avoid; }
  .items-table thead { display: table-header-group; }
}
"""

_env = jinja2.Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)
_document = _env.from_string(DOCUMENT_TEMPLATE)
# CSS is not HTML; it gets its own non-escaping environment and is sanitised instead
_css = jinja2.Environment(autoescape=False).from_string(THEME_CSS)


# ── Helpers ─────────────────────────────────────────────────────────

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


def camel_to_kebab(name: str) -> str:
    return _CAMEL_RE.sub(r"-\1", name).lower()


def style_to_css(style: Mapping[str, Any] | None) -> str:
    """``{"fontSize": "14px"}`` -> ``"font-size: 14px"``; empty values are dropped."""
    if not style:
        return ""
    return "; ".join(
        f"{camel_to_kebab(str(key))}: {value}"
        for key, value in style.items()
        if value is not None and value != "" and not isinstance(value, (dict, list))
    )


def _px(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:g}px"
    return str(value)


def margins_css(settings: Mapping[str, Any]) -> str:
    margins = settings.get("margins")
    if not isinstance(margins, Mapping):
        margins = {}
    merged = {**DEFAULT_MARGINS, **{k: v for k, v in margins.items() if k in DEFAULT_MARGINS}}
    return " ".join(_px(merged[side]) for side in ("top", "right", "bottom", "left"))


def _sanitize_css(css: str) -> str:
    return css.replace("</", "<\\/")


def theme_css(template: Template, *, preview: bool = False, palette: Palette | None = None) -> str:
    palette = palette or get_palette(template.theme, template.branding)
    css = _css.render(p=palette, preview=preview, margins=margins_css(template.settings))
    custom = template.branding.get("customCSS")
    if isinstance(custom, str) and custom.strip():
        css = f"{css}\n/* branding */\n{custom.strip()}\n"
    return _sanitize_css(css)


# ── Element views ───────────────────────────────────────────────────


def _base(element: TemplateElement, kind: str, macro: str, *classes: str) -> dict[str, Any]:
    return {
        "kind": kind,
        "macro": macro,
        "classes": [c for c in classes if c],
        "style": style_to_css(element.style),
    }


def _header_view(element, content, lookup: Lookup, branding) -> dict[str, Any]:
    view = _base(element, "header", "header", f"align-{content.alignment}")
    meta = []
    if content.show_quotation_number:
        meta.append(("Quotation #", lookup.resolve("quotation.number")))
    if content.show_date:
        meta.append(("Date", lookup.resolve("quotation.date")))
    view.update(
        title=lookup.merge(content.title),
        subtitle=lookup.merge(content.subtitle),
        meta=meta,
        logo_url=branding.get("logoUrl") or "",
    )
    return view


def _info_view(element, content: InfoContent, lookup: Lookup, kind: ElementType) -> dict[str, Any]:
    view = _base(element, kind.value, "info", f"layout-{content.layout}", f"align-{content.alignment}")
    fields = []
    for field in content.fields:
        if isinstance(field, InfoField):
            fields.append((lookup.merge(field.label), lookup.merge(field.value)))
        else:
            value = lookup.merge(field)
            if value:
                fields.append(("", value))
    view.update(title=lookup.merge(content.title), fields=fields)
    return view


def _table_view(element, content: TableContent, lookup: Lookup, kind: ElementType) -> dict[str, Any]:
    if kind is ElementType.ITEMS_TABLE:
        columns, rows = item_rows(content, lookup)
        empty_message = "No items found"
    else:
        columns, rows = generic_rows(content, lookup)
        empty_message = ""
    aligns = [col.alignment for col in columns]
    view = _base(element, kind.value, "table")
    view.update(
        title=lookup.merge(content.title),
        table_class="items-table",
        show_header=content.show_header and any(col.label for col in columns),
        columns=[
            {
                "label": lookup.merge(col.label),
                "style": "; ".join(
                    part
                    for part in (f"width: {col.width}" if col.width else "", f"text-align: {col.alignment}")
                    if part
                ),
            }
            for col in columns
        ],
        rows=[
            [(cell, aligns[i] if i < len(aligns) else "left") for i, cell in enumerate(row)]
            for row in rows
        ],
        alternate_rows=content.alternate_rows,
        empty_message=empty_message,
    )
    return view


def _totals_view(element, content, lookup: Lookup) -> dict[str, Any]:
    view = _base(element, "totals", "totals", f"align-{content.alignment}")
    view.update(
        title=lookup.merge(content.title),
        rows=[
            {
                "label": lookup.merge(field.label),
                "value": lookup.merge(field.value),
                "emphasized": field.emphasized,
            }
            for field in content.fields
            if should_show(field.show_if, lookup)
        ],
    )
    return view


def _terms_view(element, content, lookup: Lookup) -> dict[str, Any]:
    view = _base(element, "terms", "block")
    text = lookup.merge(content.text).strip() or lookup.merge(content.default_text)
    view.update(
        title=lookup.merge(content.title) if content.show_title else "",
        text=text,
        body_class="terms-content",
    )
    return view


def _text_view(element, content, lookup: Lookup) -> dict[str, Any]:
    view = _base(element, "text", "block")
    view.update(title=lookup.merge(content.title), text=lookup.merge(content.text), body_class="text-content")
    return view


def _signature_view(element, content, lookup: Lookup) -> dict[str, Any]:
    view = _base(element, "signature", "signature", f"align-{content.alignment}")
    view.update(
        title=lookup.merge(content.title),
        name=lookup.merge(content.name) if content.show_name else "",
        show_date=content.show_date,
        signature_line=content.signature_line,
    )
    return view


def _generic_text(content: Any, lookup: Lookup) -> str:
    if isinstance(content, str):
        return lookup.merge(content)
    if isinstance(content, Mapping):
        for key in ("text", "title", "value", "label"):
            if isinstance(content.get(key), str):
                return lookup.merge(content[key])
        return ""
    if isinstance(content, (list, tuple)):
        return " ".join(lookup.merge(part) for part in content if isinstance(part, str))
    return lookup.merge(content)


def _generic_view(element: TemplateElement, lookup: Lookup) -> dict[str, Any]:
    tag = re.sub(r"[^a-z0-9_-]", "", str(element.type).lower()) or "unknown"
    view = _base(element, "generic", "block", f"element-{tag}")
    view.update(title="", text=_generic_text(element.content, lookup), body_class="generic-content")
    return view


def element_view(element: TemplateElement, lookup: Lookup, branding: Mapping[str, Any]) -> dict[str, Any]:
    """Build the view for one element; unknown and malformed elements become generic blocks."""
    kind = element.kind
    if kind is None:
        logger.warning("Unknown element type %r (element %s), rendering as generic block", element.type, element.id)
        return _generic_view(element, lookup)

    config = element.config if kind in (ElementType.TABLE, ElementType.ITEMS_TABLE) else None
    try:
        content = parse_content(kind, element.content, config)
    except MalformedElement as exc:
        logger.warning("Element %s: %s", element.id, exc)
        return _generic_view(element, lookup)

    if kind is ElementType.HEADER:
        return _header_view(element, content, lookup, branding)
    if kind in (ElementType.COMPANY_INFO, ElementType.CLIENT_INFO, ElementType.QUOTATION_INFO):
        return _info_view(element, content, lookup, kind)
    if kind in (ElementType.ITEMS_TABLE, ElementType.TABLE):
        return _table_view(element, content, lookup, kind)
    if kind is ElementType.TOTALS:
        return _totals_view(element, content, lookup)
    if kind is ElementType.TERMS:
        return _terms_view(element, content, lookup)
    if kind is ElementType.SIGNATURE:
        return _signature_view(element, content, lookup)
    return _text_view(element, content, lookup)


# ── Entry points ────────────────────────────────────────────────────


def render(
    template: Template,
    context: RenderContext | Mapping[str, Any],
    *,
    preview: bool = False,
) -> str:
    """Render ``template`` with ``context`` into a complete HTML document.

    Pure: the same inputs always give byte-identical output.
    """
    symbol = template.settings.get("currencySymbol") or "₹"
    lookup = Lookup(context, currency_symbol=str(symbol))
    branding = template.branding or {}
    views = [element_view(el, lookup, branding) for el in template.elements if el.visible]
    number = lookup.raw("quotation.number")
    return _document.render(
        number=number if number not in (None, "") else "Preview",
        css=theme_css(template, preview=preview),
        preview=preview,
        elements=views,
    )


def render_document(
    template: Template,
    context: RenderContext | Mapping[str, Any],
    *,
    preview: bool = False,
) -> RenderedDocument:
    return RenderedDocument(
        html=render(template, context, preview=preview),
        template_id=template.id,
        template_name=template.name,
        generated_at=datetime.now(timezone.utc),
    )
