"""Template builder and built-in template tests."""

from unittest.mock import patch

import pytest

from quotedocs.engine import builder as builder_module
from quotedocs.engine.builder import (
    TemplateBuilder,
    default_quotation_template,
    fallback_template,
)
from quotedocs.engine.elements import ElementType


def test_add_element_merges_defaults():
    template = TemplateBuilder.create_template(name="x").add_element("header", {"subtitle": "ESTIMATE"}).build()
    header = template.elements[0]
    assert header.kind is ElementType.HEADER
    assert header.content["title"] == "{{company.name}}"
    assert header.content["subtitle"] == "ESTIMATE"
    assert header.content["showQuotationNumber"] is True
    assert header.id.startswith("element_")


def test_default_totals_tax_label_mentions_rate():
    template = TemplateBuilder.create_template(name="x").add_element("totals").build()
    labels = [field["label"] for field in template.elements[0].content["fields"]]
    assert "Tax ({{tax.rate}}%)" in labels


def test_update_and_remove_element():
    b = TemplateBuilder.create_template(name="x").add_element("text", {"text": "a"}, element_id="t1")
    b.update_element("t1", content={"text": "b"}, visible=False)
    element = b.build().elements[0]
    assert element.content == {"text": "b"}
    assert element.visible is False

    with pytest.raises(KeyError):
        b.update_element("missing", visible=True)

    assert b.remove_element("t1").build().elements == []


def test_reorder_keeps_unlisted_elements():
    b = TemplateBuilder.create_template(name="x")
    for eid in ("a", "b", "c", "d"):
        b.add_element("text", {"text": eid}, element_id=eid)
    b.reorder_elements(["c", "a", "nope"])
    assert [el.id for el in b.build().elements] == ["c", "a", "b", "d"]


def test_apply_theme():
    b = TemplateBuilder.create_template(name="x").add_element("header")
    template = b.apply_theme("classic").build()
    assert template.theme == "CLASSIC"
    assert "fontFamily" in template.elements[0].style

    with pytest.raises(ValueError):
        b.apply_theme("neon")


def test_build_returns_independent_copy():
    b = TemplateBuilder.create_template(name="x").add_element("text", {"text": "a"})
    first = b.build()
    b.add_element("text", {"text": "b"})
    assert len(first.elements) == 1


def test_export_import_resets_identity():
    exported = TemplateBuilder.create_template(id="tpl_1", name="x", version=4, is_default=True).export_template()
    assert "exported_at" in exported

    imported = TemplateBuilder.import_template(exported).build()
    assert imported.id is None
    assert imported.version == 1
    assert imported.is_default is False
    assert imported.name == "x"


def test_default_template_layout():
    template = default_quotation_template()
    assert [el.kind for el in template.elements] == [
        ElementType.HEADER,
        ElementType.COMPANY_INFO,
        ElementType.CLIENT_INFO,
        ElementType.QUOTATION_INFO,
        ElementType.ITEMS_TABLE,
        ElementType.TOTALS,
        ElementType.TERMS,
        ElementType.SIGNATURE,
    ]
    assert template.settings["pageSize"] == "A4"


def test_fallback_uses_emergency_template_when_default_breaks():
    with patch.object(builder_module, "default_quotation_template", side_effect=RuntimeError("boom")):
        template = fallback_template()
    assert template.id == "emergency"
    assert [el.type for el in template.elements] == ["header", "client_info", "items_table", "totals"]
