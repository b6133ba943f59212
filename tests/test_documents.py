"""Quotation rendering and PDF delivery tests."""

import base64
from datetime import date

import pytest
from httpx import AsyncClient

from quotedocs.services import document_service
from quotedocs.services.quotation_source import (
    YamlQuotationSource,
    build_render_context,
    derive_quotation_number,
)

# ── Record mapping ──────────────────────────────────────────────────


def test_build_render_context_maps_record():
    context = build_render_context(
        {
            "id": "q-9",
            "created_at": "2026-10-19T09:30:00Z",
            "number_of_days": 5,
            "customer": {"name": "Master Name", "email": "master@example.com"},
            "customer_contact": {"name": "Site Contact"},
            "selected_machines": [{"name": "Hydra 14", "quantity": 2, "base_rate": 6500}],
            "total_rent": 13000,
            "gst_amount": 2340,
            "total_cost": 15340,
        }
    )
    assert context.client["name"] == "Site Contact"
    assert context.client["email"] == "master@example.com"
    assert context.quotation["date"] == "19 October 2026"
    assert context.quotation["validUntil"] == "3 November 2026"
    assert context.quotation["duration"] == "5 days"
    assert context.quotation["number"] == derive_quotation_number("q-9")
    assert context.items[0]["amount"] == 13000
    assert context.items[0]["duration"] == "5 days"
    assert context.totals["total"] == "₹15,340"
    assert context.totals["discount"] == "₹0"
    assert context.tax["rate"] == 18


def test_derived_number_is_stable():
    assert derive_quotation_number("abc") == derive_quotation_number("abc")
    assert derive_quotation_number("abc").startswith("ASP-Q-")


def test_missing_dates_use_today():
    context = build_render_context({"id": "x"}, today=date(2026, 1, 1))
    assert context.quotation["date"] == "1 January 2026"
    assert context.quotation["validUntil"] == "16 January 2026"


@pytest.mark.asyncio
async def test_yaml_source(tmp_path):
    (tmp_path / "q-5.yaml").write_text("quotation_number: Q-5\ncustomer: Meera\n")
    source = YamlQuotationSource(tmp_path)

    context = await source.get_context("q-5")
    assert context.quotation["number"] == "Q-5"
    assert context.client["name"] == "Meera"
    assert await source.get_context("missing") is None
    assert await source.get_context("../q-5") is None


# ── HTTP ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_quotation_preview_with_default_template(client: AsyncClient):
    resp = await client.get("/api/quotations/q-1/preview")
    assert resp.status_code == 200
    html = resp.text
    assert "<title>Quotation Q-1</title>" in html
    assert "Kumar Infra Projects" in html
    assert html.count('class="data-row') == 1
    assert "₹10,000" in html
    assert "₹11,800" in html


@pytest.mark.asyncio
async def test_quotation_preview_unknown_template_falls_back(client: AsyncClient):
    resp = await client.get("/api/quotations/q-1/preview", params={"template_id": "tpl_gone", "format": "json"})
    assert resp.status_code == 200
    assert resp.json()["template_id"] == "default"


@pytest.mark.asyncio
async def test_quotation_not_found(client: AsyncClient):
    resp = await client.get("/api/quotations/q-404/preview")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_quotation_pdf_download(client: AsyncClient, pdf_engine):
    resp = await client.get("/api/quotations/q-1/pdf")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["content-disposition"] == 'attachment; filename="ASP_Quotation_Q-1.pdf"'
    assert resp.content.startswith(b"%PDF-")
    assert pdf_engine.cleaned == 1


@pytest.mark.asyncio
async def test_pdf_from_raw_data_with_options(client: AsyncClient, pdf_engine):
    resp = await client.post(
        "/api/documents/pdf",
        json={
            "data": {"quotation_number": "RAW-7", "customer": "Walk-in"},
            "options": {"format": "A5", "quality": "high", "bogus": 1},
            "watermark": {"text": "DRAFT COPY"},
            "filename": "walk in",
        },
    )
    assert resp.status_code == 200
    assert 'filename="walk_in.pdf"' in resp.headers["content-disposition"]
    html, options = pdf_engine.rendered[0]
    assert "DRAFT COPY" in html
    assert options.format == "A5"
    assert options.device_scale_factor == 2


@pytest.mark.asyncio
async def test_pdf_request_needs_a_source(client: AsyncClient):
    resp = await client.post("/api/documents/pdf", json={"template_id": "x"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_pdf_failure_returns_502(client: AsyncClient, pdf_engine):
    pdf_engine.fail_start = True
    resp = await client.post("/api/documents/pdf", json={"quotation_id": "q-1"})
    assert resp.status_code == 502
    body = resp.json()
    assert body["detail"] == "PDF generation failed"
    assert "failed to start" in body["error"]


@pytest.mark.asyncio
async def test_batch_reports_per_item(client: AsyncClient):
    resp = await client.post(
        "/api/documents/batch",
        json={
            "items": [
                {"quotation_id": "q-1"},
                {"quotation_id": "q-404", "filename": "missing"},
                "not an object",
                {"data": {"quotation_number": "B-2"}, "template_id": "tpl_gone"},
            ],
            "options": {"quality": "draft"},
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["total"], body["successful"], body["failed"]) == (4, 2, 2)
    results = body["results"]
    assert [r["index"] for r in results] == [0, 1, 2, 3]
    assert [r["success"] for r in results] == [True, False, False, True]
    assert results[0]["filename"] == "ASP_Quotation_Q-1.pdf"
    assert base64.b64decode(results[0]["content_base64"]).startswith(b"%PDF-")
    assert "q-404" in results[1]["error"]
    assert results[1]["filename"] == "missing"
    assert results[3]["filename"] == "ASP_Quotation_B-2.pdf"


@pytest.mark.asyncio
async def test_batch_without_content(client: AsyncClient):
    resp = await client.post(
        "/api/documents/batch", json={"items": [{"quotation_id": "q-1"}], "include_content": False}
    )
    result = resp.json()["results"][0]
    assert result["success"] is True
    assert result["content_base64"] is None
    assert result["size"] > 0


def test_scalar_customer_fields_are_treated_as_names():
    context = build_render_context({"id": "q-3", "customer_contact": "Ravi", "customer": 42, "company": ["x"]})
    assert context.client["name"] == "Ravi"
    assert context.client["email"] == ""
    assert context.company["name"] == "ASP Cranes Pvt. Ltd."


@pytest.mark.asyncio
async def test_batch_isolates_malformed_quotation_data(client: AsyncClient):
    resp = await client.post(
        "/api/documents/batch",
        json={
            "items": [
                {"quotation_id": "q-1"},
                {"data": {"customer_contact": "Ravi", "selected_machines": "crane"}},
                {"data": {"quotation_number": "B-3", "created_at": {"bad": 1}}},
                {"quotation_id": "q-1"},
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 4
    assert body["failed"] == 0
    assert [r["index"] for r in body["results"]] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_batch_records_preparation_errors_per_item(client: AsyncClient, monkeypatch):
    real = document_service.build_render_context

    def flaky(record, **kwargs):
        if record.get("quotation_number") == "BAD":
            raise AttributeError("'str' object has no attribute 'get'")
        return real(record, **kwargs)

    monkeypatch.setattr(document_service, "build_render_context", flaky)
    resp = await client.post(
        "/api/documents/batch",
        json={
            "items": [
                {"quotation_id": "q-1"},
                {"data": {"quotation_number": "BAD"}},
                {"quotation_id": "q-1"},
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["total"], body["successful"], body["failed"]) == (3, 2, 1)
    assert body["results"][1]["success"] is False
    assert "attribute" in body["results"][1]["error"]


@pytest.mark.asyncio
async def test_template_margins_reach_pdf_options(client: AsyncClient, pdf_engine):
    template = {
        "name": "Narrow",
        "elements": [{"id": "h", "type": "header"}],
        "settings": {"pageSize": "A5", "margins": {"top": 12, "right": 8, "bottom": "15mm", "left": 8}},
    }
    tpl_id = (await client.post("/api/templates/", json=template)).json()["id"]

    resp = await client.post("/api/documents/pdf", json={"quotation_id": "q-1", "template_id": tpl_id})
    assert resp.status_code == 200
    _, options = pdf_engine.rendered[0]
    assert options.format == "A5"
    assert options.margins == {"top": "12px", "right": "8px", "bottom": "15mm", "left": "8px"}

    resp = await client.post(
        "/api/documents/pdf",
        json={"quotation_id": "q-1", "template_id": tpl_id, "options": {"margins": {"top": "30mm"}}},
    )
    _, options = pdf_engine.rendered[1]
    assert options.margins == {"top": "30mm", "right": "8px", "bottom": "15mm", "left": "8px"}
