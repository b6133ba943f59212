"""Template store and template API tests."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.config import settings
from quotedocs.engine.errors import TemplateNotFound
from quotedocs.models.template import QuotationTemplate
from quotedocs.schemas.template import TemplateCreate, TemplatePatch
from quotedocs.services import template_service
from quotedocs.services.template_service import Updated, VersionConflict

PAYLOAD = {
    "name": "Crane Rental",
    "description": "Standard crane quotation",
    "theme": "PROFESSIONAL",
    "elements": [
        {"id": "h", "type": "header", "content": {"title": "{{company.name}}"}},
        {"id": "i", "type": "items_table", "content": {}},
    ],
    "settings": {"pageSize": "A4"},
}


async def _create(db: AsyncSession, **overrides) -> str:
    template = await template_service.create_template(db, TemplateCreate(**{**PAYLOAD, **overrides}))
    return template.id


# ── Store ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_get(db: AsyncSession):
    tpl_id = await _create(db)
    template = await template_service.get_template(db, tpl_id)
    assert tpl_id.startswith("tpl_")
    assert template.version == 1
    assert [el.id for el in template.elements] == ["h", "i"]
    assert template.settings == {"pageSize": "A4"}


@pytest.mark.asyncio
async def test_load_template_missing_raises(db: AsyncSession):
    with pytest.raises(TemplateNotFound):
        await template_service.load_template(db, "tpl_missing")


@pytest.mark.asyncio
async def test_string_encoded_rows_are_normalized(db: AsyncSession):
    inner = json.dumps([{"type": "text", "content": json.dumps({"text": "hi"})}, 7])
    db.add(
        QuotationTemplate(
            id="legacy",
            name="Legacy",
            elements=json.dumps(inner),
            settings="not json",
            branding="{}",
        )
    )
    await db.commit()

    template = await template_service.get_template(db, "legacy")
    assert len(template.elements) == 1
    assert template.elements[0].id == "legacy-el-0"
    assert template.elements[0].content == {"text": "hi"}
    assert template.settings == {}


@pytest.mark.asyncio
async def test_patch_is_compare_and_set(db: AsyncSession):
    tpl_id = await _create(db)

    first = await template_service.update_template(db, tpl_id, TemplatePatch(expected_version=1, name="v2"))
    assert isinstance(first, Updated)
    assert first.template.version == 2
    assert first.template.name == "v2"

    stale = await template_service.update_template(db, tpl_id, TemplatePatch(expected_version=1, name="lost"))
    assert stale == VersionConflict(expected=1, actual=2)

    current = await template_service.get_template(db, tpl_id)
    assert current.name == "v2"
    assert current.version == 2


@pytest.mark.asyncio
async def test_single_default_per_scope(db: AsyncSession):
    a = await _create(db, name="A", is_default=True)
    b = await _create(db, name="B")
    other = await _create(db, name="Invoice", scope="invoice", is_default=True)

    await template_service.set_default_template(db, b)

    defaults = [t.id for t in await template_service.list_templates(db, scope="quotation") if t.is_default]
    assert defaults == [b]
    assert (await template_service.get_template(db, other)).is_default is True
    assert (await template_service.get_default_template(db)).id == b
    assert (await template_service.get_template(db, a)).is_default is False


@pytest.mark.asyncio
async def test_moving_default_to_another_scope_keeps_one_default(db: AsyncSession):
    a = await _create(db, name="A", is_default=True)
    b = await _create(db, name="B", scope="invoice", is_default=True)

    result = await template_service.update_template(db, a, TemplatePatch(expected_version=1, scope="invoice"))
    assert isinstance(result, Updated)

    defaults = [t.id for t in await template_service.list_templates(db, scope="invoice") if t.is_default]
    assert defaults == [a]
    assert (await template_service.get_template(db, b)).is_default is False


@pytest.mark.asyncio
async def test_inactive_template_cannot_become_default(db: AsyncSession):
    a = await _create(db, name="A", is_default=True)
    b = await _create(db, name="B")
    await template_service.soft_delete_template(db, b)

    result = await template_service.update_template(db, b, TemplatePatch(expected_version=2, is_default=True))
    assert isinstance(result, Updated)
    assert result.template.is_default is False

    defaults = [t.id for t in await template_service.list_templates(db) if t.is_default]
    assert defaults == [a]
    assert (await template_service.get_default_template(db)).id == a


@pytest.mark.asyncio
async def test_stale_patch_leaves_other_defaults_alone(db: AsyncSession):
    a = await _create(db, name="A", is_default=True)
    b = await _create(db, name="B")
    await template_service.update_template(db, b, TemplatePatch(expected_version=1, name="B2"))

    stale = await template_service.update_template(db, b, TemplatePatch(expected_version=1, is_default=True))
    assert stale == VersionConflict(expected=1, actual=2)
    assert (await template_service.get_template(db, a)).is_default is True


@pytest.mark.asyncio
async def test_soft_delete_hides_template(db: AsyncSession):
    tpl_id = await _create(db, is_default=True)
    assert await template_service.soft_delete_template(db, tpl_id) is True

    assert await template_service.get_template(db, tpl_id) is None
    hidden = await template_service.get_template(db, tpl_id, include_inactive=True)
    assert hidden.is_active is False
    assert hidden.is_default is False
    assert hidden.version == 2
    assert await template_service.list_templates(db) == []


@pytest.mark.asyncio
async def test_duplicate_starts_fresh(db: AsyncSession):
    tpl_id = await _create(db, is_default=True)
    copy = await template_service.duplicate_template(db, tpl_id)
    assert copy.id != tpl_id
    assert copy.name == "Crane Rental (Copy)"
    assert copy.version == 1
    assert copy.is_default is False
    assert [el.id for el in copy.elements] == ["h", "i"]


@pytest.mark.asyncio
async def test_default_resolution_order(db: AsyncSession):
    # Empty store: the built-in layout
    assert (await template_service.get_default_template(db)).id == "default"

    only = await _create(db, name="Only")
    assert (await template_service.get_default_template(db)).id == only

    chosen = await _create(db, name="Chosen", is_default=True)
    assert (await template_service.get_default_template(db)).id == chosen


@pytest.mark.asyncio
async def test_default_resolution_survives_store_outage(db: AsyncSession):
    with patch.object(db, "execute", AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))):
        template = await template_service.get_default_template(db)
    assert template.id == "default"
    assert template.elements


@pytest.mark.asyncio
async def test_resolve_template_falls_back_on_missing_id(db: AsyncSession):
    tpl_id = await _create(db, is_default=True)
    assert (await template_service.resolve_template(db, "tpl_gone")).id == tpl_id
    assert (await template_service.resolve_template(db, tpl_id)).id == tpl_id


@pytest.mark.asyncio
async def test_sync_from_disk(db: AsyncSession, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "templates_dir", tmp_path)
    (tmp_path / "standard.yaml").write_text(
        "name: Standard\nis_default: true\nelements:\n  - {id: h, type: header}\n"
    )
    (tmp_path / "broken.yaml").write_text("name: [unclosed\n")

    result = await template_service.sync_templates_from_disk(db)
    assert result == {"created": ["standard"], "updated": []}

    again = await template_service.sync_templates_from_disk(db)
    assert again == {"created": [], "updated": []}

    (tmp_path / "standard.yaml").write_text("name: Standard v2\nelements: []\n")
    result = await template_service.sync_templates_from_disk(db)
    assert result["updated"] == ["standard"]
    template = await template_service.get_template(db, "standard")
    assert template.version == 2
    assert template.is_default is True


# ── API ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_templates_empty(client: AsyncClient):
    resp = await client.get("/api/templates/")
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_create_get_and_list(client: AsyncClient):
    resp = await client.post("/api/templates/", json=PAYLOAD)
    assert resp.status_code == 201
    data = resp.json()
    assert data["version"] == 1
    assert data["is_active"] is True

    resp = await client.get(f"/api/templates/{data['id']}")
    assert resp.status_code == 200
    assert resp.json()["elements"][0]["type"] == "header"

    resp = await client.get("/api/templates/", params={"search": "crane"})
    assert [t["element_count"] for t in resp.json()] == [2]


@pytest.mark.asyncio
async def test_patch_conflict_returns_409(client: AsyncClient):
    tpl_id = (await client.post("/api/templates/", json=PAYLOAD)).json()["id"]

    resp = await client.patch(f"/api/templates/{tpl_id}", json={"expected_version": 1, "theme": "CLASSIC"})
    assert resp.status_code == 200
    assert resp.json()["version"] == 2

    resp = await client.patch(f"/api/templates/{tpl_id}", json={"expected_version": 1, "theme": "MODERN"})
    assert resp.status_code == 409
    assert resp.json()["expected_version"] == 1
    assert resp.json()["actual_version"] == 2


@pytest.mark.asyncio
async def test_put_replaces_and_bumps_version(client: AsyncClient):
    tpl_id = (await client.post("/api/templates/", json=PAYLOAD)).json()["id"]
    body = {**PAYLOAD, "name": "Replaced", "category": "quotation", "scope": "quotation",
            "branding": {}, "is_default": False}
    resp = await client.put(f"/api/templates/{tpl_id}", json=body)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Replaced"
    assert resp.json()["version"] == 2


@pytest.mark.asyncio
async def test_delete_then_404(client: AsyncClient):
    tpl_id = (await client.post("/api/templates/", json=PAYLOAD)).json()["id"]
    resp = await client.delete(f"/api/templates/{tpl_id}")
    assert resp.status_code == 204

    assert (await client.get(f"/api/templates/{tpl_id}")).status_code == 404
    resp = await client.get(f"/api/templates/{tpl_id}", params={"include_inactive": True})
    assert resp.json()["is_active"] is False


@pytest.mark.asyncio
async def test_default_endpoints(client: AsyncClient):
    resp = await client.get("/api/templates/default")
    assert resp.status_code == 200
    assert resp.json()["id"] == "default"

    tpl_id = (await client.post("/api/templates/", json=PAYLOAD)).json()["id"]
    resp = await client.post(f"/api/templates/{tpl_id}/default")
    assert resp.json()["is_default"] is True
    assert (await client.get("/api/templates/default")).json()["id"] == tpl_id


@pytest.mark.asyncio
async def test_duplicate_endpoint(client: AsyncClient):
    tpl_id = (await client.post("/api/templates/", json=PAYLOAD)).json()["id"]
    resp = await client.post(f"/api/templates/{tpl_id}/duplicate", json={"name": "Crane Rental B"})
    assert resp.status_code == 201
    assert resp.json()["name"] == "Crane Rental B"

    assert (await client.post("/api/templates/tpl_nope/duplicate")).status_code == 404


@pytest.mark.asyncio
async def test_preview_adhoc_template_with_sample_data(client: AsyncClient):
    resp = await client.post("/api/templates/preview", json={"template": PAYLOAD})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "ASP Cranes Pvt. Ltd." in resp.text
    assert "Tower Crane Rental" in resp.text

    resp = await client.post(
        "/api/templates/preview",
        params={"format": "json"},
        json={"template": PAYLOAD, "data": {"company": {"name": "Acme Lifts"}}},
    )
    assert resp.json()["template_name"] == "Crane Rental"
    assert "Acme Lifts" in resp.json()["html"]


@pytest.mark.asyncio
async def test_sync_endpoint(client: AsyncClient, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "templates_dir", tmp_path)
    (tmp_path / "basic.yml").write_text("name: Basic\nelements: []\n")
    resp = await client.post("/api/templates/sync")
    assert resp.status_code == 200
    assert resp.json()["created"] == ["basic"]
    assert resp.json()["message"] == "1 created, 0 updated"


@pytest.mark.asyncio
async def test_preview_rejects_malformed_body_with_422(client: AsyncClient):
    resp = await client.post("/api/templates/preview", json={"template": {"name": "x", "elements": 5}})
    assert resp.status_code == 422
    assert resp.json()["detail"][0]["loc"][0] == "elements"

    resp = await client.post("/api/templates/preview", json={"data": {"items": "x"}})
    assert resp.status_code == 422
    assert resp.json()["detail"][0]["loc"][0] == "items"
