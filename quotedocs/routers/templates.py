"""Template CRUD, default selection, preview and disk sync endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.database import get_db
from quotedocs.engine.model import Template
from quotedocs.schemas.template import (
    DuplicateRequest,
    PreviewRequest,
    SyncResponse,
    TemplateCreate,
    TemplatePatch,
    TemplateReplace,
    TemplateResponse,
    TemplateSummary,
    VersionConflictResponse,
)
from quotedocs.services import document_service, template_service
from quotedocs.services.template_service import VersionConflict

router = APIRouter()


def _response(template: Template) -> TemplateResponse:
    return TemplateResponse.model_validate(template.model_dump())


def _summary(template: Template) -> TemplateSummary:
    return TemplateSummary.model_validate(
        {**template.model_dump(exclude={"elements"}), "element_count": len(template.elements)}
    )


@router.get("/", response_model=list[TemplateSummary])
async def list_templates(
    category: str | None = None,
    scope: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    templates = await template_service.list_templates(
        db,
        category=category,
        scope=scope,
        search=search,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )
    return [_summary(t) for t in templates]


@router.post("/", response_model=TemplateResponse, status_code=201)
async def create_template(data: TemplateCreate, db: AsyncSession = Depends(get_db)):
    return _response(await template_service.create_template(db, data))


@router.get("/default", response_model=TemplateResponse)
async def get_default_template(scope: str | None = None, db: AsyncSession = Depends(get_db)):
    """The template rendering would use when no id is given. Always succeeds."""
    template = await template_service.get_default_template(db, scope)
    return TemplateResponse.model_validate(
        {**template.model_dump(), "id": template.id or "default"}
    )


@router.post("/preview")
async def preview_template(
    body: PreviewRequest,
    format: Literal["html", "json"] = "html",
    db: AsyncSession = Depends(get_db),
):
    try:
        document = await document_service.preview_adhoc(db, body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()],
        )
    if format == "json":
        return document
    return HTMLResponse(document.html)


@router.post("/sync", response_model=SyncResponse)
async def sync_templates(db: AsyncSession = Depends(get_db)):
    """Re-scan the templates directory and upsert any YAML definitions into the DB."""
    result = await template_service.sync_templates_from_disk(db)
    return SyncResponse(
        created=result["created"],
        updated=result["updated"],
        message=f"{len(result['created'])} created, {len(result['updated'])} updated",
    )


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str, include_inactive: bool = False, db: AsyncSession = Depends(get_db)
):
    template = await template_service.get_template(db, template_id, include_inactive)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return _response(template)


@router.put("/{template_id}", response_model=TemplateResponse)
async def replace_template(
    template_id: str, data: TemplateReplace, db: AsyncSession = Depends(get_db)
):
    template = await template_service.replace_template(db, template_id, data)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return _response(template)


@router.patch(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={409: {"model": VersionConflictResponse}},
)
async def update_template(
    template_id: str, patch: TemplatePatch, db: AsyncSession = Depends(get_db)
):
    result = await template_service.update_template(db, template_id, patch)
    if result is None:
        raise HTTPException(status_code=404, detail="Template not found")
    if isinstance(result, VersionConflict):
        return JSONResponse(
            status_code=409,
            content=VersionConflictResponse(
                detail="Template was modified by someone else",
                expected_version=result.expected,
                actual_version=result.actual,
            ).model_dump(),
        )
    return _response(result.template)


@router.delete("/{template_id}", status_code=204)
async def delete_template(template_id: str, db: AsyncSession = Depends(get_db)):
    deleted = await template_service.soft_delete_template(db, template_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Template not found")


@router.post("/{template_id}/default", response_model=TemplateResponse)
async def set_default_template(template_id: str, db: AsyncSession = Depends(get_db)):
    template = await template_service.set_default_template(db, template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return _response(template)


@router.post("/{template_id}/duplicate", response_model=TemplateResponse, status_code=201)
async def duplicate_template(
    template_id: str,
    body: DuplicateRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    name = body.name if body else None
    template = await template_service.duplicate_template(db, template_id, name)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return _response(template)
