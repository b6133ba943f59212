"""Template store: versioned quotation templates persisted through SQLAlchemy.

Rows keep ``elements``/``settings``/``branding`` as JSON text. Older builders
sometimes stored element content as a serialized string inside that JSON;
:func:`template_from_row` resolves all of that once, so everything above the
store only ever sees a :class:`~quotedocs.engine.model.Template`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.config import settings
from quotedocs.engine.builder import fallback_template
from quotedocs.engine.errors import TemplateNotFound
from quotedocs.engine.model import Template
from quotedocs.models.template import QuotationTemplate, new_template_id
from quotedocs.schemas.template import TemplateCreate, TemplatePatch, TemplateReplace

logger = logging.getLogger(__name__)

_JSON_FIELDS = ("elements", "settings", "branding")


@dataclass(frozen=True)
class Updated:
    template: Template


@dataclass(frozen=True)
class VersionConflict:
    expected: int
    actual: int


UpdateResult = Updated | VersionConflict


# ── Row <-> domain ──────────────────────────────────────────────────


def _load_json(raw: Any, default: Any, template_id: str, field: str) -> Any:
    value = raw
    # Values have been seen double-encoded; unwrap at most twice
    for _ in range(2):
        if not isinstance(value, str):
            break
        if not value.strip():
            return default
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("Template %s: unreadable %s JSON, using empty value", template_id, field)
            return default
    if not isinstance(value, type(default)):
        logger.warning("Template %s: %s has unexpected shape %s", template_id, field, type(value).__name__)
        return default
    return value


def _normalize_elements(raw: list[Any], template_id: str) -> list[dict[str, Any]]:
    elements = []
    for index, element in enumerate(raw):
        if isinstance(element, str):
            try:
                element = json.loads(element)
            except ValueError:
                pass
        if not isinstance(element, dict):
            logger.warning("Template %s: dropping element %d (not an object)", template_id, index)
            continue
        element = dict(element)
        element["type"] = str(element.get("type") or "unknown")
        # Stable ids for elements written without one
        element.setdefault("id", f"{template_id}-el-{index}")
        if not element["id"]:
            element["id"] = f"{template_id}-el-{index}"
        elements.append(element)
    return elements


def template_from_row(row: QuotationTemplate) -> Template:
    elements = _load_json(row.elements, [], row.id, "elements")
    return Template(
        id=row.id,
        name=row.name,
        description=row.description or "",
        theme=row.theme or "MODERN",
        category=row.category or "quotation",
        scope=row.scope or settings.default_scope,
        elements=_normalize_elements(elements, row.id),
        settings=_load_json(row.settings, {}, row.id, "settings"),
        branding=_load_json(row.branding, {}, row.id, "branding"),
        is_default=bool(row.is_default),
        is_active=bool(row.is_active),
        version=row.version,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _column_values(data: dict[str, Any]) -> dict[str, Any]:
    values = dict(data)
    for field in _JSON_FIELDS:
        if field in values:
            values[field] = json.dumps(values[field])
    return values


async def _clear_other_defaults(db: AsyncSession, scope: str, keep_id: str | None) -> None:
    stmt = (
        update(QuotationTemplate)
        .where(QuotationTemplate.scope == scope, QuotationTemplate.is_default.is_(True))
        .values(is_default=False)
    )
    if keep_id is not None:
        stmt = stmt.where(QuotationTemplate.id != keep_id)
    await db.execute(stmt)


# ── Reads ───────────────────────────────────────────────────────────


async def get_template_row(
    db: AsyncSession, template_id: str, include_inactive: bool = False
) -> QuotationTemplate | None:
    row = await db.get(QuotationTemplate, template_id, populate_existing=True)
    if row is None or (not row.is_active and not include_inactive):
        return None
    return row


async def get_template(
    db: AsyncSession, template_id: str, include_inactive: bool = False
) -> Template | None:
    row = await get_template_row(db, template_id, include_inactive)
    return template_from_row(row) if row else None


async def load_template(db: AsyncSession, template_id: str) -> Template:
    """Fetch an active template by id. Never substitutes: missing means :class:`TemplateNotFound`."""
    template = await get_template(db, template_id)
    if template is None:
        raise TemplateNotFound(template_id)
    return template


async def list_templates(
    db: AsyncSession,
    *,
    category: str | None = None,
    scope: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[Template]:
    stmt = select(QuotationTemplate).order_by(
        QuotationTemplate.is_default.desc(), QuotationTemplate.name, QuotationTemplate.id
    ).execution_options(populate_existing=True)
    if not include_inactive:
        stmt = stmt.where(QuotationTemplate.is_active.is_(True))
    if category:
        stmt = stmt.where(QuotationTemplate.category == category)
    if scope:
        stmt = stmt.where(QuotationTemplate.scope == scope)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(QuotationTemplate.name.ilike(pattern), QuotationTemplate.description.ilike(pattern))
        )
    result = await db.execute(stmt.limit(limit).offset(offset))
    return [template_from_row(row) for row in result.scalars().all()]


# ── Writes ──────────────────────────────────────────────────────────


async def create_template(db: AsyncSession, data: TemplateCreate) -> Template:
    if data.is_default:
        await _clear_other_defaults(db, data.scope, keep_id=None)

    row = QuotationTemplate(
        id=new_template_id(),
        version=1,
        is_active=True,
        **_column_values(data.model_dump()),
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info("Created template %s (%s)", row.id, row.name)
    return template_from_row(row)


async def replace_template(
    db: AsyncSession, template_id: str, data: TemplateReplace
) -> Template | None:
    row = await db.get(QuotationTemplate, template_id, populate_existing=True)
    if row is None:
        return None

    values = data.model_dump()
    if values["is_default"] and values["is_active"]:
        await _clear_other_defaults(db, values["scope"], keep_id=template_id)
    elif not values["is_active"]:
        values["is_default"] = False

    for field, value in _column_values(values).items():
        setattr(row, field, value)
    row.version = row.version + 1
    await db.commit()
    await db.refresh(row)
    return template_from_row(row)


async def update_template(
    db: AsyncSession, template_id: str, patch: TemplatePatch
) -> UpdateResult | None:
    """Compare-and-set partial update. ``None`` when the template does not exist."""
    row = await db.get(QuotationTemplate, template_id, populate_existing=True)
    if row is None:
        return None

    changes = patch.model_dump(exclude_unset=True, exclude={"expected_version"})
    changes = {k: v for k, v in changes.items() if v is not None}
    if row.version != patch.expected_version:
        return VersionConflict(expected=patch.expected_version, actual=row.version)

    # Only an active row may be the default of its scope
    if not changes.get("is_active", row.is_active):
        if changes.get("is_default") or row.is_default:
            changes["is_default"] = False
    elif changes.get("is_default", row.is_default):
        scope = changes.get("scope", row.scope)
        await _clear_other_defaults(db, scope, keep_id=template_id)

    stmt = (
        update(QuotationTemplate)
        .where(
            QuotationTemplate.id == template_id,
            QuotationTemplate.version == patch.expected_version,
        )
        .values(
            **_column_values(changes),
            version=QuotationTemplate.version + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        await db.rollback()
        await db.refresh(row)
        logger.info(
            "Version conflict on %s: expected %d, found %d",
            template_id, patch.expected_version, row.version,
        )
        return VersionConflict(expected=patch.expected_version, actual=row.version)

    await db.commit()
    await db.refresh(row)
    return Updated(template_from_row(row))


async def set_default_template(db: AsyncSession, template_id: str) -> Template | None:
    """Make ``template_id`` the only default in its scope, in one transaction."""
    row = await get_template_row(db, template_id)
    if row is None:
        return None

    await _clear_other_defaults(db, row.scope, keep_id=template_id)
    if not row.is_default:
        row.is_default = True
        row.version = row.version + 1
    await db.commit()
    await db.refresh(row)
    logger.info("Template %s is now the default for scope %r", row.id, row.scope)
    return template_from_row(row)


async def soft_delete_template(db: AsyncSession, template_id: str) -> bool:
    row = await get_template_row(db, template_id)
    if row is None:
        return False

    row.is_active = False
    row.is_default = False
    row.version = row.version + 1
    await db.commit()
    logger.info("Deactivated template %s", template_id)
    return True


async def duplicate_template(
    db: AsyncSession, template_id: str, name: str | None = None
) -> Template | None:
    source = await get_template_row(db, template_id)
    if source is None:
        return None

    description = f"{source.description} (Copy)".strip() if source.description else "(Copy)"
    row = QuotationTemplate(
        id=new_template_id(),
        name=name or f"{source.name} (Copy)",
        description=description,
        theme=source.theme,
        category=source.category,
        scope=source.scope,
        elements=source.elements,
        settings=source.settings,
        branding=source.branding,
        is_default=False,
        is_active=True,
        version=1,
        created_by=source.created_by,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return template_from_row(row)


# ── Resolution ──────────────────────────────────────────────────────


async def get_default_template(db: AsyncSession, scope: str | None = None) -> Template:
    """Configured default, else first active template, else the built-in layout. Never raises."""
    scope = scope or settings.default_scope
    try:
        stmt = (
            select(QuotationTemplate)
            .where(
                QuotationTemplate.scope == scope,
                QuotationTemplate.is_active.is_(True),
                QuotationTemplate.is_default.is_(True),
            )
            .order_by(QuotationTemplate.updated_at.desc(), QuotationTemplate.version.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = (await db.execute(stmt)).scalars().first()
        if row is None:
            stmt = (
                select(QuotationTemplate)
                .where(QuotationTemplate.scope == scope, QuotationTemplate.is_active.is_(True))
                .order_by(QuotationTemplate.created_at, QuotationTemplate.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
            row = (await db.execute(stmt)).scalars().first()
        if row is not None:
            return template_from_row(row)
        logger.info("No stored template for scope %r, using built-in default", scope)
    except Exception as exc:
        logger.warning("Template store unavailable while resolving default (%s), using built-in default", exc)
    return fallback_template()


async def resolve_template(
    db: AsyncSession, template_id: str | None = None, scope: str | None = None
) -> Template:
    """Explicit id when it resolves; otherwise the scope default."""
    if template_id:
        try:
            return await load_template(db, template_id)
        except TemplateNotFound:
            logger.warning("Template %s not found, falling back to default", template_id)
    return await get_default_template(db, scope)


# ── Disk -> DB sync ─────────────────────────────────────────────────


def _read_definition(path: Path) -> dict[str, Any] | None:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        logger.warning("Skipping %s: invalid YAML (%s)", path, exc)
        return None
    if not isinstance(data, dict) or not data.get("name"):
        logger.warning("Skipping %s: not a template definition", path)
        return None
    data.setdefault("id", path.stem)
    return data


async def sync_templates_from_disk(db: AsyncSession) -> dict[str, list[str]]:
    """Upsert YAML template definitions from ``templates_dir``.

    New ids are inserted at version 1; changed definitions are rewritten with a
    version bump. ``is_default`` from disk only applies to newly created rows.
    """
    templates_dir = settings.templates_dir
    if not templates_dir.exists():
        return {"created": [], "updated": []}

    created: list[str] = []
    updated: list[str] = []

    paths = sorted([*templates_dir.rglob("*.yaml"), *templates_dir.rglob("*.yml")])
    for path in paths:
        data = _read_definition(path)
        if data is None:
            continue

        tpl_id = str(data["id"])
        try:
            definition = TemplateCreate.model_validate(data)
        except ValueError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            continue

        values = _column_values(definition.model_dump(exclude={"is_default", "created_by"}))
        existing = await db.get(QuotationTemplate, tpl_id)
        if existing:
            changed = False
            for field, value in values.items():
                if getattr(existing, field) != value:
                    setattr(existing, field, value)
                    changed = True
            if changed:
                existing.version = existing.version + 1
                updated.append(tpl_id)
        else:
            if definition.is_default:
                await _clear_other_defaults(db, definition.scope, keep_id=None)
            db.add(
                QuotationTemplate(
                    id=tpl_id,
                    is_default=definition.is_default,
                    is_active=True,
                    version=1,
                    created_by="sync",
                    **values,
                )
            )
            created.append(tpl_id)

    if created or updated:
        await db.commit()

    if created:
        logger.info("Synced %d new templates from disk: %s", len(created), created)
    if updated:
        logger.info("Updated %d templates from disk: %s", len(updated), updated)

    return {"created": created, "updated": updated}
