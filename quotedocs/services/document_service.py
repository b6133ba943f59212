"""Document orchestration: resolve template + data, render, hand off to the producer."""

from __future__ import annotations

import base64
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.engine.builder import sample_context
from quotedocs.engine.model import RenderContext, RenderedDocument, Template
from quotedocs.engine.producer import (
    BatchJob,
    DocumentProducer,
    HeaderFooterOptions,
    PdfOptions,
    WatermarkOptions,
    suggested_filename,
)
from quotedocs.engine.renderer import render_document
from quotedocs.schemas.document import BatchItemResult, BatchRequest, BatchResult, PdfRequest
from quotedocs.schemas.template import PreviewRequest
from quotedocs.services import template_service
from quotedocs.services.quotation_source import QuotationSource, build_render_context

logger = logging.getLogger(__name__)


class QuotationNotFound(LookupError):
    def __init__(self, quotation_id: str) -> None:
        super().__init__(f"Quotation {quotation_id!r} not found")
        self.quotation_id = quotation_id


async def load_context(
    source: QuotationSource,
    quotation_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> RenderContext:
    if quotation_id:
        context = await source.get_context(quotation_id)
        if context is None:
            raise QuotationNotFound(quotation_id)
        return context
    return build_render_context(data or {})


async def render_quotation(
    db: AsyncSession,
    source: QuotationSource,
    *,
    quotation_id: str | None = None,
    data: dict[str, Any] | None = None,
    template_id: str | None = None,
    preview: bool = False,
) -> tuple[RenderedDocument, RenderContext]:
    context = await load_context(source, quotation_id, data)
    template = await template_service.resolve_template(db, template_id)
    document = render_document(template, context, preview=preview)
    logger.info(
        "Rendered quotation %s with template %s (%s)",
        context.quotation.get("number"), template.id, template.name,
    )
    return document, context


async def preview_adhoc(db: AsyncSession, body: PreviewRequest) -> RenderedDocument:
    """Preview an unsaved template, a stored template or the default, with sample data unless given."""
    if body.template is not None:
        template = Template.model_validate(body.template)
    else:
        template = await template_service.resolve_template(db, body.template_id)
    context = RenderContext.model_validate(body.data) if body.data is not None else sample_context()
    return render_document(template, context, preview=True)


# ── PDF ─────────────────────────────────────────────────────────────


def _watermark(value: dict[str, Any] | bool | None) -> WatermarkOptions | None:
    if value is None or value is False:
        return None
    return WatermarkOptions() if value is True else WatermarkOptions.model_validate(value)


def _header_footer(value: dict[str, Any] | bool | None) -> HeaderFooterOptions | None:
    if value is None or value is False:
        return None
    return HeaderFooterOptions() if value is True else HeaderFooterOptions.model_validate(value)


def _pdf_options(template: Template, *layers: dict[str, Any]) -> PdfOptions:
    """Template page settings, overridden by request options (later layers win)."""
    base: dict[str, Any] = {}
    page = template.settings
    if page.get("pageSize"):
        base["format"] = page["pageSize"]
    if page.get("orientation"):
        base["orientation"] = page["orientation"]
    if isinstance(page.get("margins"), dict):
        base["margins"] = page["margins"]
    merged = base
    for layer in layers:
        layer = dict(layer or {})
        # Margins merge per side so one override keeps the template's other sides
        if isinstance(layer.get("margins"), dict) and isinstance(merged.get("margins"), dict):
            layer["margins"] = {**merged["margins"], **layer["margins"]}
        merged = {**merged, **layer}
    return PdfOptions.model_validate(merged)


def _job(request: PdfRequest, template: Template, html: str, number: str, batch_options: dict[str, Any]) -> BatchJob:
    return BatchJob(
        source=html,
        filename=suggested_filename(number, request.filename),
        options=_pdf_options(template, batch_options, request.options),
        watermark=_watermark(request.watermark),
        header_footer=_header_footer(request.header_footer),
    )


async def produce_pdf(
    db: AsyncSession,
    source: QuotationSource,
    producer: DocumentProducer,
    request: PdfRequest,
) -> tuple[bytes, str]:
    """Render and convert one document; returns ``(pdf, filename)``."""
    context = await load_context(source, request.quotation_id, request.data)
    template = await template_service.resolve_template(db, request.template_id)
    html = render_document(template, context).html
    job = _job(request, template, html, str(context.quotation.get("number") or ""), {})
    pdf = await producer.produce(html, job)
    return pdf, job.filename or suggested_filename(None)


def _failing(exc: Exception):
    def source() -> str:
        raise exc

    return source


async def produce_batch(
    db: AsyncSession,
    source: QuotationSource,
    producer: DocumentProducer,
    request: BatchRequest,
) -> BatchResult:
    """Render every item up front (store access stays sequential), then convert concurrently."""
    jobs: list[BatchJob] = []
    for index, raw in enumerate(request.items):
        try:
            item = PdfRequest.model_validate(raw)
            context = await load_context(source, item.quotation_id, item.data)
            template = await template_service.resolve_template(db, item.template_id)
            html = render_document(template, context).html
            number = str(context.quotation.get("number") or index + 1)
            jobs.append(_job(item, template, html, number, request.options))
        except (ValidationError, LookupError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Batch item %d could not be prepared: %s", index, exc)
            filename = raw.get("filename") if isinstance(raw, dict) else None
            jobs.append(BatchJob(source=_failing(exc), filename=filename))

    summary = await producer.batch(jobs)
    return BatchResult(
        total=summary.total,
        successful=summary.successful,
        failed=summary.failed,
        results=[
            BatchItemResult(
                index=outcome.index,
                success=outcome.success,
                filename=outcome.filename,
                size=outcome.size,
                content_base64=base64.b64encode(outcome.pdf).decode()
                if outcome.pdf and request.include_content
                else None,
                error=outcome.error,
            )
            for outcome in summary.results
        ],
    )


def get_producer() -> DocumentProducer:
    """FastAPI dependency; overridden in tests with a fake PDF engine."""
    return DocumentProducer()
