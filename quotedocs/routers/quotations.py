"""Render stored quotations: HTML preview and PDF download."""

from typing import Literal

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.database import get_db
from quotedocs.engine.producer import DocumentProducer
from quotedocs.schemas.document import PdfRequest
from quotedocs.services import document_service
from quotedocs.services.document_service import get_producer
from quotedocs.services.quotation_source import QuotationSource, get_quotation_source

router = APIRouter()


@router.get("/{quotation_id}/preview")
async def preview_quotation(
    quotation_id: str,
    template_id: str | None = None,
    format: Literal["html", "json"] = "html",
    db: AsyncSession = Depends(get_db),
    source: QuotationSource = Depends(get_quotation_source),
):
    document, _ = await document_service.render_quotation(
        db, source, quotation_id=quotation_id, template_id=template_id, preview=True
    )
    if format == "json":
        return document
    return HTMLResponse(document.html)


@router.get("/{quotation_id}/pdf")
async def download_quotation_pdf(
    quotation_id: str,
    template_id: str | None = None,
    db: AsyncSession = Depends(get_db),
    source: QuotationSource = Depends(get_quotation_source),
    producer: DocumentProducer = Depends(get_producer),
):
    request = PdfRequest(quotation_id=quotation_id, template_id=template_id)
    pdf, filename = await document_service.produce_pdf(db, source, producer, request)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
