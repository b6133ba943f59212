"""Ad-hoc PDF production: single documents and batches."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from quotedocs.database import get_db
from quotedocs.engine.producer import DocumentProducer
from quotedocs.schemas.document import BatchRequest, BatchResult, PdfRequest
from quotedocs.services import document_service
from quotedocs.services.document_service import get_producer
from quotedocs.services.quotation_source import QuotationSource, get_quotation_source

router = APIRouter()


@router.post("/pdf")
async def generate_pdf(
    request: PdfRequest,
    db: AsyncSession = Depends(get_db),
    source: QuotationSource = Depends(get_quotation_source),
    producer: DocumentProducer = Depends(get_producer),
):
    pdf, filename = await document_service.produce_pdf(db, source, producer, request)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/batch", response_model=BatchResult)
async def generate_batch(
    request: BatchRequest,
    db: AsyncSession = Depends(get_db),
    source: QuotationSource = Depends(get_quotation_source),
    producer: DocumentProducer = Depends(get_producer),
):
    """Produce every item; failures are reported per item and never fail the request."""
    return await document_service.produce_batch(db, source, producer, request)
