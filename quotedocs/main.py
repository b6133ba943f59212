"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quotedocs.config import settings
from quotedocs.database import init_db
from quotedocs.engine.errors import DocumentProductionFailure, TemplateNotFound
from quotedocs.routers import documents, quotations, templates
from quotedocs.services.document_service import QuotationNotFound

# ── Logging setup ────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    # ── Sync disk templates into DB ──────────────────────────────
    try:
        from quotedocs.database import async_session
        from quotedocs.services.template_service import sync_templates_from_disk
        async with async_session() as session:
            result = await sync_templates_from_disk(session)
            if result["created"] or result["updated"]:
                logger.info("Template sync: %d created, %d updated",
                            len(result["created"]), len(result["updated"]))
    except Exception as exc:
        logger.warning("Template disk sync failed (non-fatal): %s", exc)

    logger.info("quotedocs ready (env=%s)", settings.env)
    yield


app = FastAPI(
    title="quotedocs",
    description="Quotation templates, HTML rendering and PDF production",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ────────────────────────────────────────────────────


@app.exception_handler(TemplateNotFound)
async def template_not_found(request: Request, exc: TemplateNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(QuotationNotFound)
async def quotation_not_found(request: Request, exc: QuotationNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DocumentProductionFailure)
async def production_failed(request: Request, exc: DocumentProductionFailure):
    logger.error("Document production failed for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"detail": "PDF generation failed", "error": str(exc)},
    )


# Mount routers
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(quotations.router, prefix="/api/quotations", tags=["quotations"])
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": "quotedocs", "env": settings.env}
