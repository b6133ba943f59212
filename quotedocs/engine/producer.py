"""Document producer: rendered HTML -> delivery artifacts (HTML, PDF, batch PDF).

PDF conversion goes through a :class:`PdfEngine`. The shipped engine drives
headless Chromium with Playwright; one browser is started per single-document
call or per batch and is always shut down again, whatever happens.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

import jinja2
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from quotedocs.config import settings
from quotedocs.engine.errors import DocumentProductionFailure

logger = logging.getLogger(__name__)


class Quality(StrEnum):
    DRAFT = "DRAFT"
    STANDARD = "STANDARD"
    HIGH = "HIGH"
    PREMIUM = "PREMIUM"


# quality -> (device scale factor, print backgrounds)
QUALITY_PROFILES: dict[Quality, tuple[float, bool]] = {
    Quality.DRAFT: (1.0, False),
    Quality.STANDARD: (1.5, True),
    Quality.HIGH: (2.0, True),
    Quality.PREMIUM: (3.0, True),
}

PAGE_FORMATS = {"A4": "A4", "A5": "A5", "LETTER": "Letter", "LEGAL": "Legal"}

DEFAULT_PDF_MARGINS = {"top": "20mm", "right": "20mm", "bottom": "20mm", "left": "20mm"}
# Margins that leave no room for a header/footer band: the PDF default and the stock template setting
NARROW_MARGINS = {"20mm", "20px"}


class _Options(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PdfOptions(_Options):
    """Closed set of PDF settings; unknown keys are dropped silently."""

    format: str = "A4"
    orientation: Literal["portrait", "landscape"] = "portrait"
    quality: Quality = Quality.STANDARD
    margins: dict[str, str] = DEFAULT_PDF_MARGINS
    display_header_footer: bool = False
    print_background: bool = True
    header_template: str = ""
    footer_template: str = ""
    timeout_seconds: float | None = None

    @field_validator("format", mode="before")
    @classmethod
    def _known_format(cls, v: Any) -> str:
        return PAGE_FORMATS.get(str(v or "A4").upper(), "A4")

    @field_validator("orientation", mode="before")
    @classmethod
    def _lower_orientation(cls, v: Any) -> Any:
        return str(v).lower() if v else "portrait"

    @field_validator("quality", mode="before")
    @classmethod
    def _known_quality(cls, v: Any) -> Any:
        v = str(v or "STANDARD").upper()
        return v if v in Quality.__members__ else Quality.STANDARD

    @field_validator("margins", mode="before")
    @classmethod
    def _fill_margins(cls, v: Any) -> dict[str, str]:
        if not isinstance(v, dict):
            return dict(DEFAULT_PDF_MARGINS)
        margins = dict(DEFAULT_PDF_MARGINS)
        for side in margins:
            if v.get(side) not in (None, ""):
                value = v[side]
                margins[side] = f"{value}px" if isinstance(value, (int, float)) else str(value)
        return margins

    @property
    def device_scale_factor(self) -> float:
        return QUALITY_PROFILES[self.quality][0]

    def pdf_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for Playwright's ``page.pdf``."""
        backgrounds = self.print_background and QUALITY_PROFILES[self.quality][1]
        kwargs: dict[str, Any] = {
            "format": self.format,
            "landscape": self.orientation == "landscape",
            "margin": dict(self.margins),
            "print_background": backgrounds,
            "display_header_footer": self.display_header_footer,
            "prefer_css_page_size": True,
        }
        if self.display_header_footer:
            kwargs["header_template"] = self.header_template or "<span></span>"
            kwargs["footer_template"] = self.footer_template or "<span></span>"
        return kwargs


class WatermarkOptions(_Options):
    text: str = "CONFIDENTIAL"
    opacity: float = 0.1
    font_size: int = 48
    rotation: int = 45
    color: str = "#000000"


class HeaderFooterOptions(_Options):
    header: str | None = None
    footer: str | None = None


# ── HTML preparation ────────────────────────────────────────────────

_snippets = jinja2.Environment(autoescape=True)

WATERMARK_TEMPLATE = _snippets.from_string(
    '<div class="watermark" style="position: fixed; top: 50%; left: 50%; '
    "transform: translate(-50%, -50%) rotate({{ w.rotation }}deg); font-size: {{ w.font_size }}px; "
    "color: {{ w.color }}; opacity: {{ w.opacity }}; z-index: 1000; pointer-events: none; "
    'font-weight: bold; white-space: nowrap;">{{ w.text }}</div>'
)

DEFAULT_HEADER = _snippets.from_string(
    '<div style="font-size: 10px; color: #666; text-align: center; width: 100%; margin-top: 10px;">'
    "<span>{{ company_name }}</span></div>"
)

DEFAULT_FOOTER = (
    '<div style="font-size: 10px; color: #666; text-align: center; width: 100%; margin-bottom: 10px;">'
    'Page <span class="pageNumber"></span> of <span class="totalPages"></span></div>'
)

PDF_CSS = _snippets.from_string(
    """
@page { size: {{ o.format }} {{ o.orientation }}; margin: {{ o.margins.top }} {{ o.margins.right }} {{ o.margins.bottom }} {{ o.margins.left }}; }
@media print {
  * { -webkit-print-color-adjust: exact !important; print-color-adjust: exact !important; }
  body { margin: 0; padding: 0; background: white !important; }
  .page-break-before { page-break-before: always; }
  .page-break-after { page-break-after: always; }
  .keep-together, .element-totals, .element-terms, .element-signature { page-break-inside: avoid; }
  p { orphans: 3; widows: 3; }
  .quotation-container { width: 100% !important; max-width: none !important; margin: 0 !important; padding: 0 !important; box-shadow: none !important; }
}
"""
)

_BODY_RE = re.compile(r"<body[^>]*>", re.IGNORECASE)


def inject_pdf_css(html: str, options: PdfOptions) -> str:
    """Add print CSS (colour adjust, page breaks, @page size) just before ``</head>``."""
    style = f"<style>{PDF_CSS.render(o=options)}</style>"
    index = html.lower().find("</head>")
    if index == -1:
        return f"<!DOCTYPE html><html><head><meta charset=\"UTF-8\">{style}</head><body>{html}</body></html>"
    return html[:index] + style + html[index:]


def add_watermark(html: str, watermark: WatermarkOptions) -> str:
    overlay = WATERMARK_TEMPLATE.render(w=watermark)
    match = _BODY_RE.search(html)
    if not match:
        return overlay + html
    return html[: match.end()] + overlay + html[match.end() :]


def suggested_filename(number: str | None, filename: str | None = None) -> str:
    if filename:
        name = filename if filename.lower().endswith(".pdf") else f"{filename}.pdf"
    else:
        name = f"ASP_Quotation_{number or 'Draft'}.pdf"
    return re.sub(r"[^A-Za-z0-9_.-]", "_", name)


# ── Engines ─────────────────────────────────────────────────────────


class PdfEngine(ABC):
    """Contract for an HTML-to-PDF backend."""

    @abstractmethod
    async def start(self) -> None:
        """Acquire the underlying renderer (browser process, service connection)."""

    @abstractmethod
    async def render_pdf(self, html: str, options: PdfOptions) -> bytes:
        """Convert one complete HTML document to PDF bytes."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release everything acquired by :meth:`start`. Safe to call more than once."""


class PlaywrightPdfEngine(PdfEngine):
    """Headless Chromium through Playwright's async API."""

    def __init__(self, *, headless: bool | None = None, args: list[str] | None = None):
        self.headless = settings.pdf_headless if headless is None else headless
        self.args = list(settings.pdf_browser_args if args is None else args)
        self._playwright = None
        self._browser = None

    async def start(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless, args=self.args)
        logger.debug("Chromium started (headless=%s)", self.headless)

    async def render_pdf(self, html: str, options: PdfOptions) -> bytes:
        if self._browser is None:
            raise RuntimeError("PDF engine not started")
        page = await self._browser.new_page(device_scale_factor=options.device_scale_factor)
        try:
            await page.set_content(html, wait_until="networkidle")
            await page.emulate_media(media="print")
            return await page.pdf(**options.pdf_kwargs())
        finally:
            await page.close()

    async def cleanup(self) -> None:
        browser, self._browser = self._browser, None
        pw, self._playwright = self._playwright, None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if pw is not None:
                await pw.stop()
                logger.debug("Chromium stopped")


# ── Producer ────────────────────────────────────────────────────────

HtmlSource = str | Callable[[], "str | Awaitable[str]"]


@dataclass
class BatchItemOutcome:
    index: int
    success: bool
    filename: str | None = None
    pdf: bytes | None = None
    error: str | None = None

    @property
    def size(self) -> int:
        return len(self.pdf) if self.pdf else 0


@dataclass
class BatchSummary:
    total: int
    successful: int
    failed: int
    results: list[BatchItemOutcome] = field(default_factory=list)


@dataclass
class BatchJob:
    """One batch entry: HTML (or a callable producing it) plus its per-item settings."""

    source: HtmlSource
    filename: str | None = None
    options: PdfOptions | None = None
    watermark: WatermarkOptions | None = None
    header_footer: HeaderFooterOptions | None = None


class DocumentProducer:
    def __init__(
        self,
        engine_factory: Callable[[], PdfEngine] | None = None,
        *,
        timeout_seconds: float | None = None,
        concurrency: int | None = None,
        company_name: str | None = None,
    ):
        self.engine_factory = engine_factory or PlaywrightPdfEngine
        self.timeout_seconds = timeout_seconds or settings.pdf_timeout_seconds
        self.concurrency = max(1, concurrency or settings.batch_concurrency)
        self.company_name = company_name or settings.company_name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PdfEngine]:
        """One engine for the duration of the block; released on every exit path."""
        engine = self.engine_factory()
        try:
            try:
                await engine.start()
            except Exception as exc:
                raise DocumentProductionFailure(f"PDF engine failed to start: {exc}") from exc
            yield engine
        finally:
            try:
                await engine.cleanup()
            except Exception:
                logger.exception("PDF engine cleanup failed")

    # ── Option shaping ──

    def html(self, html: str) -> str:
        return html

    def header_footer_options(
        self, options: PdfOptions | None, header_footer: HeaderFooterOptions | None
    ) -> PdfOptions:
        options = options or PdfOptions()
        header_footer = header_footer or HeaderFooterOptions()
        margins = dict(options.margins)
        if margins["top"] in NARROW_MARGINS:
            margins["top"] = "80px"
        if margins["bottom"] in NARROW_MARGINS:
            margins["bottom"] = "80px"
        return options.model_copy(
            update={
                "display_header_footer": True,
                "header_template": header_footer.header
                or DEFAULT_HEADER.render(company_name=self.company_name),
                "footer_template": header_footer.footer or DEFAULT_FOOTER,
                "margins": margins,
            }
        )

    def _prepare(self, html: str, job: BatchJob) -> tuple[str, PdfOptions]:
        options = job.options or PdfOptions()
        if job.header_footer is not None:
            options = self.header_footer_options(options, job.header_footer)
        if job.watermark is not None:
            html = add_watermark(html, job.watermark)
        return inject_pdf_css(html, options), options

    async def _convert(self, engine: PdfEngine, html: str, options: PdfOptions) -> bytes:
        timeout = options.timeout_seconds or self.timeout_seconds
        try:
            return await asyncio.wait_for(engine.render_pdf(html, options), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise DocumentProductionFailure(f"PDF generation timed out after {timeout:g}s") from exc
        except DocumentProductionFailure:
            raise
        except Exception as exc:
            raise DocumentProductionFailure(f"PDF generation failed: {exc}") from exc

    # ── Single documents ──

    async def pdf(self, html: str, options: PdfOptions | None = None) -> bytes:
        return await self._single(html, BatchJob(source=html, options=options))

    async def pdf_with_watermark(
        self,
        html: str,
        watermark: WatermarkOptions | None = None,
        options: PdfOptions | None = None,
    ) -> bytes:
        job = BatchJob(source=html, options=options, watermark=watermark or WatermarkOptions())
        return await self._single(html, job)

    async def pdf_with_header_footer(
        self,
        html: str,
        header_footer: HeaderFooterOptions | None = None,
        options: PdfOptions | None = None,
    ) -> bytes:
        job = BatchJob(source=html, options=options, header_footer=header_footer or HeaderFooterOptions())
        return await self._single(html, job)

    async def produce(self, html: str, job: BatchJob) -> bytes:
        """Single PDF honouring whatever watermark/header-footer settings ``job`` carries."""
        return await self._single(html, job)

    async def _single(self, html: str, job: BatchJob) -> bytes:
        prepared, options = self._prepare(html, job)
        async with self.session() as engine:
            pdf = await self._convert(engine, prepared, options)
        logger.info("Generated PDF (%d bytes)", len(pdf))
        return pdf

    # ── Batch ──

    async def batch(self, jobs: Sequence[BatchJob | HtmlSource]) -> BatchSummary:
        """Produce one PDF per job. A failing item is recorded, never fatal to its siblings."""
        jobs = [job if isinstance(job, BatchJob) else BatchJob(source=job) for job in jobs]
        if not jobs:
            return BatchSummary(total=0, successful=0, failed=0)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(index: int, job: BatchJob, engine: PdfEngine) -> BatchItemOutcome:
            async with semaphore:
                try:
                    html = job.source() if callable(job.source) else job.source
                    if inspect.isawaitable(html):
                        html = await html
                    prepared, options = self._prepare(html, job)
                    pdf = await self._convert(engine, prepared, options)
                except Exception as exc:
                    logger.warning("Batch item %d failed: %s", index, exc)
                    return BatchItemOutcome(index=index, success=False, filename=job.filename, error=str(exc))
                return BatchItemOutcome(index=index, success=True, filename=job.filename, pdf=pdf)

        try:
            async with self.session() as engine:
                results = await asyncio.gather(*(run(i, job, engine) for i, job in enumerate(jobs)))
        except DocumentProductionFailure as exc:
            logger.warning("Batch aborted before any item ran: %s", exc)
            results = [
                BatchItemOutcome(index=i, success=False, filename=job.filename, error=str(exc))
                for i, job in enumerate(jobs)
            ]

        results = sorted(results, key=lambda r: r.index)
        successful = sum(1 for r in results if r.success)
        summary = BatchSummary(
            total=len(results), successful=successful, failed=len(results) - successful, results=results
        )
        logger.info("Batch finished: %d/%d succeeded", summary.successful, summary.total)
        return summary
