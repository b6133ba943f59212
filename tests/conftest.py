"""Shared fixtures: in-memory template store, fake PDF engine, quotation records."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import quotedocs.models  # noqa: F401
from quotedocs.database import Base, get_db
from quotedocs.engine.producer import DocumentProducer, PdfEngine, PdfOptions
from quotedocs.main import app
from quotedocs.services.document_service import get_producer
from quotedocs.services.quotation_source import InMemoryQuotationSource, get_quotation_source

ASP_QUOTATION = {
    "id": "q-1",
    "quotation_number": "Q-1",
    "created_at": "2026-10-19",
    "number_of_days": 10,
    "customer_contact": {
        "name": "Ravi Kumar",
        "company_name": "Kumar Infra Projects",
        "address": "Pune",
        "phone": "+91 98220 12345",
        "email": "ravi@kumarinfra.in",
    },
    "items": [{"description": "Mobile Crane", "quantity": 1, "duration": "10 days", "rate": 10000}],
    "total_rent": "₹10,000",
    "gst_amount": "₹1,800",
    "total_cost": "₹11,800",
}


class FakePdfEngine(PdfEngine):
    """Records what it was asked to render; fails for HTML containing ``fail_marker``."""

    def __init__(self, *, fail_marker: str | None = None, fail_start: bool = False):
        self.fail_marker = fail_marker
        self.fail_start = fail_start
        self.started = 0
        self.cleaned = 0
        self.rendered: list[tuple[str, PdfOptions]] = []

    async def start(self) -> None:
        self.started += 1
        if self.fail_start:
            raise RuntimeError("chromium missing")

    async def render_pdf(self, html: str, options: PdfOptions) -> bytes:
        if self.fail_marker and self.fail_marker in html:
            raise RuntimeError("page crashed")
        self.rendered.append((html, options))
        return b"%PDF-1.4\n% quotedocs test\n%%EOF"

    async def cleanup(self) -> None:
        self.cleaned += 1


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def pdf_engine() -> FakePdfEngine:
    return FakePdfEngine()


@pytest.fixture
def producer(pdf_engine) -> DocumentProducer:
    return DocumentProducer(lambda: pdf_engine, timeout_seconds=5, concurrency=2, company_name="ASP Cranes")


@pytest.fixture
def quotation_source() -> InMemoryQuotationSource:
    return InMemoryQuotationSource({"q-1": ASP_QUOTATION})


@pytest_asyncio.fixture
async def client(session_factory, producer, quotation_source) -> AsyncIterator[AsyncClient]:
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_producer] = lambda: producer
    app.dependency_overrides[get_quotation_source] = lambda: quotation_source
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
