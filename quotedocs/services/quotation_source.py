"""Quotation data sources: raw quotation records -> render contexts.

The document engine never queries quotation persistence itself. A
:class:`QuotationSource` hands back the raw record and
:func:`build_render_context` maps it onto the placeholder vocabulary.
"""

from __future__ import annotations

import logging
import re
import zlib
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import yaml

from quotedocs.config import settings
from quotedocs.engine.merge import format_currency, format_date, parse_amount
from quotedocs.engine.model import RenderContext

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_TERMS = "50% advance, balance on completion"
DEFAULT_TAX_RATE = 18

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class QuotationSource(ABC):
    """Supplies quotation records by id."""

    @abstractmethod
    async def get_record(self, quotation_id: str) -> dict[str, Any] | None:
        """Return the raw quotation record, or None if there is no such quotation."""

    async def get_context(self, quotation_id: str) -> RenderContext | None:
        record = await self.get_record(quotation_id)
        if record is None:
            return None
        return build_render_context(record)


class YamlQuotationSource(QuotationSource):
    """One ``<id>.yaml`` file per quotation under a directory."""

    def __init__(self, directory: Path | None = None):
        self.directory = directory or settings.quotations_dir

    async def get_record(self, quotation_id: str) -> dict[str, Any] | None:
        if not _SAFE_ID_RE.match(quotation_id) or quotation_id.startswith("."):
            return None
        for suffix in (".yaml", ".yml"):
            path = self.directory / f"{quotation_id}{suffix}"
            if path.is_file():
                data = yaml.safe_load(path.read_text())
                if not isinstance(data, dict):
                    raise ValueError(f"{path} does not contain a quotation mapping")
                data.setdefault("id", quotation_id)
                logger.debug("Loaded quotation %s from %s", quotation_id, path)
                return data
        return None


class InMemoryQuotationSource(QuotationSource):
    def __init__(self, records: dict[str, dict[str, Any]] | None = None):
        self.records: dict[str, dict[str, Any]] = dict(records or {})

    def add(self, record: dict[str, Any]) -> None:
        self.records[str(record["id"])] = record

    async def get_record(self, quotation_id: str) -> dict[str, Any] | None:
        record = self.records.get(quotation_id)
        return {**record, "id": record.get("id", quotation_id)} if record else None


# ── Record mapping ──────────────────────────────────────────────────


def derive_quotation_number(quotation_id: str) -> str:
    """Stable display number for records that were never numbered."""
    return f"ASP-Q-{zlib.crc32(quotation_id.encode()) % 9999 + 1:03d}"


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(value.strip()[:10])
            except ValueError:
                return None
    return None


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _party(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    # A bare name (or any other scalar) stands in for the whole record
    if isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip():
        return {"name": str(value).strip()}
    return {}


def _client(record: dict[str, Any]) -> dict[str, Any]:
    customer = _party(record.get("customer"))
    contact = _party(record.get("customer_contact"))
    # Contact details captured on the quotation win over the customer master record
    return {
        "name": _first(contact.get("name"), customer.get("name"), record.get("customer_name")) or "",
        "company": _first(contact.get("company_name"), contact.get("company"), customer.get("company")) or "",
        "address": _first(contact.get("address"), customer.get("address"), record.get("address")) or "",
        "phone": _first(contact.get("phone"), customer.get("phone")) or "",
        "email": _first(contact.get("email"), customer.get("email")) or "",
    }


def _item(raw: dict[str, Any], index: int, record: dict[str, Any]) -> dict[str, Any]:
    quantity = _first(raw.get("quantity"), 1)
    rate = _first(raw.get("rate"), raw.get("base_rate"), raw.get("baseRate"))
    amount = raw.get("amount")
    if amount in (None, ""):
        qty, unit_rate = parse_amount(quantity), parse_amount(rate)
        amount = qty * unit_rate if qty is not None and unit_rate is not None else None
        if isinstance(amount, float) and amount.is_integer():
            amount = int(amount)
    days = record.get("number_of_days")
    item = {
        "no": index + 1,
        "description": _first(raw.get("description"), raw.get("name"), raw.get("equipment_name")) or "",
        "capacity": _first(raw.get("capacity"), raw.get("max_lifting_capacity")) or "",
        "jobType": _first(raw.get("jobType"), raw.get("job_type"), record.get("order_type")) or "",
        "quantity": quantity,
        "unit": raw.get("unit") or "",
        "duration": _first(raw.get("duration"), f"{days} days" if days else None) or "",
        "rate": rate,
        "rental": raw.get("rental"),
        "mobilization": raw.get("mobilization"),
        "demobilization": raw.get("demobilization"),
        "amount": amount,
    }
    for key, value in raw.items():
        item.setdefault(key, value)
    return item


def build_render_context(
    record: dict[str, Any],
    *,
    company: dict[str, Any] | None = None,
    today: date | None = None,
) -> RenderContext:
    """Map a raw quotation record onto the render context buckets."""
    quotation_id = str(record.get("id") or "")
    symbol = settings.currency_symbol

    issued = _as_date(_first(record.get("created_at"), record.get("date"))) or today or date.today()
    valid_until = _as_date(record.get("valid_until")) or issued + timedelta(
        days=settings.quotation_validity_days
    )
    days = record.get("number_of_days")

    raw_items = record.get("items") or record.get("selected_machines") or []
    items = [_item(raw, i, record) for i, raw in enumerate(raw_items) if isinstance(raw, dict)]

    def money(*keys: str) -> str:
        return format_currency(_first(*(record.get(k) for k in keys)) or 0, symbol)

    return RenderContext(
        company={**settings.company, **(company or {}), **_party(record.get("company"))},
        client=_client(record),
        quotation={
            "id": quotation_id,
            "number": _first(record.get("quotation_number"), record.get("number"))
            or derive_quotation_number(quotation_id),
            "date": format_date(issued),
            "validUntil": format_date(valid_until),
            "machineType": record.get("machine_type") or "",
            "duration": f"{days} days" if days else "",
            "paymentTerms": record.get("payment_terms") or DEFAULT_PAYMENT_TERMS,
            "terms": record.get("terms") or "",
        },
        items=items,
        totals={
            "subtotal": money("total_rent", "subtotal"),
            "discount": money("discount"),
            "tax": money("gst_amount", "tax"),
            "total": money("total_cost", "total"),
            "workingCost": money("working_cost"),
            "mobDemobCost": money("mob_demob_cost"),
            "foodAccomCost": money("food_accom_cost"),
        },
        tax={"rate": _first(record.get("gst_rate"), DEFAULT_TAX_RATE)},
    )


def get_quotation_source() -> QuotationSource:
    """FastAPI dependency for the configured quotation source."""
    return YamlQuotationSource(settings.quotations_dir)
