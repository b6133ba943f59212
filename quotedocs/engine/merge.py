"""Placeholder merge engine.

Placeholders are ``{{ dotted.path }}``: identifiers and dots only, never
expressions. A :class:`Lookup` is built once per render by flattening the
render context into a table of dotted keys; anything not in the table is
resolved by walking the context, and whatever is still missing resolves to
the vocabulary default instead of failing.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from quotedocs.engine.elements import ColumnSpec, TableContent
from quotedocs.engine.model import RenderContext

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_]\w*(?:\.\w+)*)\s*\}\}")

# Quotation identity fields render as N/A when absent; everything else is blank
NA_PATHS = frozenset(
    {
        "quotation.id",
        "quotation.number",
        "quotation.date",
        "quotation.validUntil",
    }
)

VOCABULARY: tuple[str, ...] = (
    "company.name",
    "company.address",
    "company.phone",
    "company.email",
    "company.website",
    "client.name",
    "client.company",
    "client.address",
    "client.phone",
    "client.email",
    "quotation.id",
    "quotation.number",
    "quotation.date",
    "quotation.validUntil",
    "quotation.machineType",
    "quotation.duration",
    "quotation.paymentTerms",
    "quotation.terms",
    "totals.subtotal",
    "totals.discount",
    "totals.tax",
    "totals.total",
    "totals.workingCost",
    "totals.mobDemobCost",
    "totals.foodAccomCost",
    "tax.rate",
)

ROW_PLACEHOLDERS: tuple[str, ...] = (
    "item_no",
    "item_name",
    "item_description",
    "item_capacity",
    "item_quantity",
    "item_unit",
    "item_duration",
    "item_rate",
    "item_amount",
)

_ALIASED_BUCKETS = {"client": "customer", "customer": "client"}

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def default_for(path: str) -> str:
    return "N/A" if path in NA_PATHS else ""


# ── Formatting ──────────────────────────────────────────────────────


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    if isinstance(value, str):
        try:
            return Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return None
    return None


def _indian_grouping(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail


def format_currency(amount: Any, symbol: str = "₹") -> str:
    """Format ``amount`` the Indian way with no decimals: ``₹12,34,567``.

    Strings that are not numbers (``"₹10,000"``, ``"On request"``) come back
    unchanged, so already-formatted values pass through.
    """
    if amount is None:
        return ""
    value = _to_decimal(amount)
    if value is None or not value.is_finite():
        return str(amount)
    rounded = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{symbol}{_indian_grouping(str(abs(int(rounded))))}"


def format_number(value: Any) -> str:
    number = _to_decimal(value)
    if number is None or not number.is_finite():
        return stringify(value)
    if number == number.to_integral_value():
        sign = "-" if number < 0 else ""
        return sign + _indian_grouping(str(abs(int(number))))
    return str(number)


def format_date(value: Any) -> str:
    """Long-form date, ``19 October 2026``. Unparseable strings are returned as-is."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        text = value.strip()
        try:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                value = date.fromisoformat(text[:10])
            except ValueError:
                return value
    if isinstance(value, (date, datetime)):
        return f"{value.day} {_MONTHS[value.month - 1]} {value.year}"
    return str(value)


def stringify(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, tuple)):
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return format_date(value)
    return str(value)


def parse_amount(value: Any) -> float | None:
    """Numeric value of ``value``, tolerating currency symbols and grouping."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


# ── Lookup ──────────────────────────────────────────────────────────


def flatten(data: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings/lists into ``{"a.b.0.c": leaf}``."""
    flat: dict[str, Any] = {}
    if isinstance(data, Mapping):
        pairs = ((str(k), v) for k, v in data.items())
    elif isinstance(data, (list, tuple)):
        pairs = ((str(i), v) for i, v in enumerate(data))
    else:
        return {prefix: data} if prefix else {}
    for key, value in pairs:
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, (Mapping, list, tuple)):
            flat.update(flatten(value, path))
        else:
            flat[path] = value
    return flat


def traverse(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


class Lookup:
    """Resolves placeholder paths against one render context."""

    def __init__(self, context: RenderContext | Mapping[str, Any], currency_symbol: str = "₹"):
        if isinstance(context, RenderContext):
            data = context.as_mapping()
        else:
            data = RenderContext.model_validate(dict(context)).as_mapping()
        self.data: dict[str, Any] = data
        self.currency_symbol = currency_symbol
        self.table: dict[str, str] = {}
        for path, value in flatten(data).items():
            self.table[path] = self._format(path, value)
        # client.* and customer.* answer for each other
        for path, value in list(self.table.items()):
            bucket, _, rest = path.partition(".")
            alias = _ALIASED_BUCKETS.get(bucket)
            if alias and rest:
                self.table.setdefault(f"{alias}.{rest}", value)

    def _format(self, path: str, value: Any) -> str:
        if path.startswith("totals.") and _to_decimal(value) is not None and not isinstance(value, str):
            return format_currency(value, self.currency_symbol)
        return stringify(value)

    def raw(self, path: str) -> Any:
        value = traverse(self.data, path)
        if value is None:
            bucket, _, rest = path.partition(".")
            alias = _ALIASED_BUCKETS.get(bucket)
            if alias and rest:
                value = traverse(self.data, f"{alias}.{rest}")
        return value

    def resolve(self, path: str) -> str:
        if path in self.table and self.table[path] != "":
            return self.table[path]
        value = self.raw(path)
        text = self._format(path, value) if value is not None else ""
        return text if text != "" else default_for(path)

    def merge(self, text: Any) -> str:
        """Substitute every placeholder in ``text``; non-strings are stringified first."""
        if text is None:
            return ""
        if not isinstance(text, str):
            return stringify(text)
        return PLACEHOLDER_RE.sub(lambda m: self.resolve(m.group(1)), text)

    def for_row(self, item: Mapping[str, Any], index: int) -> RowLookup:
        return RowLookup(self, item, index)


class RowLookup:
    """Row-scoped view for table cells: ``item_*`` and ``item.<field>`` first, then the document."""

    def __init__(self, parent: Lookup, item: Mapping[str, Any], index: int):
        self.parent = parent
        self.item = item if isinstance(item, Mapping) else {}
        self.index = index
        self.row = row_values(self.item, index, parent.currency_symbol)

    def resolve(self, path: str) -> str:
        if path in self.row:
            return self.row[path]
        if path.startswith("item."):
            return stringify(traverse(self.item, path[5:]))
        return self.parent.resolve(path)

    def merge(self, text: Any) -> str:
        if text is None:
            return ""
        if not isinstance(text, str):
            return stringify(text)
        return PLACEHOLDER_RE.sub(lambda m: self.resolve(m.group(1)), text)


def row_values(item: Mapping[str, Any], index: int, symbol: str = "₹") -> dict[str, str]:
    def money(key: str) -> str:
        value = item.get(key)
        return format_currency(value, symbol) if value is not None else ""

    name = item.get("name") or item.get("description")
    return {
        "item_no": stringify(item.get("no") or index + 1),
        "item_name": stringify(name),
        "item_description": stringify(item.get("description") or item.get("name")),
        "item_capacity": stringify(item.get("capacity")),
        "item_quantity": stringify(item.get("quantity")),
        "item_unit": stringify(item.get("unit")),
        "item_duration": stringify(item.get("duration")),
        "item_rate": money("rate"),
        "item_amount": money("amount"),
    }


# ── Show-if ─────────────────────────────────────────────────────────


def _positive(value: Any) -> bool:
    amount = parse_amount(value)
    return amount is not None and amount > 0


def should_show(flag: str | None, lookup: Lookup) -> bool:
    """Evaluate a totals-row flag: always, never, hasDiscount, hasTax or a dotted path."""
    if not flag or flag == "always":
        return True
    if flag == "never":
        return False
    if flag == "hasDiscount":
        return _positive(lookup.raw("totals.discount"))
    if flag == "hasTax":
        return _positive(lookup.raw("totals.tax"))
    value = lookup.raw(flag)
    if not value:
        return False
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value > 0
    return True


# ── Tables ──────────────────────────────────────────────────────────

DEFAULT_ITEM_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec(key="no", label="S.No.", width="5%", alignment="center"),
    ColumnSpec(key="description", label="Description/Equipment Name", width="25%"),
    ColumnSpec(key="capacity", label="Capacity/Specifications", width="12%", alignment="center"),
    ColumnSpec(key="jobType", label="Job Type", width="8%", alignment="center"),
    ColumnSpec(key="quantity", label="Quantity", width="8%", alignment="center"),
    ColumnSpec(key="duration", label="Duration/Days", width="10%", alignment="center"),
    ColumnSpec(key="rate", label="Rate/Day", width="10%", alignment="right", format="currency"),
    ColumnSpec(key="rental", label="Total Rental", width="12%", alignment="right", format="currency"),
    ColumnSpec(key="mobilization", label="Mobilization", width="10%", alignment="right", format="currency"),
    ColumnSpec(key="demobilization", label="Demobilization", width="10%", alignment="right", format="currency"),
    ColumnSpec(key="amount", label="Total Amount", width="12%", alignment="right", format="currency"),
)

_CURRENCY_KEYS = frozenset({"rate", "rental", "mobilization", "demobilization", "amount"})


def item_columns(content: TableContent) -> list[ColumnSpec]:
    if isinstance(content.columns, dict):
        return [col for col in DEFAULT_ITEM_COLUMNS if content.columns.get(col.key) is not False]
    if content.columns:
        return list(content.columns)
    return list(DEFAULT_ITEM_COLUMNS)


def format_cell(value: Any, fmt: str | None, symbol: str = "₹") -> str:
    if value is None or value == "":
        return ""
    if fmt == "currency":
        return format_currency(value, symbol)
    if fmt == "number":
        return format_number(value)
    if fmt == "date":
        return format_date(value)
    return stringify(value)


def item_rows(content: TableContent, lookup: Lookup) -> tuple[list[ColumnSpec], list[list[str]]]:
    """Cells for an items table: one row per context item, one cell per column."""
    columns = item_columns(content)
    items = lookup.data.get("items") or []
    rows: list[list[str]] = []
    for index, item in enumerate(items):
        scope = lookup.for_row(item if isinstance(item, Mapping) else {}, index)
        cells = []
        for col in columns:
            if col.value:
                cell = scope.merge(col.value)
            else:
                raw = scope.item.get(col.key)
                if raw is None and col.key == "no":
                    raw = index + 1
                fmt = col.format or ("currency" if col.key in _CURRENCY_KEYS and not isinstance(raw, str) else None)
                cell = format_cell(raw, fmt, lookup.currency_symbol)
            cells.append(cell or "-")
        rows.append(cells)
    return columns, rows


def generic_rows(content: TableContent, lookup: Lookup) -> tuple[list[ColumnSpec], list[list[str]]]:
    """Cells for a generic table: ``rows`` as authored, every cell merged."""
    columns = list(content.columns) if isinstance(content.columns, list) else []
    rows = [[lookup.merge(cell) for cell in row] for row in content.rows]
    width = max([len(columns)] + [len(row) for row in rows])
    widths = content.column_widths
    if width > len(columns):
        columns += [ColumnSpec() for _ in range(width - len(columns))]
    columns = [
        col.model_copy(update={"width": widths[i]}) if i < len(widths) and widths[i] else col
        for i, col in enumerate(columns)
    ]
    return columns, rows
