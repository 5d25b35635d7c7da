from __future__ import annotations

import textwrap
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from rms.domain.models import DEFAULT_RESTAURANT_NAME, DEFAULT_UNIT, SaleLineInput, Settings, Transaction
from rms.domain.money import format_money, format_quantity, to_decimal, to_money
from rms.services.receipt_pdf import render_pdf

ELLIPSIS = "..."


@dataclass(frozen=True)
class ReceiptLayout:
    """Fixed-width page geometry, in characters and lines."""

    name: str
    width: int
    lines_per_page: int
    qty_width: int
    value_width: int

    def __post_init__(self):
        if self.name_width < len(ELLIPSIS) + 1:
            raise ValueError("Layout leaves no room for item names.")
        if self.lines_per_page < 3:
            raise ValueError("A page needs at least 3 lines.")

    @property
    def name_width(self) -> int:
        return self.width - self.qty_width - self.value_width - 2


THERMAL_80MM = ReceiptLayout(name="thermal", width=42, lines_per_page=60, qty_width=10, value_width=14)
A4 = ReceiptLayout(name="a4", width=80, lines_per_page=66, qty_width=16, value_width=18)


@dataclass(frozen=True)
class ReceiptHeader:
    restaurant_name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    logo: Optional[bytes] = None


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    quantity: Decimal
    unit: str
    price: Decimal  # extended, not unit price


@dataclass(frozen=True)
class ReceiptDocument:
    receipt_number: str
    layout: ReceiptLayout
    pages: tuple[tuple[str, ...], ...]
    logo: Optional[bytes] = None

    @property
    def lines(self) -> list[str]:
        return [line for page in self.pages for line in page]

    @property
    def text(self) -> str:
        return "\n\f".join("\n".join(page) for page in self.pages) + "\n"

    def to_bytes(self, encoding: str = "utf-8") -> bytes:
        return self.text.encode(encoding, errors="replace")


def truncate(text: str, budget: int) -> str:
    if len(text) <= budget:
        return text
    return text[: budget - len(ELLIPSIS)] + ELLIPSIS


def render_receipt(
    header: ReceiptHeader,
    lines: Iterable[ReceiptLine],
    total,
    currency: str,
    receipt_number,
    date: str,
    time: str,
    footer: Optional[str] = None,
    layout: ReceiptLayout = THERMAL_80MM,
) -> ReceiptDocument:
    """Lay out a receipt as fixed-width text pages. No I/O."""
    w = layout.width
    rule = "-" * w
    body: list[str] = []

    for text in _wrap(header.restaurant_name or DEFAULT_RESTAURANT_NAME, w):
        body.append(text.center(w).rstrip())
    if header.address:
        body.extend(t.center(w).rstrip() for t in _wrap(header.address, w))
    if header.phone:
        body.extend(t.center(w).rstrip() for t in _wrap(f"Tel: {header.phone}", w))
    body.append(truncate(f"Date: {date}  Time: {time}", w).center(w).rstrip())
    body.append(truncate(f"Receipt #: {receipt_number}", w).center(w).rstrip())
    body.append(rule)

    body.append(_row(layout, "Item", "Qty", "Price"))
    for line in lines:
        qty = f"{format_quantity(line.quantity)} {line.unit}"
        body.append(_row(layout, line.name, qty, format_money(currency, line.price)))
    body.append(rule)

    amount = format_money(currency, total)
    body.append("Total" + amount.rjust(max(w - len("Total"), len(amount) + 1)))

    if footer:
        body.append(rule)
        body.extend(t.center(w).rstrip() for t in _wrap(footer, w))

    return ReceiptDocument(
        receipt_number=str(receipt_number),
        layout=layout,
        pages=_paginate(body, layout, str(receipt_number)),
        logo=header.logo,
    )


def _row(layout: ReceiptLayout, name: str, qty: str, value: str) -> str:
    return " ".join(
        [
            truncate(name, layout.name_width).ljust(layout.name_width),
            truncate(qty, layout.qty_width).center(layout.qty_width),
            value.rjust(layout.value_width),
        ]
    )


def _wrap(text: str, width: int) -> list[str]:
    out: list[str] = []
    for para in str(text).splitlines() or [""]:
        out.extend(textwrap.wrap(para, width) or [""])
    return out


def _paginate(body: list[str], layout: ReceiptLayout, receipt_number: str) -> tuple[tuple[str, ...], ...]:
    per_page = layout.lines_per_page
    if len(body) <= per_page:
        return (tuple(body),)

    # Every page ends with "Page i/n"; pages after the first open with a
    # continuation line.
    chunks: list[list[str]] = [body[: per_page - 1]]
    rest = body[per_page - 1 :]
    while rest:
        chunks.append(rest[: per_page - 2])
        rest = rest[per_page - 2 :]

    total = len(chunks)
    pages = []
    for i, chunk in enumerate(chunks, start=1):
        page = list(chunk)
        if i > 1:
            page.insert(0, truncate(f"Receipt #: {receipt_number} (cont.)", layout.width))
        page.append(f"Page {i}/{total}".center(layout.width).rstrip())
        pages.append(tuple(page))
    return tuple(pages)


def lines_from_cart(items: Iterable[SaleLineInput | dict]) -> list[ReceiptLine]:
    """Cart entries carry unit prices; receipts show extended prices."""
    out = []
    for it in items:
        if isinstance(it, dict):
            name = str(it.get("name") or "")
            unit_price = it.get("unit_price", it.get("price"))
            qty = it["quantity"]
            unit = str(it.get("unit") or DEFAULT_UNIT)
        else:
            name, unit_price, qty, unit = it.name, it.unit_price, it.quantity, it.unit
        qty = to_decimal(qty)
        out.append(ReceiptLine(name=name, quantity=qty, unit=unit, price=to_money(to_money(unit_price) * qty)))
    return out


def lines_from_transaction(transaction: Transaction) -> list[ReceiptLine]:
    return [
        ReceiptLine(name=line.name, quantity=line.quantity, unit=line.unit, price=line.subtotal)
        for line in transaction.lines
    ]


def header_from_settings(settings: Settings) -> ReceiptHeader:
    return ReceiptHeader(
        restaurant_name=settings.restaurant_name,
        address=settings.address or None,
        phone=settings.phone or None,
        logo=settings.logo,
    )


class ReceiptService:
    """Feeds stored settings and sales into render_receipt."""

    def __init__(self, settings_service, sales_service, clock: Callable[[], datetime] | None = None):
        self.settings = settings_service
        self.sales = sales_service
        self.clock = clock or datetime.now

    def for_transaction(self, sale_id: int, layout: ReceiptLayout = THERMAL_80MM) -> ReceiptDocument:
        t = self.sales.get_transaction(sale_id)
        s = self.settings.get_settings()
        return render_receipt(
            header_from_settings(s),
            lines_from_transaction(t),
            total=t.total_amount,
            currency=t.currency,
            receipt_number=t.id,
            date=t.date,
            time=t.time,
            footer=s.receipt_footer or None,
            layout=layout,
        )

    def preview(
        self,
        items: Iterable[SaleLineInput | dict],
        receipt_number: str = "PREVIEW",
        layout: ReceiptLayout = THERMAL_80MM,
    ) -> ReceiptDocument:
        s = self.settings.get_settings()
        lines = lines_from_cart(items)
        now = self.clock().replace(microsecond=0)
        return render_receipt(
            header_from_settings(s),
            lines,
            total=sum((line.price for line in lines), to_money(0)),
            currency=s.currency,
            receipt_number=receipt_number,
            date=now.date().isoformat(),
            time=now.time().isoformat(),
            footer=s.receipt_footer or None,
            layout=layout,
        )

    def to_pdf(self, document: ReceiptDocument) -> bytes:
        return render_pdf(document)
