from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional

from rms.domain.errors import IntegrityError, NotFoundError, ValidationError
from rms.domain.models import DEFAULT_UNIT, DateRange, SaleLineInput, Transaction
from rms.domain.money import TOLERANCE, is_valid_quantity, quantity_step, to_decimal, to_money
from rms.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("rms.sales")


class SalesService:
    def __init__(
        self,
        repo,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def record_sale(
        self,
        lines: Iterable[SaleLineInput | dict],
        currency: str,
        expected_total=None,
    ) -> int:
        """
        lines: SaleLineInput or {name, unit_price, quantity, unit}

        Subtotals and the sale total are recomputed here; a client total is
        only compared, never stored.
        """
        lines = [_as_line(it) for it in lines]
        if not lines:
            raise ValidationError("Empty sale.")

        currency = (currency or "").strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError(f"Currency must be a 3-letter code. Received: {currency!r}")

        rows = []
        total = to_money(0)
        for it in lines:
            name = it.name.strip()
            unit = (it.unit or "").strip() or DEFAULT_UNIT
            if not name:
                raise ValidationError("Line product name is required.")
            if it.unit_price < 0:
                raise ValidationError(f"Unit price must be >= 0 ({name}).")
            if not is_valid_quantity(it.quantity, unit):
                raise ValidationError(
                    f"Quantity for {name} must be > 0 in steps of {quantity_step(unit).normalize()} {unit}."
                )
            price = to_money(it.unit_price)
            subtotal = to_money(price * it.quantity)
            total += subtotal
            rows.append({"name": name, "price": price, "quantity": it.quantity, "unit": unit, "subtotal": subtotal})

        if expected_total is not None:
            claimed = to_money(expected_total)
            if abs(claimed - total) >= TOLERANCE:
                log.error("sale_total_mismatch claimed=%s computed=%s", claimed, total)
                raise IntegrityError(f"Sale total {claimed} does not match line sum {total}.")

        with self.uow_factory() as uow:
            sale_id = uow.create_sale(currency, total, rows)
        log.info("sale_recorded sale_id=%s lines=%s total=%s currency=%s", sale_id, len(rows), total, currency)
        return sale_id

    def get_transaction(self, sale_id: int) -> Transaction:
        t = self.repo.get_transaction(int(sale_id))
        if not t:
            raise NotFoundError("Transaction not found.")
        return t

    def get_transactions(self, date_range: Optional[DateRange] = None) -> list[Transaction]:
        date_range = date_range or DateRange()
        return self.repo.list_transactions(date_range.start, date_range.end)

    def delete_transaction(self, sale_id: int) -> None:
        removed = self.repo.delete_transaction(int(sale_id))
        if not removed:
            raise NotFoundError("Transaction not found.")
        log.warning("transaction_deleted sale_id=%s", sale_id)

    def transaction_totals(self, date_range: Optional[DateRange] = None) -> tuple[Decimal, Decimal]:
        """(all-time total, total within `date_range`)."""
        _, all_time = self.repo.sales_summary()
        date_range = date_range or DateRange()
        _, filtered = self.repo.sales_summary(date_range.start, date_range.end)
        return to_money(all_time), to_money(filtered)


def _as_line(it: SaleLineInput | dict) -> SaleLineInput:
    if isinstance(it, SaleLineInput):
        try:
            return SaleLineInput(
                name=str(it.name or ""),
                unit_price=to_decimal(it.unit_price),
                quantity=to_decimal(it.quantity),
                unit=it.unit,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e
    try:
        return SaleLineInput(
            name=str(it.get("name") or ""),
            unit_price=to_decimal(it.get("unit_price", it.get("price"))),
            quantity=to_decimal(it["quantity"]),
            unit=str(it.get("unit") or DEFAULT_UNIT),
        )
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Malformed sale line: {it!r}") from e
