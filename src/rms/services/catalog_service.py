from __future__ import annotations

import logging

from rms.domain.errors import NotFoundError, ValidationError
from rms.domain.models import DEFAULT_UNIT, Product
from rms.domain.money import to_money

log = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, repo):
        self.repo = repo

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def add_product(self, name: str, price, unit: str = DEFAULT_UNIT) -> int:
        name, price, unit = self._validate(name, price, unit)
        self._ensure_unique_name(name)
        pid = self.repo.add_product(name, price, unit)
        log.info("product_added id=%s name=%s price=%s unit=%s", pid, name, price, unit)
        return pid

    def update_product(self, product_id: int, name: str, price, unit: str = DEFAULT_UNIT) -> None:
        name, price, unit = self._validate(name, price, unit)
        self._ensure_unique_name(name, exclude_id=int(product_id))
        updated = self.repo.update_product(int(product_id), name, price, unit)
        if not updated:
            raise NotFoundError("Product not found.")
        log.info("product_updated id=%s name=%s price=%s", product_id, name, price)

    def delete_product(self, product_id: int) -> None:
        # Sale lines keep their own copy of the name, so history is unaffected.
        removed = self.repo.delete_product(int(product_id))
        if not removed:
            raise NotFoundError("Product not found.")
        log.info("product_deleted id=%s", product_id)

    def _validate(self, name: str, price, unit: str):
        name = (name or "").strip()
        unit = (unit or "").strip() or DEFAULT_UNIT
        if not name:
            raise ValidationError("Product name is required.")
        try:
            price = to_money(price)
        except ValueError as e:
            raise ValidationError("Price must be a number.") from e
        if price <= 0:
            raise ValidationError("Price must be > 0.")
        return name, price, unit

    def _ensure_unique_name(self, name: str, exclude_id: int | None = None) -> None:
        wanted = name.casefold()
        for p in self.repo.list_products():
            if p.id != exclude_id and p.name.casefold() == wanted:
                raise ValidationError(f"A product named '{p.name}' already exists.")
