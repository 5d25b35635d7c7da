from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Protocol


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def create_sale(self, currency: str, total_amount: Decimal, lines: Iterable[dict]) -> int: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for the sale write path.

    Holds the store's write lock for the whole block, so validation done
    inside the block and the commit form one exclusive section.
    """

    repo: object
    _depth: int = field(default=0, init=False, repr=False)

    def __enter__(self) -> "RepositoryUnitOfWork":
        self.repo.write_lock.acquire()
        self._depth += 1
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._depth -= 1
        self.repo.write_lock.release()
        return None

    def create_sale(self, currency: str, total_amount: Decimal, lines: Iterable[dict]) -> int:
        if self._depth == 0:
            raise RuntimeError("create_sale must run inside the unit of work block.")
        return int(self.repo.create_sale(currency, total_amount, lines))
