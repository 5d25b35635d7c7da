from .sqlite_repo import SqliteRepository
from .unit_of_work import RepositoryUnitOfWork, UnitOfWork

__all__ = ["SqliteRepository", "RepositoryUnitOfWork", "UnitOfWork"]
