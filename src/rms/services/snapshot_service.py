from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from rms.domain.errors import AppError, StorageError, ValidationError
from rms.repositories.sqlite_repo import SqliteRepository

log = logging.getLogger("rms.snapshot")

SQLITE_HEADER = b"SQLite format 3\x00"


class SnapshotService:
    """Whole-store export/import as the store's own on-disk bytes."""

    def __init__(self, repo: SqliteRepository):
        self.repo = repo
        self.db_path = Path(repo.db_path)

    @property
    def backup_path(self) -> Path:
        return self.db_path.with_name(self.db_path.name + ".backup")

    def export_snapshot(self) -> bytes:
        with self.repo.write_lock, tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "snapshot.db"
            self.repo.backup_to(target)
            data = target.read_bytes()
        log.info("snapshot_exported bytes=%s", len(data))
        return data

    def export_to_file(self, path: Path | str) -> Path:
        path = Path(path)
        path.write_bytes(self.export_snapshot())
        return path

    def import_from_file(self, path: Path | str) -> None:
        self.import_snapshot(Path(path).read_bytes())

    def import_snapshot(self, data: bytes) -> None:
        """Replace the live store with `data`.

        The live file is copied aside first and copied back if any later step
        fails, so a failed import leaves the store as it was.
        """
        with self.repo.write_lock:
            backup = self._backup_live()
            staged = self.db_path.with_name(self.db_path.name + ".import")
            try:
                self._stage(data, staged)
                self._replace_live(staged)
                self.repo.init_db()
            except Exception as exc:
                self._restore_live(backup)
                log.error("snapshot_import_rolled_back error=%s", exc)
                if isinstance(exc, AppError):
                    raise
                raise StorageError("import_snapshot", str(exc)) from exc
            finally:
                staged.unlink(missing_ok=True)
            backup.unlink(missing_ok=True)
        log.info("snapshot_imported bytes=%s", len(data))

    def _backup_live(self) -> Path:
        try:
            shutil.copy2(self.db_path, self.backup_path)
        except OSError as e:
            raise StorageError("import_snapshot", f"could not back up current store: {e}") from e
        return self.backup_path

    def _restore_live(self, backup: Path) -> None:
        try:
            shutil.copy2(backup, self.db_path)
        except OSError as e:
            # The backup stays on disk for a manual restore.
            log.critical("snapshot_backup_restore_failed backup=%s error=%s", backup, e)
            raise StorageError(
                "import_snapshot", f"import failed and the store could not be restored; backup kept at {backup}"
            ) from e
        backup.unlink(missing_ok=True)
        log.warning("snapshot_backup_restored db=%s", self.db_path.name)

    def _stage(self, data: bytes, staged: Path) -> None:
        if not isinstance(data, (bytes, bytearray)) or not data.startswith(SQLITE_HEADER):
            raise ValidationError("Snapshot is not a store file.")
        staged.write_bytes(bytes(data))

        candidate = SqliteRepository(staged)
        try:
            integrity = candidate.integrity_check()
            missing = candidate.missing_tables()
        except StorageError as e:
            raise ValidationError(f"Snapshot is unreadable: {e}") from e
        if integrity != "ok":
            raise ValidationError(f"Snapshot failed integrity check: {integrity}")
        if missing:
            raise ValidationError(f"Snapshot is missing tables: {', '.join(missing)}")
        # Older stores are brought to the current schema before the swap.
        candidate.init_db()

    def _replace_live(self, staged: Path) -> None:
        os.replace(staged, self.db_path)
