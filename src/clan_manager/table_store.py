"""
Tabular history store.

Named tables (member log, leaderboard, recruits) are lists of plain dict
rows kept in HMAC-protected JSON files under the data directory. Before a
table is overwritten its current file is copied into a rolling set of
backups, unless the newest backup already holds identical content.
"""

import shutil
from pathlib import Path
from typing import Optional

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import PersistenceError
from .state_store import HmacJsonFile

MEMBER_LOG_TABLE = "member_log"
LEADERBOARD_TABLE = "leaderboard"
RECRUITS_TABLE = "recruits"


class TableStore:
    """Row tables with rotating backups."""

    COMPONENT = "TableStore"

    def __init__(
        self,
        data_dir: Path,
        hmac_secret: str,
        backup_count: int = 5,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._hmac_secret = hmac_secret
        self._backup_count = max(0, backup_count)
        self._logger = logger

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def table_path(self, name: str) -> Path:
        return self._data_dir / f"{name}.json"

    def backup_path(self, name: str, index: int) -> Path:
        return self._data_dir / "backups" / f"{name}.{index}.json"

    def _file(self, path: Path) -> HmacJsonFile:
        return HmacJsonFile(path, self._hmac_secret)

    def read_rows(self, name: str) -> list[dict]:
        """
        Rows of table ``name``; an absent table is empty.

        Raises:
            PersistenceError: If the table file is unreadable, not a row list or tampered with
        """
        data = self._file(self.table_path(name)).read()
        if data is None:
            return []
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise PersistenceError(
                code="corrupt_table",
                message=f"Table '{name}' does not contain a list of rows",
                details={"table": name},
            )
        return data

    def write_rows(self, name: str, rows: list[dict]) -> None:
        """Back up the current table, then replace it with ``rows``."""
        self.backup(name)
        self._file(self.table_path(name)).write(rows)
        self._log(LogLevel.INFO, f"Table '{name}' written", {"table": name, "rows": len(rows)})

    def backup(self, name: str) -> bool:
        """
        Rotate backups and copy the current table into slot 1.

        Returns:
            True if a new backup was written, False if there was nothing to
            back up or the newest backup is identical
        """
        current = self.table_path(name)
        if self._backup_count == 0 or not current.exists():
            return False

        newest = self.backup_path(name, 1)
        try:
            if newest.exists() and newest.read_bytes() == current.read_bytes():
                self._log(LogLevel.DEBUG, f"Backup skipped for '{name}', content unchanged", {"table": name})
                return False

            newest.parent.mkdir(parents=True, exist_ok=True)
            oldest = self.backup_path(name, self._backup_count)
            if oldest.exists():
                oldest.unlink()
            for index in range(self._backup_count - 1, 0, -1):
                source = self.backup_path(name, index)
                if source.exists():
                    source.replace(self.backup_path(name, index + 1))
            shutil.copyfile(current, newest)
        except OSError as e:
            raise PersistenceError(
                code="backup_failed",
                message=f"Failed to back up table '{name}': {e}",
                details={"table": name},
            )

        self._log(LogLevel.INFO, f"Backup created for '{name}'", {"table": name})
        return True

    def list_backups(self, name: str) -> list[Path]:
        return [
            self.backup_path(name, index)
            for index in range(1, self._backup_count + 1)
            if self.backup_path(name, index).exists()
        ]

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
