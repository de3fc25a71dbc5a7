"""
State Store module for persisted key-value state.

This module provides HMAC-protected JSON files and, on top of them, the
key-value store used for the recruiter's exclusion list. Values are
strings; JSON values larger than one slot are split into ordered chunks
(``KEY_0``, ``KEY_1``, ...).
"""

import hashlib
import hmac
import json
import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import PersistedStateCorruptError, PersistenceError, TamperingError


class HmacJsonFile:
    """
    A JSON file whose payload is protected by an HMAC-SHA256.

    File layout: ``{"version", "data", "updated_at", "hmac"}``; the HMAC
    covers everything except the ``hmac`` field.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")

    @property
    def file_path(self) -> Path:
        return self._file_path

    def exists(self) -> bool:
        return self._file_path.exists()

    def read(self) -> Optional[Any]:
        """
        Read and verify the payload.

        Returns:
            The stored data, or None if the file does not exist

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return None

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse {self._file_path.name}: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read {self._file_path.name}: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw_data, dict):
            raise PersistenceError(
                code="parse_error",
                message=f"Unexpected layout in {self._file_path.name}",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "data": raw_data.get("data"),
            "updated_at": raw_data.get("updated_at"),
        })

        if not self.validate_hmac(str(stored_hmac), computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        return raw_data.get("data")

    def write(self, data: Any) -> None:
        """
        Write ``data`` atomically (temporary file, then rename).

        Raises:
            PersistenceError: If the file cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()
        envelope = {
            "version": self.VERSION,
            "data": data,
            "updated_at": now,
        }
        envelope["hmac"] = self.compute_hmac(envelope)

        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._file_path.name}.",
                dir=str(self._file_path.parent),
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(envelope, f, indent=2, sort_keys=True, ensure_ascii=False)
                os.replace(tmp_name, self._file_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write {self._file_path.name}: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """Compute HMAC-SHA256 over the canonical JSON serialization of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Constant-time HMAC comparison."""
        return hmac.compare_digest(stored_hmac, computed_hmac)


class StateStore:
    """
    Persistent string key-value store with HMAC protection.

    Mutations stay in memory until ``save()``, so a failed pipeline stage
    that never saves leaves the file untouched.
    """

    CHUNK_SIZE = 8500
    MAX_VALUE_SIZE = 9000
    COMPONENT = "StateStore"

    def __init__(
        self,
        file_path: Path,
        hmac_secret: str,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the state file (JSON format)
            hmac_secret: Secret key for HMAC computation
            logger: Optional audit logger
        """
        self._file = HmacJsonFile(file_path, hmac_secret)
        self._logger = logger
        self._values: dict[str, str] = {}

    @property
    def file_path(self) -> Path:
        return self._file.file_path

    def load(self) -> dict[str, str]:
        """
        Load values from disk, replacing the in-memory state.

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
            PersistedStateCorruptError: If the payload is not a string mapping
        """
        data = self._file.read()
        if data is None:
            self._values = {}
            return dict(self._values)

        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise PersistedStateCorruptError(
                code="corrupt_state",
                message="State file does not contain a string mapping",
                details={"file_path": str(self.file_path)},
            )

        self._values = dict(data)
        return dict(self._values)

    def load_or_reset(self) -> dict[str, str]:
        """Load values; on any persistence error log it and start from an empty store."""
        try:
            return self.load()
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(
                    self.COMPONENT,
                    "State file unreadable, starting from empty state",
                    error=e,
                    additional_data={"file_path": str(self.file_path)},
                )
            self._values = {}
            return {}

    def save(self) -> None:
        self._file.write(self._values)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._values)

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self._values.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            self._log_corrupt(key, e)
            return default

    def set_json(self, key: str, value: Any) -> bool:
        """Store ``value`` under one key; refuses values over MAX_VALUE_SIZE characters."""
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        if len(text) > self.MAX_VALUE_SIZE:
            self._log(
                LogLevel.WARN,
                f"Value for '{key}' exceeds {self.MAX_VALUE_SIZE} characters, use set_chunked",
                {"key": key, "size": len(text)},
            )
            return False
        self._values[key] = text
        return True

    def _chunk_keys(self, key: str) -> list[tuple[int, str]]:
        pattern = re.compile(rf"^{re.escape(key)}_(\d+)$")
        found = []
        for name in self._values:
            match = pattern.match(name)
            if match:
                found.append((int(match.group(1)), name))
        return sorted(found)

    def get_chunked(self, key: str, default: Any = None) -> Any:
        """
        Read a value written by ``set_chunked``.

        A legacy single-key value takes precedence. Missing data returns
        ``default``; malformed JSON is logged and also returns ``default``.
        """
        if key in self._values:
            return self.get_json(key, default)

        chunks = self._chunk_keys(key)
        if not chunks:
            return default

        text = "".join(self._values[name] for _, name in chunks)
        try:
            return json.loads(text)
        except ValueError as e:
            self._log_corrupt(key, e)
            return default

    def set_chunked(self, key: str, value: Any) -> int:
        """
        Store ``value`` as ``key_0 .. key_n`` and drop leftovers of longer earlier writes.

        Returns:
            Number of chunks written
        """
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        total = max(1, math.ceil(len(text) / self.CHUNK_SIZE))

        for index in range(total):
            self._values[f"{key}_{index}"] = text[index * self.CHUNK_SIZE:(index + 1) * self.CHUNK_SIZE]

        for index, name in self._chunk_keys(key):
            if index >= total:
                del self._values[name]

        self._values.pop(key, None)
        return total

    def _log_corrupt(self, key: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error(
                self.COMPONENT,
                f"Stored value for '{key}' is not valid JSON, using default",
                error=error,
                additional_data={"key": key},
            )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
