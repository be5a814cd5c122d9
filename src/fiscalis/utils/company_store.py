"""Persistence of the enterprise aggregate (regime flags + charges ledger).

The record is read and written as a whole. ``locked()`` guards a full
read-modify-write so concurrent writers cannot drop each other's obligations.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from filelock import FileLock

from fiscalis import config as _config

logger = logging.getLogger(__name__)


class CompanyStore(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, record: dict[str, Any]) -> None: ...

    def locked(self) -> Any: ...


def _backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Corrupt file backed up: %s → %s", path, backup)
    return backup


class JsonCompanyStore:
    """Company record in a JSON file, guarded by a sibling ``.lock`` file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or _config.get_company_store_path()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold an exclusive file lock during read-modify-write."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(self.path.with_suffix(".lock"))
        with lock:
            yield

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, ValueError):
            _backup_corrupt(self.path)
            return {}
        if not isinstance(data, dict):
            _backup_corrupt(self.path)
            return {}
        return data

    def save(self, record: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record, indent=2, ensure_ascii=False) + "\n")
        os.replace(tmp, self.path)


class MemoryCompanyStore:
    """In-process store; records are deep-copied in and out like a real round-trip."""

    def __init__(self, record: dict[str, Any] | None = None) -> None:
        self._record = copy.deepcopy(record or {})
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self._record)

    def save(self, record: dict[str, Any]) -> None:
        self._record = copy.deepcopy(record)


# --- Health check (read-only, no locks) ---


@dataclass
class StoreHealth:
    ok: bool
    obligation_count: int
    corrupt_backups: list[str] = field(default_factory=list)


def check_store_health(path: Path | None = None) -> StoreHealth:
    """Probe the company file for corruption (read-only)."""
    path = path or _config.get_company_store_path()
    ok = True
    count = 0
    if path.exists():
        try:
            charges = json.loads(path.read_text()).get("charges", {})
            count = len(charges.get("contribution", [])) + len(
                charges.get("income_tax_installment", [])
            )
        except (json.JSONDecodeError, ValueError, AttributeError):
            ok = False
    if path.parent.exists():
        backups = sorted(str(p) for p in path.parent.glob(f"{path.name}.corrupt.*"))
    else:
        backups = []
    return StoreHealth(ok=ok, obligation_count=count, corrupt_backups=backups)
