from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

ENV_DATA_DIR = "PBL_DATA_DIR"


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class LedgerSettings:
    batch_number_retries: int = 5
    conflict_retries: int = 3
    conflict_backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        defaults = cls()
        return cls(
            batch_number_retries=int(os.environ.get("PBL_BATCH_NUMBER_RETRIES", defaults.batch_number_retries)),
            conflict_retries=int(os.environ.get("PBL_CONFLICT_RETRIES", defaults.conflict_retries)),
            conflict_backoff_seconds=float(os.environ.get("PBL_CONFLICT_BACKOFF", defaults.conflict_backoff_seconds)),
            busy_timeout_seconds=float(os.environ.get("PBL_BUSY_TIMEOUT", defaults.busy_timeout_seconds)),
        )


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "PharmacyBatchLedger") -> AppPaths:
    override = os.environ.get(ENV_DATA_DIR, "").strip()
    if override:
        base = Path(override).expanduser().resolve()
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
