from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "backend" / "config" / "app.yaml"


@dataclass(frozen=True)
class AppConfig:
    database_path: str
    migration_path: Path
    export_dir: Path
    upload_root: Path
    log_level: str = "INFO"
    regulation_export_mapping: Path = PROJECT_ROOT / "backend" / "config" / "regulation_export.yaml"


def _resolve(value: str | Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def load_config(path: Path | str | None = None) -> AppConfig:
    """Read the YAML config. RYOHI_CONFIG and RYOHI_DATABASE_PATH override it."""
    config_path = Path(path or os.environ.get("RYOHI_CONFIG") or DEFAULT_CONFIG_PATH)
    with config_path.open("r", encoding="utf-8") as config_file:
        loaded: Any = yaml.safe_load(config_file) or {}

    if not isinstance(loaded, dict):
        msg = f"Config file must contain a dictionary at root: {config_path}"
        raise ValueError(msg)

    database_path = os.environ.get("RYOHI_DATABASE_PATH") or loaded.get("database_path", ":memory:")
    if database_path != ":memory:":
        database_path = str(_resolve(database_path))

    return AppConfig(
        database_path=database_path,
        migration_path=_resolve(loaded.get("migration_path", "migrations/sqlite/001_initial_schema.sql")),
        export_dir=_resolve(loaded.get("export_dir", "exports")),
        upload_root=_resolve(loaded.get("upload_root", "uploads")),
        log_level=str(loaded.get("log_level", "INFO")).upper(),
        regulation_export_mapping=_resolve(
            loaded.get("regulation_export_mapping", "backend/config/regulation_export.yaml")
        ),
    )
