"""Application configuration helpers."""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .constants import DEFAULT_BRANCHES

APP_STORAGE_SUBDIR = "connect-vale"
DEFAULT_BACKUP_RETENTION = 12


@dataclass(frozen=True)
class AppConfig:
    """Hold runtime configuration options for the record store."""

    data_dir: Path
    db_url: str
    backup_dir: Path
    backup_retention: int
    backup_mirror_dir: Optional[Path]
    default_branches: tuple[str, ...]
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        prefix = "sqlite:///"
        if self.db_url.startswith(prefix):
            return Path(self.db_url[len(prefix) :]).expanduser()
        return Path(self.db_url).expanduser()


def load_config(*, env_file: Optional[Path] = None) -> AppConfig:
    """Load settings from ``.env`` and environment variables with sane defaults."""

    load_dotenv(env_file or find_dotenv(usecwd=True))

    data_dir = Path(os.environ.get("CV_DATA_DIR") or _default_data_dir()).expanduser()
    data_dir.mkdir(parents=True, exist_ok=True)

    db_url = os.environ.get("CV_DB_URL")
    if not db_url:
        db_path = data_dir / "connect_vale.db"
        db_url = f"sqlite:///{db_path}" if os.name != "nt" else f"sqlite:///{db_path.as_posix()}"

    backup_dir = Path(os.environ.get("CV_BACKUP_DIR") or data_dir / "backups").expanduser()
    mirror = os.environ.get("CV_BACKUP_MIRROR_DIR")

    branches_env = os.environ.get("CV_DEFAULT_BRANCHES")
    if branches_env:
        branches = tuple(
            dict.fromkeys(b.strip() for b in branches_env.split(",") if b.strip())
        )
    else:
        branches = DEFAULT_BRANCHES

    return AppConfig(
        data_dir=data_dir,
        db_url=db_url,
        backup_dir=backup_dir,
        backup_retention=_int_env("CV_BACKUP_RETENTION", DEFAULT_BACKUP_RETENTION),
        backup_mirror_dir=Path(mirror).expanduser() if mirror else None,
        default_branches=branches or DEFAULT_BRANCHES,
        log_level=os.environ.get("CV_LOG_LEVEL", "INFO").upper(),
    )


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, ""))
    except ValueError:
        return default


def _default_data_dir() -> Path:
    if sys.platform.startswith("win"):
        base_dir = Path(os.getenv("APPDATA", Path.home()))
    elif sys.platform == "darwin":
        base_dir = Path.home() / "Library" / "Application Support"
    else:
        base_dir = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base_dir / APP_STORAGE_SUBDIR
