from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # backend/internal_core/config.py -> backend -> repo root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class PortalConfig:
    AUDITION_SCORER_URL: str
    AUDITION_SCORER_TIMEOUT_SEC: float
    AUDITION_UPLOAD_MAX_ATTEMPTS: int
    AUDITION_UPLOAD_BASE_DELAY_SEC: float
    AUDITION_POLL_INTERVAL_SEC: float
    AUDITION_POLL_MAX_ATTEMPTS: int
    AUDITION_MEDIA_DIR: str
    AUDITION_MAX_UPLOAD_BYTES: int
    AUDITION_ADMIN_EMAIL: str
    AUDITION_FALLBACK_SEED: Optional[int]
    AUDITION_RESCORE_ON_RESTART: bool
    AUDITION_LOG_LEVEL: str

    @property
    def scorer_enabled(self) -> bool:
        return bool(self.AUDITION_SCORER_URL.strip())

    def media_dir_path(self, repo_root: Optional[Path] = None) -> Path:
        base = repo_root if repo_root is not None else _project_root()
        return (base / self.AUDITION_MEDIA_DIR).resolve()


def load_config() -> PortalConfig:
    return PortalConfig(
        AUDITION_SCORER_URL=_getenv_str("AUDITION_SCORER_URL", "").rstrip("/"),
        AUDITION_SCORER_TIMEOUT_SEC=_getenv_float("AUDITION_SCORER_TIMEOUT_SEC", 30.0),
        AUDITION_UPLOAD_MAX_ATTEMPTS=max(1, _getenv_int("AUDITION_UPLOAD_MAX_ATTEMPTS", 3)),
        AUDITION_UPLOAD_BASE_DELAY_SEC=_getenv_float("AUDITION_UPLOAD_BASE_DELAY_SEC", 1.0),
        AUDITION_POLL_INTERVAL_SEC=_getenv_float("AUDITION_POLL_INTERVAL_SEC", 2.0),
        AUDITION_POLL_MAX_ATTEMPTS=max(1, _getenv_int("AUDITION_POLL_MAX_ATTEMPTS", 120)),
        AUDITION_MEDIA_DIR=_getenv_str("AUDITION_MEDIA_DIR", "./uploads"),
        AUDITION_MAX_UPLOAD_BYTES=_getenv_int("AUDITION_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        AUDITION_ADMIN_EMAIL=_getenv_str("AUDITION_ADMIN_EMAIL", "admin@pingdoh2.com"),
        AUDITION_FALLBACK_SEED=_getenv_opt_int("AUDITION_FALLBACK_SEED"),
        AUDITION_RESCORE_ON_RESTART=_getenv_bool("AUDITION_RESCORE_ON_RESTART", True),
        AUDITION_LOG_LEVEL=_getenv_str("AUDITION_LOG_LEVEL", "INFO"),
    )
