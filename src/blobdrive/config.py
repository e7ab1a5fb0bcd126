"""Configuration loaded from the environment and an optional .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from blobdrive.exceptions import ConfigError


@dataclass(frozen=True)
class Settings:
    """Settings for the Firebase-backed drive and the CLI."""

    bucket: str
    id_token: str | None = None
    uid: str | None = None
    allowed_uid: str | None = None
    max_uploads: int = 4
    max_workers: int = 8
    log_level: str = "WARNING"


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be greater than zero, got {value}")
    return value


def load_settings(*, dotenv: bool = True) -> Settings:
    """Load settings from environment variables.

    Raises:
        ConfigError: If required variables are missing or values are invalid
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    missing = [key for key in ["BLOBDRIVE_BUCKET"] if not os.getenv(key)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    return Settings(
        bucket=os.environ["BLOBDRIVE_BUCKET"],
        id_token=os.getenv("BLOBDRIVE_ID_TOKEN") or None,
        uid=os.getenv("BLOBDRIVE_UID") or None,
        allowed_uid=os.getenv("BLOBDRIVE_ALLOWED_UID") or None,
        max_uploads=_positive_int("BLOBDRIVE_MAX_UPLOADS", 4),
        max_workers=_positive_int("BLOBDRIVE_MAX_WORKERS", 8),
        log_level=os.getenv("BLOBDRIVE_LOG_LEVEL", "WARNING").upper(),
    )
