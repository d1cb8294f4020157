from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

# deaddrop_backend/ -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Fixed record names inside the storage tree.
CATALOG_FILENAME = "catalog.json"
TABLE_LIST_FILENAME = "tables.json"
TABLE_CONFIG_FILENAME = "config.json"
RECORD_SUFFIX = ".json"

# How many fresh identifiers a deposit tries before giving up.
MAX_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 587
    user: str | None = None
    password: str | None = None
    sender: str | None = None


@dataclass(frozen=True)
class Settings:
    storage_root: Path
    mailbox_root: Path
    users_file: Path
    public_dir: Path | None = None
    auth_secret: str = ""
    token_ttl_minutes: int = 60
    cleanup_interval_seconds: int = 600
    log_level: str = "INFO"
    smtp: SmtpSettings | None = None

    def ensure_dirs(self) -> None:
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.mailbox_root.mkdir(parents=True, exist_ok=True)
        self.users_file.parent.mkdir(parents=True, exist_ok=True)


def _path_from_env(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


def _smtp_from_env() -> SmtpSettings | None:
    host = os.environ.get("DEADDROP_SMTP_HOST", "").strip()
    if not host:
        return None
    return SmtpSettings(
        host=host,
        port=int(os.environ.get("DEADDROP_SMTP_PORT", "587")),
        user=os.environ.get("DEADDROP_SMTP_USER") or None,
        password=os.environ.get("DEADDROP_SMTP_PASSWORD") or None,
        sender=os.environ.get("DEADDROP_SMTP_SENDER") or None,
    )


def load_settings() -> Settings:
    """Build settings from DEADDROP_* environment variables.

    Defaults keep everything project-local (./data, ./login, ./public) so a
    checkout runs without any configuration.
    """
    secret = os.environ.get("DEADDROP_AUTH_SECRET", "")
    if not secret:
        # Tokens issued with a per-process secret stop verifying after a restart.
        logger.warning("DEADDROP_AUTH_SECRET is not set; using a random secret for this process")
        secret = secrets.token_hex(32)

    return Settings(
        storage_root=_path_from_env("DEADDROP_STORAGE_ROOT", PROJECT_ROOT / "data" / "databases"),
        mailbox_root=_path_from_env("DEADDROP_MAILBOX_ROOT", PROJECT_ROOT / "data" / "mailboxes"),
        users_file=_path_from_env("DEADDROP_USERS_FILE", PROJECT_ROOT / "login" / "login.json"),
        public_dir=_path_from_env("DEADDROP_PUBLIC_DIR", PROJECT_ROOT / "public"),
        auth_secret=secret,
        token_ttl_minutes=int(os.environ.get("DEADDROP_TOKEN_TTL_MINUTES", "60")),
        cleanup_interval_seconds=int(os.environ.get("DEADDROP_CLEANUP_INTERVAL_SECONDS", "600")),
        log_level=os.environ.get("DEADDROP_LOG_LEVEL", "INFO").upper(),
        smtp=_smtp_from_env(),
    )
