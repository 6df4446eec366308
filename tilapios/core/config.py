"""Runtime configuration read from the environment (and an optional .env file)."""

from dataclasses import dataclass
import os

from dotenv import load_dotenv

DEFAULT_REMOTE_DATABASE_URL = "sqlite:///tilapios_remote.db"
DEFAULT_LOCAL_DATABASE_URL = "sqlite:///tilapios_local.db"

# Document stores commit at most 500 writes per batch; keep one slot spare.
DEFAULT_BATCH_LIMIT = 499


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Application settings."""

    remote_database_url: str = DEFAULT_REMOTE_DATABASE_URL
    local_database_url: str = DEFAULT_LOCAL_DATABASE_URL
    uploads_dir: str = "uploads"
    uploads_base_url: str = "/uploads"
    invites_poll_interval: float = 30.0
    expiry_sweep_interval: float = 60.0
    batch_limit: int = DEFAULT_BATCH_LIMIT
    start_online: bool = True
    log_level: str = "DEBUG"
    log_dir: str = "logs"
    host: str = "127.0.0.1"
    port: int = 8000
    reload: bool = False


def get_settings() -> Settings:
    """Build settings from environment variables, loading .env first."""
    load_dotenv()
    return Settings(
        remote_database_url=os.getenv(
            "TILAPIOS_REMOTE_DATABASE_URL", DEFAULT_REMOTE_DATABASE_URL
        ),
        local_database_url=os.getenv(
            "TILAPIOS_LOCAL_DATABASE_URL", DEFAULT_LOCAL_DATABASE_URL
        ),
        uploads_dir=os.getenv("TILAPIOS_UPLOADS_DIR", "uploads"),
        uploads_base_url=os.getenv("TILAPIOS_UPLOADS_BASE_URL", "/uploads"),
        invites_poll_interval=_env_float("TILAPIOS_INVITES_POLL_INTERVAL", 30.0),
        expiry_sweep_interval=_env_float("TILAPIOS_EXPIRY_SWEEP_INTERVAL", 60.0),
        batch_limit=max(1, min(_env_int("TILAPIOS_BATCH_LIMIT", DEFAULT_BATCH_LIMIT), 500)),
        start_online=_env_bool("TILAPIOS_START_ONLINE", True),
        log_level=os.getenv("TILAPIOS_LOG_LEVEL", "DEBUG"),
        log_dir=os.getenv("TILAPIOS_LOG_DIR", "logs"),
        host=os.getenv("TILAPIOS_HOST", "127.0.0.1"),
        port=_env_int("TILAPIOS_PORT", 8000),
        reload=_env_bool("TILAPIOS_RELOAD", False),
    )
