"""Pydantic settings loaded from .env, with conf.json overlay."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent

# ---------------------------------------------------------------------------
# conf.json: deployment config that is not a secret
# ---------------------------------------------------------------------------


def get_devicehub_dir() -> Path:
    """Resolve the data directory. DEVICEHUB_DIR env var or ~/.config/devicehub."""
    d = os.environ.get("DEVICEHUB_DIR", "")
    return Path(d).expanduser() if d else Path.home() / ".config" / "devicehub"


class DeviceHubConfig(BaseModel):
    database_url: str = ""
    redis_url: str = ""
    log_level: str = ""
    log_file: str = ""
    mfa_issuer: str = ""
    cors_allow_all_origins: bool | None = None  # None = use Settings default


_logger = logging.getLogger(__name__)


def load_conf() -> DeviceHubConfig:
    """Load conf.json from the data directory."""
    conf_path = get_devicehub_dir() / "conf.json"
    if conf_path.exists():
        try:
            return DeviceHubConfig.model_validate_json(conf_path.read_text())
        except ValueError:
            _logger.warning("Failed to parse %s, using defaults", conf_path, exc_info=True)
    return DeviceHubConfig()


# ---------------------------------------------------------------------------
# Secret auto-generation
# ---------------------------------------------------------------------------


def _ensure_secrets(env_file: Path) -> None:
    """Generate FIELD_ENCRYPTION_KEY if missing and append it to .env."""
    from cryptography.fernet import Fernet

    if os.environ.get("FIELD_ENCRYPTION_KEY"):
        return

    key = Fernet.generate_key().decode()
    os.environ["FIELD_ENCRYPTION_KEY"] = key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    with open(env_file, "a") as f:
        f.write(f"\nFIELD_ENCRYPTION_KEY={key}\n")


# ---------------------------------------------------------------------------
# Bootstrap: load .env, generate secrets, load conf.json
# ---------------------------------------------------------------------------

_env_file = BASE_DIR.parent / ".env"
load_dotenv(_env_file)
_ensure_secrets(_env_file)
_conf = load_conf()

# ---------------------------------------------------------------------------
# Settings (pydantic-settings): .env / env vars override conf.json defaults
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    DATABASE_URL: str = _conf.database_url or f"sqlite:///{BASE_DIR / 'db.sqlite3'}"
    REDIS_URL: str = _conf.redis_url or "redis://localhost:6379/0"

    FIELD_ENCRYPTION_KEY: str = ""

    CORS_ALLOW_ALL_ORIGINS: bool = (
        _conf.cors_allow_all_origins if _conf.cors_allow_all_origins is not None else True
    )

    LOG_LEVEL: str = _conf.log_level or "INFO"
    LOG_FILE: str = _conf.log_file or ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # TOTP enrollment
    MFA_ISSUER: str = _conf.mfa_issuer or "DeviceHub"
    MFA_TIME_STEP_SECONDS: int = 30
    MFA_VERIFY_WINDOW: int = 1
    MFA_BACKUP_CODE_COUNT: int = 10

    # Throttling of code-checking actions (per user)
    MFA_RATE_LIMIT_MAX: int = 5
    MFA_RATE_LIMIT_WINDOW_SECONDS: int = 60
    MFA_LOCKOUT_THRESHOLD: int = 10
    MFA_LOCKOUT_SECONDS: int = 900  # 15 minutes

    # Pwned Passwords range API (k-anonymity: only a 5-char hash prefix is sent)
    PASSWORD_BREACH_API_URL: str = "https://api.pwnedpasswords.com/range/"
    PASSWORD_BREACH_TIMEOUT_SECONDS: float = 5.0
    PASSWORD_BREACH_RATE_LIMIT_MAX: int = 10
    PASSWORD_BREACH_RATE_LIMIT_WINDOW_SECONDS: int = 60

    model_config = ConfigDict(
        env_file=str(BASE_DIR.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
