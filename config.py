# ---------------- CONFIG ----------------
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load .env from the code directory, falling back to the working directory
env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

PLATFORMS = ("telegram", "whatsapp")
DEFAULT_PORTS = {"telegram": 8443, "whatsapp": 5000}
TRUE_VALUES = ("1", "true", "yes", "on", "si", "sí")


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


@dataclass
class Settings:
    platform: str
    database_url: str
    telegram_token: Optional[str] = None
    public_url: Optional[str] = None
    port: int = 5000
    scope_by_sender: bool = True
    chart_backend: str = "quickchart"
    quickchart_url: str = "https://quickchart.io"
    mongo_db_name: str = "gastos"
    mongo_timeout_ms: int = 5000
    log_level: str = "INFO"
    timezone: str = "UTC"

    @property
    def tz(self):
        return ZoneInfo(self.timezone)

    @property
    def webhook_url(self):
        if not self.public_url or not self.telegram_token:
            return None
        return f"{self.public_url.rstrip('/')}/{self.telegram_token}"


def env_flag(env, name, default):
    value = env.get(name)
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower() in TRUE_VALUES


def env_int(env, name, default):
    value = env.get(name)
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def load_settings(platform, use_webhook=True, environ=None) -> Settings:
    """
    Read settings for one transport from the environment.

    telegram: TELEGRAM_TOKEN and DATABASE_URL, plus PUBLIC_URL in webhook mode.
    whatsapp: DATABASE_URL.
    Every missing required name is reported in one ConfigError.
    """
    env = os.environ if environ is None else environ
    if platform not in PLATFORMS:
        raise ConfigError(f"Unknown platform {platform!r}, expected one of {', '.join(PLATFORMS)}")

    required = ["DATABASE_URL"]
    if platform == "telegram":
        required.append("TELEGRAM_TOKEN")
        if use_webhook:
            required.append("PUBLIC_URL")
    missing = [name for name in required if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigError(f"❌ Missing required settings: {', '.join(missing)}")

    chart_backend = (env.get("CHART_BACKEND") or "quickchart").strip().lower()
    if chart_backend not in ("quickchart", "local", "none"):
        raise ConfigError(f"CHART_BACKEND must be quickchart, local or none, got {chart_backend!r}")

    tz_name = (env.get("TIMEZONE") or "UTC").strip()
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown TIMEZONE {tz_name!r}")

    return Settings(
        platform=platform,
        database_url=env["DATABASE_URL"].strip(),
        telegram_token=(env.get("TELEGRAM_TOKEN") or "").strip() or None,
        public_url=(env.get("PUBLIC_URL") or "").strip() or None,
        port=env_int(env, "PORT", DEFAULT_PORTS[platform]),
        scope_by_sender=env_flag(env, "SCOPE_BY_SENDER", True),
        chart_backend=chart_backend,
        quickchart_url=(env.get("QUICKCHART_URL") or "https://quickchart.io").strip(),
        mongo_db_name=(env.get("MONGO_DB_NAME") or "gastos").strip(),
        mongo_timeout_ms=env_int(env, "MONGO_TIMEOUT_MS", 5000),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        timezone=tz_name,
    )


# ---------------- LOGGING ----------------
def setup_logging(level="INFO"):
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, str(level).upper(), logging.INFO),
    )
    # httpx logs every Telegram API call at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
