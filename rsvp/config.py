from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# -----------------------------
# .env Loader
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except Exception:
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except Exception:
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if (v and str(v).strip() != "") else default


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    DATA_DIR: str
    TENANTS_FILE: str
    CREDENTIALS_FILE: str
    GUEST_MAP_FILE: str
    FOLLOWUPS_FILE: str
    EVENT_TZ: str
    COUNTRY_CODE: str
    BOT_PHONE: Optional[str]
    MESSAGE_BATCH_SIZE: int
    MESSAGE_DELAY_SEC: float
    SHEETS_TIMEOUT_SEC: float
    SHEETS_RETRY_ATTEMPTS: int
    SHEETS_RETRY_DELAY_SEC: float
    SHEETS_CACHE_TTL_SEC: float
    FOLLOWUP_HOUR: int
    MAX_PARTY_SIZE: int
    DEFAULT_LANGUAGE: str
    TRANSPORT_URL: Optional[str]
    TRANSPORT_TOKEN: Optional[str]
    TRANSPORT_DRY_RUN: bool
    CRON_TOKEN: Optional[str]
    WEBHOOK_TOKEN: Optional[str]


@lru_cache(maxsize=1)
def settings() -> Settings:
    data_dir = env_str("RSVP_DATA_DIR", os.path.join(BASE_DIR, "..", "data"))
    return Settings(
        DATA_DIR=data_dir,
        TENANTS_FILE=env_str("TENANTS_FILE", os.path.join(data_dir, "customers.json")),
        CREDENTIALS_FILE=env_str("CREDENTIALS_FILE", os.path.join(data_dir, "credentials.json")),
        GUEST_MAP_FILE=env_str("GUEST_MAP_FILE", os.path.join(data_dir, "guest_map.json")),
        FOLLOWUPS_FILE=env_str("FOLLOWUPS_FILE", os.path.join(data_dir, "followups.json")),
        EVENT_TZ=env_str("EVENT_TZ", "Asia/Jerusalem"),
        COUNTRY_CODE=env_str("COUNTRY_CODE", "972"),
        BOT_PHONE=env_str("BOT_PHONE"),
        MESSAGE_BATCH_SIZE=env_int("MESSAGE_BATCH_SIZE", 10),
        MESSAGE_DELAY_SEC=env_float("MESSAGE_DELAY_SEC", 8.0),
        SHEETS_TIMEOUT_SEC=env_float("SHEETS_TIMEOUT_SEC", 10.0),
        SHEETS_RETRY_ATTEMPTS=env_int("SHEETS_RETRY_ATTEMPTS", 3),
        SHEETS_RETRY_DELAY_SEC=env_float("SHEETS_RETRY_DELAY_SEC", 2.0),
        SHEETS_CACHE_TTL_SEC=env_float("SHEETS_CACHE_TTL_SEC", 300.0),
        FOLLOWUP_HOUR=env_int("FOLLOWUP_HOUR", 12),
        MAX_PARTY_SIZE=env_int("MAX_PARTY_SIZE", 50),
        DEFAULT_LANGUAGE=(env_str("DEFAULT_LANGUAGE", "he") or "he").lower(),
        TRANSPORT_URL=env_str("TRANSPORT_URL"),
        TRANSPORT_TOKEN=env_str("TRANSPORT_TOKEN"),
        TRANSPORT_DRY_RUN=env_bool("TRANSPORT_DRY_RUN", False),
        CRON_TOKEN=env_str("CRON_TOKEN"),
        WEBHOOK_TOKEN=env_str("WEBHOOK_TOKEN"),
    )


# -----------------------------
# Time helpers
# -----------------------------
def event_tz() -> ZoneInfo:
    try:
        return ZoneInfo(settings().EVENT_TZ)
    except Exception:
        return ZoneInfo("Asia/Jerusalem")


def local_now() -> datetime:
    return datetime.now(timezone.utc).astimezone(event_tz())


def local_today() -> date:
    """Calendar date in the tenants' timezone (not the host clock)."""
    return local_now().date()
