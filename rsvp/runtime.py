"""
🧠 RSVP Engine Runtime Core
---------------------------
Centralized utilities for logging, retries and small time/phone helpers
shared by every module in the package.
"""

from __future__ import annotations
import asyncio
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

# Internal state flags
_LOGGING_CONFIGURED = False
_GLOBAL_HOOK_INSTALLED = False
_CORE_ENV_LOGGED = False
_DIGIT_PATTERN = re.compile(r"\d+")


# ────────────────────────────────────────────────
# ENV MASKING + LOGGING CONFIG
# ────────────────────────────────────────────────
def mask_secret(value: Optional[str]) -> str:
    """Mask sensitive values (sheet secrets, tokens) for log lines."""
    if not value:
        return "<missing>"
    trimmed = value.strip()
    if len(trimmed) <= 4:
        return "*" * len(trimmed)
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    return f"{trimmed[:3]}...{trimmed[-3:]}"


def _normalize_level(value: int | str | None) -> int:
    """Normalize string or int log level."""
    if value is None:
        env_level = os.getenv("RSVP_LOG_LEVEL")
        if env_level:
            value = env_level
        else:
            return logging.INFO
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: int | str | None = None) -> None:
    """Initialize root logging configuration once."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=_normalize_level(level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _LOGGING_CONFIGURED = True
    _log_core_env()


def get_logger(name: str = "rsvp") -> logging.Logger:
    """Return module-specific logger."""
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)


# ────────────────────────────────────────────────
# GLOBAL EXCEPTION HOOK
# ────────────────────────────────────────────────
def install_global_exception_hook() -> None:
    """Install a catch-all global exception hook (logs full traceback)."""
    global _GLOBAL_HOOK_INSTALLED
    if _GLOBAL_HOOK_INSTALLED:
        return

    def _hook(exc_type, exc, tb):
        logger = get_logger("uncaught")
        logger.error("Uncaught exception (%s): %s", exc_type.__name__, exc, exc_info=(exc_type, exc, tb))

    sys.excepthook = _hook
    _GLOBAL_HOOK_INSTALLED = True


# ────────────────────────────────────────────────
# CORE ENV LOGGING
# ────────────────────────────────────────────────
def _log_core_env() -> None:
    """Logs masked environment variables for observability."""
    global _CORE_ENV_LOGGED
    if _CORE_ENV_LOGGED:
        return
    _CORE_ENV_LOGGED = True
    logger = logging.getLogger("env")
    logger.info(
        "Core env summary:\n"
        "• DataDir=%s | EventTZ=%s | CountryCode=%s\n"
        "• TransportURL=%s | TransportToken=%s | DryRun=%s\n"
        "• BatchSize=%s | MessageDelay=%ss | CronToken=%s",
        os.getenv("RSVP_DATA_DIR", "./data"),
        os.getenv("EVENT_TZ", "Asia/Jerusalem"),
        os.getenv("COUNTRY_CODE", "972"),
        bool(os.getenv("TRANSPORT_URL")),
        mask_secret(os.getenv("TRANSPORT_TOKEN")),
        os.getenv("TRANSPORT_DRY_RUN", "false"),
        os.getenv("MESSAGE_BATCH_SIZE", "10"),
        os.getenv("MESSAGE_DELAY_SEC", "8"),
        mask_secret(os.getenv("CRON_TOKEN")),
    )


# ────────────────────────────────────────────────
# TIME UTILITIES
# ────────────────────────────────────────────────
def utc_now() -> datetime:
    """Return UTC datetime (always timezone-aware)."""
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Return ISO8601 UTC timestamp (Z suffix)."""
    return utc_now().isoformat(timespec="seconds").replace("+00:00", "Z")


# ────────────────────────────────────────────────
# PHONE UTILITIES
# ────────────────────────────────────────────────
def only_digits(value: str | None) -> str:
    """Extract all digits from a string."""
    if value is None:
        return ""
    return "".join(_DIGIT_PATTERN.findall(str(value)))


# ────────────────────────────────────────────────
# RETRY UTILITIES
# ────────────────────────────────────────────────
async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 1.0,
    exceptions: Iterable[type[BaseException]] = (Exception,),
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Await ``func`` up to ``attempts`` times, sleeping ``delay`` between tries.

    ``func`` must be idempotent: a retried call may repeat a write that the
    remote side already applied. With the default ``backoff`` of 1.0 the
    delay is fixed.
    """
    log = logger or get_logger(__name__)
    exceptions = tuple(exceptions)
    attempts = max(1, int(attempts))
    attempt = 1
    while True:
        try:
            return await func()
        except exceptions as exc:
            if attempt >= attempts:
                log.error("Retry exhausted after %s attempts: %s", attempt, exc)
                raise
            wait = delay * (backoff ** (attempt - 1))
            log.warning("Retryable error (%s/%s): %s; sleeping %.2fs", attempt, attempts, exc, wait)
            await asyncio.sleep(wait)
            attempt += 1


# ────────────────────────────────────────────────
# INIT (auto install global hook)
# ────────────────────────────────────────────────
install_global_exception_hook()
