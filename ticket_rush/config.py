"""
Ticket Rush - Configuration Module
Retry budgets, countdown policy, leak-mode pacing and notifier settings
"""

import os
from dotenv import load_dotenv

load_dotenv()
load_dotenv("config.env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int_set(name: str, default: str) -> frozenset:
    raw = os.getenv(name, default)
    return frozenset(int(part) for part in raw.split(",") if part.strip())


class Config:
    """Centralized configuration for Ticket Rush"""

    # ==================== Platform ====================
    SHOW_BASE_URL = os.getenv("SHOW_BASE_URL", "https://show.bilibili.com")
    API_BASE_URL = os.getenv("API_BASE_URL", "https://api.bilibili.com")
    USER_AGENT = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Linux; Android 6.0; Nexus 5 Build/MRA58N) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/134.0.0.0 Mobile Safari/537.36",
    )
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))
    COOKIE = os.getenv("COOKIE", "")

    # ==================== Retry Budgets ====================
    MAX_TOKEN_RETRY = int(os.getenv("MAX_TOKEN_RETRY", "5"))
    MAX_CONFIRM_RETRY = int(os.getenv("MAX_CONFIRM_RETRY", "4"))
    MAX_ORDER_RETRY = int(os.getenv("MAX_ORDER_RETRY", "30"))
    MAX_FAKE_CHECK_RETRY = int(os.getenv("MAX_FAKE_CHECK_RETRY", "10"))
    RETRY_INTERVAL_MS = int(os.getenv("RETRY_INTERVAL_MS", "400"))

    # ==================== Step Pacing ====================
    TOKEN_ERROR_BACKOFF = 1.0       # After any failed token attempt
    CONFIRM_RETRY_INTERVAL = 0.0    # Timed / Direct
    LEAK_CONFIRM_INTERVAL = 0.3     # Leak mode
    FAKE_CHECK_INTERVAL = 0.5
    NEED_RETRY_AFTER = 3            # Order attempts before clicking "retry" instead of "confirm"

    # ==================== Countdown ====================
    TIMEZONE = os.getenv("TIMEZONE", "Asia/Shanghai")
    COUNTDOWN_COARSE_THRESHOLD = 20.0
    COUNTDOWN_COARSE_STEP = 15.0
    COUNTDOWN_FINE_THRESHOLD = 1.3
    COUNTDOWN_FINE_STEP = 1.0
    COUNTDOWN_FINAL_SLEEP = 0.8
    MILLISECOND_TIMESTAMP_FLOOR = 10_000_000_000

    # ==================== Leak Mode ====================
    LEAK_POLL_INTERVAL = float(os.getenv("LEAK_POLL_INTERVAL", "2.0"))
    LEAK_PROJECT_ERROR_BACKOFF = 1.0
    # Off by default: the project-level sale flag is not checked before attempting
    LEAK_REQUIRE_SALE_FLAG = _env_bool("LEAK_REQUIRE_SALE_FLAG")
    LEAK_SALE_FLAGS = _env_int_set("LEAK_SALE_FLAGS", "2,8")
    REAL_NAME_BINDINGS = (1, 2)

    # ==================== Token Generator ====================
    TOKEN_SALT_MIN = 2000
    TOKEN_SALT_MAX = 10000  # Exclusive

    # ==================== Click Signal ====================
    SCREEN_WIDTH = 1080
    SCREEN_HEIGHT = 2400
    FAST_CLICK_MODE = _env_bool("FAST_CLICK_MODE")

    # ==================== Telegram ====================
    TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")
    TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
    NOTIFY_MIN_INTERVAL = 1.0

    # ==================== Logging ====================
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "")
