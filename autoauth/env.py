from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from auth.urls import HTTPS_DEFAULT_PORT, callback_address, is_https_uri

from .constants import (
    DEFAULT_CALLBACK_TIMEOUT_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_PAGE_TIMEOUT_SECONDS,
    DEFAULT_SCOPE,
    DEFAULT_SCREENSHOT_DIR,
    DEFAULT_SETTLE_TIMEOUT_SECONDS,
    LOGGER,
    SCHWAB_API_BASE_URL,
)

REQUIRED_ENV = (
    "SCHWAB_CLIENT_ID",
    "SCHWAB_CLIENT_SECRET",
    "SCHWAB_REDIRECT_URI",
    "SCHWAB_LOGIN_ID",
    "SCHWAB_PASSWORD",
    "SCHWAB_TLS_KEY_FILE",
    "SCHWAB_TLS_CERT_FILE",
)


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    redirect_uri: str
    login_id: str
    password: str
    tls_key_file: Path
    tls_cert_file: Path
    api_base_url: str = SCHWAB_API_BASE_URL
    scope: str = DEFAULT_SCOPE
    callback_host: str = "127.0.0.1"
    callback_port: int = HTTPS_DEFAULT_PORT
    callback_path: str = "/"
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT_SECONDS
    headless: bool = False
    page_timeout: float = DEFAULT_PAGE_TIMEOUT_SECONDS
    settle_timeout: float = DEFAULT_SETTLE_TIMEOUT_SECONDS
    flow_timeout: float | None = None
    take_screenshots: bool = True
    screenshot_dir: Path = Path(DEFAULT_SCREENSHOT_DIR)
    http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    debug: bool = True


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    return is_truthy(raw)


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number of seconds.")
    if value < 0:
        raise ConfigError(f"{key} must not be negative.")
    return value


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "See .env.example for the expected keys."
        )

    redirect_uri = os.getenv("SCHWAB_REDIRECT_URI", "").strip()
    if not is_https_uri(redirect_uri):
        raise ConfigError(
            "SCHWAB_REDIRECT_URI must be a valid HTTPS URL (for example: "
            "https://127.0.0.1:8182)."
        )

    for key in ("SCHWAB_TLS_KEY_FILE", "SCHWAB_TLS_CERT_FILE"):
        path = Path(os.getenv(key, "").strip()).expanduser()
        if not path.is_file():
            raise ConfigError(f"{key} points to a missing file: {path}")


def load_settings() -> Settings:
    validate_env()

    redirect_uri = os.getenv("SCHWAB_REDIRECT_URI", "").strip()
    host, port, path = callback_address(redirect_uri)
    flow_timeout = _get_env_float("AUTOAUTH_FLOW_TIMEOUT", 0.0)

    return Settings(
        client_id=os.getenv("SCHWAB_CLIENT_ID", "").strip(),
        client_secret=os.getenv("SCHWAB_CLIENT_SECRET", "").strip(),
        redirect_uri=redirect_uri,
        login_id=os.getenv("SCHWAB_LOGIN_ID", "").strip(),
        password=os.getenv("SCHWAB_PASSWORD", ""),
        tls_key_file=Path(os.getenv("SCHWAB_TLS_KEY_FILE", "").strip()).expanduser(),
        tls_cert_file=Path(os.getenv("SCHWAB_TLS_CERT_FILE", "").strip()).expanduser(),
        api_base_url=os.getenv("SCHWAB_API_BASE_URL", SCHWAB_API_BASE_URL).rstrip("/"),
        scope=os.getenv("SCHWAB_SCOPE", DEFAULT_SCOPE).strip() or DEFAULT_SCOPE,
        callback_host=os.getenv("AUTOAUTH_CALLBACK_HOST", "").strip() or host,
        callback_port=_get_env_int("AUTOAUTH_CALLBACK_PORT", port),
        callback_path=path,
        callback_timeout=_get_env_float(
            "AUTOAUTH_CALLBACK_TIMEOUT", DEFAULT_CALLBACK_TIMEOUT_SECONDS
        ),
        headless=_get_env_bool("AUTOAUTH_HEADLESS", False),
        page_timeout=_get_env_float("AUTOAUTH_PAGE_TIMEOUT", DEFAULT_PAGE_TIMEOUT_SECONDS),
        settle_timeout=_get_env_float(
            "AUTOAUTH_SETTLE_TIMEOUT", DEFAULT_SETTLE_TIMEOUT_SECONDS
        ),
        flow_timeout=flow_timeout or None,
        take_screenshots=_get_env_bool("AUTOAUTH_SCREENSHOTS", True),
        screenshot_dir=Path(
            os.getenv("AUTOAUTH_SCREENSHOT_DIR", "").strip() or DEFAULT_SCREENSHOT_DIR
        ),
        http_timeout=_get_env_float("AUTOAUTH_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
        debug=_get_env_bool("AUTOAUTH_DEBUG", True),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("AUTOAUTH_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
