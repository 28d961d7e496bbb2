from __future__ import annotations

import logging

LOGGER = logging.getLogger("autoauth")

SCHWAB_API_BASE_URL = "https://api.schwabapi.com"
DEFAULT_SCOPE = "readonly"
DEFAULT_CALLBACK_TIMEOUT_SECONDS = 60.0
DEFAULT_PAGE_TIMEOUT_SECONDS = 30.0
DEFAULT_SETTLE_TIMEOUT_SECONDS = 10.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_SCREENSHOT_DIR = "screenshots"

# Keystroke delay used when typing credentials into the login form.
TYPING_DELAY_MS = 100

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--ignore-certificate-errors",
    "--disable-web-security",
    "--disable-features=SecureDNS,EnableDNSOverHTTPS",
)
