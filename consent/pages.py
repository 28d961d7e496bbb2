from __future__ import annotations

from enum import Enum

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from autoauth.constants import LOGGER

LOGIN_ID_INPUT = "#loginIdInput"
PASSWORD_INPUT = "#passwordInput"
LOGIN_BUTTON = "#btnLogin"

MOBILE_APPROVE_BUTTON = "#mobile_approve"
REMEMBER_DEVICE_OPTION = "#remember-device-yes-content"
CONTINUE_BUTTON = "text=Continue"

TERMS_CHECKBOX = "#acceptTerms"
SUBMIT_BUTTON = "#submit-btn"
MODAL_AGREE_BUTTON = "#agree-modal-btn-"

ACCOUNT_CHECKBOX = "input[type='checkbox']"
DONE_BUTTON = "#cancel-btn"


class PageVariant(str, Enum):
    LOGIN = "login"
    MOBILE_APPROVAL = "mobile_approval"
    TERMS = "terms"
    ACCOUNT_SELECTION = "account_selection"
    CONFIRMATION = "confirmation"
    UNKNOWN = "unknown"


# Probed in order; the first marker present decides the variant.
POST_LOGIN_MARKERS: tuple[tuple[PageVariant, str], ...] = (
    (PageVariant.MOBILE_APPROVAL, MOBILE_APPROVE_BUTTON),
    (PageVariant.TERMS, TERMS_CHECKBOX),
)


async def classify_post_login(page: Page) -> PageVariant:
    """Identify the page shown after the login form was submitted."""
    for variant, marker in POST_LOGIN_MARKERS:
        if await page.locator(marker).count():
            return variant
    return PageVariant.UNKNOWN


async def wait_for_post_login_page(page: Page, timeout_ms: float) -> PageVariant:
    """Poll until a classification marker renders, then classify the page.

    The page renders client-side after the login navigation completes, so the
    markers can appear well after ``load``. When none shows up within
    ``timeout_ms`` the page is classified as it stands, which yields
    :attr:`PageVariant.UNKNOWN`.
    """
    markers = ", ".join(marker for _, marker in POST_LOGIN_MARKERS)
    try:
        await page.locator(markers).first.wait_for(state="attached", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        LOGGER.warning("No post-login marker appeared within %sms.", timeout_ms)
    return await classify_post_login(page)
