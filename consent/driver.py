"""Browser-driven walk through the Schwab consent pages.

The flow is a small state machine: login, one post-login branch picked by
:func:`consent.pages.classify_post_login`, account selection and confirmation.
The last click makes the provider redirect the browser to the callback
listener with an authorization code.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable

from playwright.async_api import Locator, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from autoauth.constants import (
    BROWSER_ARGS,
    BROWSER_USER_AGENT,
    DEFAULT_PAGE_TIMEOUT_SECONDS,
    DEFAULT_SETTLE_TIMEOUT_SECONDS,
    LOGGER,
    TYPING_DELAY_MS,
)
from consent import pages
from consent.pages import PageVariant
from consent.screenshots import ScreenshotRecorder

# Scrolls elements rendered below the fold into the viewport before clicking.
SCROLL_INTO_VIEW_JS = """
(selectors) => {
  for (const selector of selectors) {
    const element = document.querySelector(selector);
    if (element) {
      element.scrollIntoView({ block: "center" });
    }
  }
}
"""

PageFactory = Callable[[], AsyncContextManager[Page]]


class PageWaitTimeout(RuntimeError):
    def __init__(self, description: str) -> None:
        super().__init__(f"Timed out waiting for {description}.")
        self.description = description


@dataclass
class FlowOutcome:
    completed: bool
    stage: PageVariant | None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return not self.completed


class ConsentFlowDriver:
    def __init__(
        self,
        *,
        authorize_url: str,
        login_id: str,
        password: str,
        screenshots: ScreenshotRecorder,
        headless: bool = False,
        page_timeout: float = DEFAULT_PAGE_TIMEOUT_SECONDS,
        settle_timeout: float = DEFAULT_SETTLE_TIMEOUT_SECONDS,
        flow_timeout: float | None = None,
        page_factory: PageFactory | None = None,
    ) -> None:
        self.authorize_url = authorize_url
        self.login_id = login_id
        self.password = password
        self.screenshots = screenshots
        self.headless = headless
        self.page_timeout_ms = page_timeout * 1000
        self.settle_timeout_ms = settle_timeout * 1000
        self.flow_timeout = flow_timeout
        self.stage: PageVariant | None = None
        self._page_factory = page_factory or self.launch_browser

    @asynccontextmanager
    async def launch_browser(self) -> AsyncIterator[Page]:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=list(BROWSER_ARGS),
            )
            try:
                context = await browser.new_context(
                    user_agent=BROWSER_USER_AGENT,
                    ignore_https_errors=True,
                )
                page = await context.new_page()
                page.set_default_timeout(self.page_timeout_ms)
                yield page
            finally:
                await browser.close()
                LOGGER.info("Browser closed.")

    async def run(self) -> FlowOutcome:
        """Drive the consent pages once; failures are reported, not raised."""
        try:
            async with self._page_factory() as page:
                if self.flow_timeout:
                    await asyncio.wait_for(self.drive(page), timeout=self.flow_timeout)
                else:
                    await self.drive(page)
        except asyncio.TimeoutError as error:
            LOGGER.error(
                "Consent flow exceeded %ss at stage %s.",
                self.flow_timeout,
                self._stage_name(),
            )
            return FlowOutcome(completed=False, stage=self.stage, error=error)
        except Exception as error:
            LOGGER.error("Error during consent automation at stage %s: %s", self._stage_name(), error)
            return FlowOutcome(completed=False, stage=self.stage, error=error)

        LOGGER.info("Consent automation completed.")
        return FlowOutcome(completed=True, stage=self.stage)

    async def drive(self, page: Page) -> None:
        await self.login(page)

        variant = await pages.wait_for_post_login_page(page, self.settle_timeout_ms)
        LOGGER.info("Post-login page classified as %s (%s)", variant.value, page.url)
        handlers = {
            PageVariant.MOBILE_APPROVAL: self.approve_mobile_device,
            PageVariant.TERMS: self.accept_terms,
            PageVariant.UNKNOWN: self.record_unknown_page,
        }
        self.stage = variant
        await handlers[variant](page)

        await self.select_accounts(page)
        await self.confirm(page)

    # -- primitives ------------------------------------------------------------

    async def wait_visible(self, page: Page, selector: str, description: str) -> Locator:
        locator = page.locator(selector).first
        try:
            await locator.wait_for(state="visible")
        except PlaywrightTimeoutError as error:
            raise PageWaitTimeout(description) from error
        LOGGER.info("%s is visible", description)
        return locator

    async def wait_and_click(self, page: Page, selector: str, description: str) -> None:
        locator = await self.wait_visible(page, selector, description)
        await locator.click()
        LOGGER.info("Clicked %s", description)

    async def type_slowly(self, page: Page, selector: str, text: str, description: str) -> None:
        locator = await self.wait_visible(page, selector, description)
        await locator.click()
        await locator.press_sequentially(text, delay=TYPING_DELAY_MS)

    @asynccontextmanager
    async def wait_for_navigation(self, page: Page, message: str) -> AsyncIterator[None]:
        """Wrap an action that makes the browser load a new page."""
        try:
            async with page.expect_navigation(wait_until="load"):
                yield
        except PlaywrightTimeoutError as error:
            raise PageWaitTimeout(f"navigation ({message})") from error
        LOGGER.info(message)

    async def ensure_checked(self, page: Page, selector: str, description: str) -> int:
        """Click a checkbox and click again if the first click did not register."""
        await self.wait_and_click(page, selector, description)
        clicks = 1
        if not await page.locator(selector).first.is_checked():
            LOGGER.info("%s is still unchecked; clicking again", description)
            await self.wait_and_click(page, selector, description)
            clicks += 1
        return clicks

    # -- states ----------------------------------------------------------------

    async def login(self, page: Page) -> None:
        self.stage = PageVariant.LOGIN
        await page.goto(self.authorize_url, wait_until="load")
        await self.screenshots.capture(page, "login-page")
        LOGGER.info("Navigation to login page successful.")

        await self.type_slowly(page, pages.LOGIN_ID_INPUT, self.login_id, "Login ID input")
        # The password field can render only once the login id is filled in.
        await self.type_slowly(page, pages.PASSWORD_INPUT, self.password, "Password input")
        await self.screenshots.capture(page, "filled-form")

        async with self.wait_for_navigation(
            page, "Navigation to authenticator or terms page successful."
        ):
            await self.wait_and_click(page, pages.LOGIN_BUTTON, "Login button")

    async def approve_mobile_device(self, page: Page) -> None:
        LOGGER.info("Detected authenticators page - handling mobile approval")
        await self.wait_and_click(page, pages.MOBILE_APPROVE_BUTTON, "Mobile approve button")
        await self.wait_and_click(page, pages.REMEMBER_DEVICE_OPTION, "Remember device option")
        await self.wait_and_click(
            page, pages.CONTINUE_BUTTON, "Continue button after remember device"
        )

        await self.wait_and_click(page, pages.TERMS_CHECKBOX, "Terms checkbox")
        await self.wait_and_click(page, pages.SUBMIT_BUTTON, "Submit button")
        async with self.wait_for_navigation(page, "Navigation after terms acceptance"):
            await self.wait_and_click(page, pages.MODAL_AGREE_BUTTON, "Modal agree button")
        async with self.wait_for_navigation(page, "Completed mobile authentication step"):
            await self.wait_and_click(page, pages.CONTINUE_BUTTON, "Final continue button")

    async def accept_terms(self, page: Page) -> None:
        LOGGER.info("Detected terms acceptance page - handling terms acceptance")
        await page.evaluate(SCROLL_INTO_VIEW_JS, [pages.TERMS_CHECKBOX, pages.SUBMIT_BUTTON])
        LOGGER.info("Scrolled elements into view")

        await self.wait_and_click(page, pages.TERMS_CHECKBOX, "Terms checkbox")
        await self.wait_and_click(page, pages.SUBMIT_BUTTON, "Submit button")
        async with self.wait_for_navigation(page, "Terms accepted successfully."):
            await self.wait_and_click(page, pages.MODAL_AGREE_BUTTON, "Modal agree button")

    async def record_unknown_page(self, page: Page) -> None:
        LOGGER.warning("Unknown page type encountered at %s. Taking a screenshot for review.", page.url)
        await self.screenshots.capture(page, "unknown-page")

    async def select_accounts(self, page: Page) -> None:
        self.stage = PageVariant.ACCOUNT_SELECTION
        await self.wait_visible(page, pages.ACCOUNT_CHECKBOX, "Account checkbox")
        await self.screenshots.capture(page, "accounts-page")
        await self.ensure_checked(page, pages.ACCOUNT_CHECKBOX, "Account checkbox")
        await self.screenshots.capture(page, "accounts-checked")

        async with self.wait_for_navigation(page, "Navigation to confirmation page successful."):
            await self.wait_and_click(page, pages.SUBMIT_BUTTON, "Continue button on accounts page")

    async def confirm(self, page: Page) -> None:
        self.stage = PageVariant.CONFIRMATION
        await self.screenshots.capture(page, "confirmation-page")
        async with self.wait_for_navigation(page, "Redirect to callback listener successful."):
            await self.wait_and_click(page, pages.DONE_BUTTON, "Done button")
        await self.screenshots.capture(page, "final-redirect")

    def _stage_name(self) -> str:
        return self.stage.value if self.stage else "start"
