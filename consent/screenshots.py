from __future__ import annotations

from pathlib import Path

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from autoauth.constants import LOGGER


class ScreenshotRecorder:
    def __init__(self, directory: str | Path, *, enabled: bool = True) -> None:
        self.directory = Path(directory)
        self.enabled = enabled
        self.captured: list[Path] = []

    async def capture(self, page: Page, stage: str) -> Path | None:
        if not self.enabled:
            return None

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{stage}.png"
        try:
            await page.screenshot(path=str(path))
        except PlaywrightError as error:
            LOGGER.warning("Could not capture %s screenshot: %s", stage, error)
            return None

        self.captured.append(path)
        LOGGER.info("Saved %s screenshot to %s", stage, path)
        return path
