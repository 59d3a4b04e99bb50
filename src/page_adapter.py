#!/usr/bin/env python3
"""
Page integration adapter.

The Flow page has no public API; DOM events are the only integration
surface. Everything that knows about page structure lives here so the Job
Driver depends only on locate / set_value / click / wait_appear /
wait_disappear.
"""

import logging

from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app_errors import ElementNotFound

logger = logging.getLogger('flow.page')

SELECTORS = {
    "start_project": '//button//i[contains(text(), "add")]',
    "prompt_input": '//textarea',
    "settings_dialog": '//button[not(@aria-haspopup)]//*[text()="volume_up"]/..',
    "aspect_ratio_dropdown": '//*[text()="crop_landscape" or text()="crop_portrait"]/..',
    "video_count_dropdown": '(//button[../..//*[text()="crop_landscape" or text()="crop_portrait"]])[2]',
    "model_dropdown": '(//button[../..//*[text()="crop_landscape" or text()="crop_portrait"]])[3]',
    "submit_button": '(//*[text()="arrow_forward"]/ancestor::button)[1]',
    "loading_indicator": '//*[text()="%"]',
    "download_dropdown": '(//button[@id]//i[text()="download"]/..)',
    "download_menu_item": '(//*[@role="menuitem"])[2]',
}


def aspect_ratio_option(ratio: str) -> str:
    return f'//span[contains(text(), "{ratio}")]'


def video_count_option(count: int) -> str:
    return f'//span[contains(text(), "{count}")]'


def model_option(model: str) -> str:
    return f'//span[text()="{model}"]'


class PageAdapter:
    """Narrow contract the Job Driver drives. Timeouts are in seconds."""

    async def locate(self, selector: str, timeout: float):
        raise NotImplementedError

    async def set_value(self, selector: str, text: str, timeout: float) -> None:
        raise NotImplementedError

    async def click(self, selector: str, timeout: float) -> None:
        raise NotImplementedError

    async def click_nth(self, selector: str, index: int) -> None:
        raise NotImplementedError

    async def count(self, selector: str) -> int:
        raise NotImplementedError

    async def wait_appear(self, selector: str, timeout: float) -> bool:
        raise NotImplementedError

    async def wait_disappear(self, selector: str, timeout: float) -> bool:
        raise NotImplementedError


class PlaywrightAdapter(PageAdapter):
    """
    PageAdapter over a Playwright page, addressing elements by XPath.

    Text entry goes through the injected window.__flowAutomation helper, which
    sets value/textContent and fires the input, change and keyboard events the
    page's framework listens for.
    """

    def __init__(self, page: Page):
        self.page = page

    def _locator(self, selector: str) -> Locator:
        return self.page.locator(f"xpath={selector}")

    async def locate(self, selector: str, timeout: float) -> Locator:
        locator = self._locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            raise ElementNotFound(selector)
        return locator

    async def set_value(self, selector: str, text: str, timeout: float) -> None:
        locator = await self.locate(selector, timeout)
        await locator.evaluate("(el, text) => window.__flowAutomation.writeText(el, text)", text)

    async def click(self, selector: str, timeout: float) -> None:
        locator = await self.locate(selector, timeout)
        await locator.click()

    async def click_nth(self, selector: str, index: int) -> None:
        await self._locator(selector).nth(index).click()

    async def count(self, selector: str) -> int:
        return await self._locator(selector).count()

    async def wait_appear(self, selector: str, timeout: float) -> bool:
        try:
            await self._locator(selector).first.wait_for(state="visible", timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_disappear(self, selector: str, timeout: float) -> bool:
        try:
            await self._locator(selector).first.wait_for(state="hidden", timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False
