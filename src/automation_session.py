#!/usr/bin/env python3
"""
Automation session inside the Flow page.

The session is a small helper script (window.__flowAutomation) injected into
the page. It is registered as an init script so it comes back after every
reload, and evaluated once immediately for the current document.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from playwright.async_api import Error as PlaywrightError, Page

from app_errors import AutomationError, CommunicationLost, QuickFailure
from app_settings import Timings
from automation_utils import Clock
from filename_handshake import FilenameHandshake
from job_driver import JobDriver
from messages import Response
from page_adapter import PlaywrightAdapter
from proven_browser import ProvenBrowser
from video_downloader import VideoDownloader

logger = logging.getLogger('flow.session')

HELPER_JS = """
(() => {
  if (window.__flowAutomation && window.__flowAutomation.ready) return true;
  window.__flowAutomation = {
    ready: true,
    writeText(el, text) {
      el.value = '';
      el.textContent = '';
      el.focus();
      document.execCommand('selectAll', false, null);
      document.execCommand('delete', false, null);
      el.value = text;
      el.textContent = text;
      el.dispatchEvent(new Event('input', { bubbles: true }));
      el.dispatchEvent(new Event('change', { bubbles: true }));
      el.dispatchEvent(new KeyboardEvent('keydown', { bubbles: true }));
      el.dispatchEvent(new KeyboardEvent('keyup', { bubbles: true }));
    }
  };
  return true;
})()
"""

PROBE_JS = "() => Boolean(window.__flowAutomation && window.__flowAutomation.ready)"

CHANNEL_CLOSED_MARKERS = (
    "has been closed",
    "target closed",
    "execution context was destroyed",
    "frame was detached",
    "navigat",
)

NO_RECEIVER = "Could not establish connection. Receiving end does not exist."


def translate_playwright_error(error: PlaywrightError) -> AutomationError:
    """Map a Playwright error raised mid-job to the row-level taxonomy."""
    message = str(error).strip().splitlines()[0] if str(error).strip() else type(error).__name__
    lowered = message.lower()
    if any(marker in lowered for marker in CHANNEL_CLOSED_MARKERS):
        return CommunicationLost(f"The message channel closed before a response was received ({message})",
                                 channel_closed=True)
    return AutomationError(message)


class AutomationSession:
    """One page plus its injected helper; runs GenerateVideo requests."""

    def __init__(self, page: Page, handshake: FilenameHandshake, timings: Optional[Timings] = None,
                 clock: Optional[Clock] = None, driver_factory: Optional[Callable[[], JobDriver]] = None):
        self.page = page
        self.handshake = handshake
        self.timings = timings or Timings()
        self.clock = clock or Clock()
        self._driver_factory = driver_factory or self._default_driver
        self._init_script_added = False
        self._reload_task: Optional[asyncio.Task] = None

    def _default_driver(self) -> JobDriver:
        return JobDriver(PlaywrightAdapter(self.page), self.handshake, self.timings, self.clock)

    async def inject(self) -> None:
        if not self._init_script_added:
            await self.page.add_init_script(script=HELPER_JS)
            self._init_script_added = True
        await self.page.evaluate(HELPER_JS)

    async def ping(self, timeout: Optional[float] = None) -> bool:
        """Liveness probe: is the helper present and the page responsive?"""
        timeout = self.timings.probe_timeout if timeout is None else timeout
        if self.page.is_closed():
            return False
        try:
            return bool(await asyncio.wait_for(self.page.evaluate(PROBE_JS), timeout))
        except (asyncio.TimeoutError, PlaywrightError):
            return False

    async def ensure_alive(self) -> bool:
        """Probe; if unresponsive, inject once and probe again."""
        if await self.ping():
            logger.info("[SESSION] ✅ Automation helper is loaded and responding")
            return True

        logger.info("[SESSION] Automation helper not loaded, injecting...")
        try:
            await asyncio.wait_for(self.inject(), self.timings.probe_timeout)
        except (asyncio.TimeoutError, PlaywrightError) as e:
            logger.error(f"[SESSION] ❌ Failed to inject automation helper: {e}")
            logger.error("[SESSION] SOLUTION: Please refresh the Flow tab (F5) and try again")
            return False

        await self.clock.sleep(self.timings.inject_settle)
        if await self.ping():
            logger.info("[SESSION] Automation helper injected successfully")
            return True
        logger.error("[SESSION] ❌ Automation helper still not responding after injection")
        logger.error("[SESSION] SOLUTION: Please refresh the Flow tab (F5) and try again")
        return False

    async def generate(self, fields: Dict[str, str], row_index: int) -> Response:
        if self.page.is_closed():
            return Response.failure(CommunicationLost(NO_RECEIVER))

        logger.info(f"[SESSION] Starting video generation for row {row_index}")
        driver = self._driver_factory()
        try:
            result = await driver.run(fields, row_index)
        except QuickFailure as e:
            self._schedule_reload()
            return Response.failure(e)
        except AutomationError as e:
            return Response.failure(e)
        except PlaywrightError as e:
            return Response.failure(translate_playwright_error(e))
        except Exception as e:
            logger.error(f"[SESSION] ❌ Unexpected error on row {row_index}: {e!r}")
            return Response.failure(AutomationError(str(e) or type(e).__name__))
        return Response.ok(rowIndex=row_index, files=result.filenames)

    def _schedule_reload(self) -> None:
        delay = self.timings.quick_failure_reload_after
        logger.info(f"[SESSION] Scheduling page reload in {delay:g} seconds...")
        if self._reload_task and not self._reload_task.done():
            self._reload_task.cancel()
        self._reload_task = asyncio.ensure_future(self._reload_later(delay))

    async def _reload_later(self, delay: float) -> None:
        await self.clock.sleep(delay)
        if self.page.is_closed():
            return
        logger.info("[SESSION] Reloading page now...")
        try:
            await self.page.reload()
        except PlaywrightError as e:
            logger.warning(f"[SESSION] ⚠️ Page reload failed: {e}")


class SessionLocator:
    """Finds the live Flow tab and hands out one AutomationSession per page."""

    def __init__(self, browser: ProvenBrowser, url_pattern: str, handshake: FilenameHandshake,
                 downloader: VideoDownloader, timings: Optional[Timings] = None, clock: Optional[Clock] = None):
        self.browser = browser
        self.url_pattern = url_pattern
        self.handshake = handshake
        self.downloader = downloader
        self.timings = timings or Timings()
        self.clock = clock or Clock()
        self._sessions: Dict[Page, AutomationSession] = {}

    async def locate_session(self) -> Optional[AutomationSession]:
        page = self.browser.find_target_page(self.url_pattern)
        if page is None:
            return None
        self._sessions = {p: s for p, s in self._sessions.items() if not p.is_closed()}
        session = self._sessions.get(page)
        if session is None:
            self.downloader.attach(page)
            session = AutomationSession(page, self.handshake, self.timings, self.clock)
            self._sessions[page] = session
        return session
