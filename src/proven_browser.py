#!/usr/bin/env python3
"""
Proven Browser Manager

Launches a persistent Chromium profile for the Flow automation, optionally
seeds it with cookies from proven_session.json, and finds the Flow tab.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

logger = logging.getLogger('flow.browser')


class ProvenBrowser:
    """
    Browser manager - one persistent context, many tabs.
    """

    def __init__(self, profile_dir: Path, proven_session_file: Optional[Path] = None,
                 download_dir: Optional[Path] = None):
        """
        Args:
            profile_dir: Chromium user data directory (keeps the Google login)
            proven_session_file: Optional cookie export to load on start
            download_dir: Browser-side download directory
        """
        self.profile_dir = Path(profile_dir)
        self.proven_session_file = proven_session_file
        self.download_dir = download_dir

        self.playwright: Optional[Playwright] = None
        self.context: Optional[BrowserContext] = None

    async def start(self, headless: bool = False) -> BrowserContext:
        """Start Playwright and launch the persistent context."""
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self.playwright = await async_playwright().start()
        options = {
            "headless": headless,
            "accept_downloads": True,
            "viewport": {'width': 1280, 'height': 800},
            "args": ['--no-sandbox', '--disable-dev-shm-usage'],
        }
        if self.download_dir:
            options["downloads_path"] = str(self.download_dir)
        self.context = await self.playwright.chromium.launch_persistent_context(
            str(self.profile_dir), **options
        )
        logger.info(f"[OK] Persistent context launched from {self.profile_dir}")

        session_data = self._load_proven_session()
        if session_data:
            await self._add_cookies(session_data)
        return self.context

    def _load_proven_session(self) -> Optional[Dict[str, Any]]:
        if not self.proven_session_file or not self.proven_session_file.exists():
            return None
        try:
            with open(self.proven_session_file, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[ERROR] Failed to load session file {self.proven_session_file}: {e}")
            return None

    async def _add_cookies(self, session_data: Dict[str, Any]) -> None:
        cookies = []
        for cookie in session_data.get('cookies', []):
            if 'name' not in cookie or 'value' not in cookie:
                continue
            pw_cookie = {
                'name': cookie['name'],
                'value': cookie['value'],
                'domain': cookie.get('domain', '.google.com'),
                'path': cookie.get('path', '/'),
                'httpOnly': cookie.get('httpOnly', False),
                'secure': cookie.get('secure', False),
            }
            expires = cookie.get('expires', cookie.get('expiry'))
            if expires is not None:
                pw_cookie['expires'] = expires
            cookies.append(pw_cookie)
        if cookies:
            await self.context.add_cookies(cookies)
            logger.info(f"[OK] Loaded {len(cookies)} cookies")

    def find_target_page(self, url_pattern: str) -> Optional[Page]:
        """First open tab whose URL matches url_pattern (regex search)."""
        if not self.context:
            return None
        regex = re.compile(url_pattern)
        for page in self.context.pages:
            if not page.is_closed() and page.url and regex.search(page.url):
                return page
        return None

    async def open_target(self, url: str, url_pattern: str) -> Page:
        """Return the Flow tab, opening url in a new tab if none is open."""
        page = self.find_target_page(url_pattern)
        if page:
            logger.info(f"Flow tab already open: {page.url}")
            return page
        page = await self.context.new_page()
        logger.info(f"Opening {url}")
        await page.goto(url, timeout=60000)
        return page

    async def close(self) -> None:
        """Clean up browser instances."""
        if self.context:
            await self.context.close()
            self.context = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
