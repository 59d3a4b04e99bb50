#!/usr/bin/env python3
"""
Video Downloader Module for Flow Automation

Intercepts downloads started on the Flow page and saves them under the name
prepared through the filename handshake.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Collection, Dict, List, Set

from playwright.async_api import Download, Error as PlaywrightError, Page

from filename_handshake import FilenameHandshake

logger = logging.getLogger('flow.downloads')


def uniquify(path: Path, reserved: Collection[Path] = ()) -> Path:
    """Return path, or 'name (n).ext' for the first n that is neither on disk nor reserved."""
    def taken(p: Path) -> bool:
        return p.exists() or p in reserved

    if not taken(path):
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({n}){path.suffix}")
        if not taken(candidate):
            return candidate
        n += 1


class VideoDownloader:
    """
    Download interception point for the target pages.

    Each download event consumes the handshake exactly once; with no
    prepared name the browser's suggested filename is kept.
    """

    def __init__(self, handshake: FilenameHandshake, download_dir: Path):
        """
        Args:
            handshake: Shared filename handshake
            download_dir: Directory to save downloaded videos
        """
        self.handshake = handshake
        self.download_dir = Path(download_dir)
        self.download_dir.mkdir(parents=True, exist_ok=True)
        self._attached: List[Page] = []
        self._in_flight: Set[Path] = set()

    def attach(self, page: Page) -> None:
        """Listen for downloads on page (once per page)."""
        if any(p is page for p in self._attached):
            return
        self._attached = [p for p in self._attached if not p.is_closed()]
        page.on("download", self.handle_download)
        self._attached.append(page)
        logger.info(f"📁 Download directory: {self.download_dir}")

    def resolve_target(self, suggested_filename: str) -> Path:
        """Consume the pending name and pick a collision-free local path."""
        prepared = self.handshake.consume_on_next_event()
        if prepared:
            logger.info(f"✅ Renaming download to: {prepared}")
            return uniquify(self.download_dir / prepared, self._in_flight)
        logger.warning(f"⚠️ No prepared filename, using default: {suggested_filename}")
        return uniquify(self.download_dir / (suggested_filename or "download"), self._in_flight)

    async def handle_download(self, download: Download) -> None:
        # Resolve before any await so the slot is consumed at event time.
        target = self.resolve_target(download.suggested_filename)
        self._in_flight.add(target)
        try:
            await download.save_as(target)
        except PlaywrightError as e:
            reason = await download.failure()
            logger.error(f"❌ Download to {target.name} failed: {reason or e}")
            return
        finally:
            self._in_flight.discard(target)
        logger.info(f"📥 Saved {target}")

    def recent_downloads(self, limit: int = 10) -> List[Dict[str, object]]:
        """Newest files in the download directory."""
        files = [p for p in self.download_dir.iterdir() if p.is_file()]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        result = []
        for path in files[:limit]:
            stat = path.stat()
            result.append({
                "filename": path.name,
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            })
        return result
