#!/usr/bin/env python3
"""
Filename Handshake

One-slot protocol for naming the next file a download action produces.
The page's download button takes no filename, so the driver prepares a
name right before clicking and the download interception point consumes it.

The slot is not keyed by download identity: prepare and the triggering
click must stay tightly coupled, with no other download in flight.
"""

import logging
from typing import Optional

logger = logging.getLogger('flow.handshake')


def artifact_filename(row_index: int, video_number: int, timestamp_ms: int) -> str:
    """Deterministic name for the n-th (1-based) video of a sheet row."""
    return f"row{row_index}_video{video_number}_{timestamp_ms}.mp4"


class FilenameHandshake:

    def __init__(self):
        self._pending: Optional[str] = None

    @property
    def pending(self) -> Optional[str]:
        return self._pending

    def prepare(self, filename: str) -> None:
        """Store filename as the single pending value (last writer wins)."""
        if not filename:
            raise ValueError("filename must not be empty")
        if self._pending is not None:
            logger.warning(f"⚠️ Overwriting unconsumed filename {self._pending} with {filename}")
        self._pending = filename
        logger.info(f"Prepared download rename: {filename}")

    def consume_on_next_event(self) -> Optional[str]:
        """Return and clear the pending filename; None means use default naming."""
        filename, self._pending = self._pending, None
        return filename

    def discard(self) -> None:
        """Drop a pending name whose download was never triggered."""
        if self._pending is not None:
            logger.warning(f"⚠️ Discarding unused filename {self._pending}")
        self._pending = None
