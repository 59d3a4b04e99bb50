#!/usr/bin/env python3
"""
Error taxonomy for the Flow sheet automation.

Row-level errors (AutomationError and subclasses) are caught at the row
boundary and written back to the sheet as "Error - <reason>". Store errors
abort the whole cycle; the next scheduled cycle starts from scratch.
"""

from typing import Optional


class AutomationError(Exception):
    """A failure that is fatal to the current row only."""


class ElementNotFound(AutomationError):
    """Required page element did not become visible within its wait bound."""

    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"Element not found: {selector}")


class QuickFailure(AutomationError):
    """Generation indicator vanished implausibly fast; the page will reload."""

    def __init__(self, lifetime: float, threshold: float = 10.0):
        self.lifetime = lifetime
        self.threshold = threshold
        super().__init__(
            f"Generation failed - loading indicator disappeared within "
            f"{threshold:g} seconds ({lifetime:.1f}s). Page will reload."
        )


class HangTimeout(AutomationError):
    """Generation indicator never disappeared."""

    def __init__(self, waited: float):
        self.waited = waited
        super().__init__("Generation timeout - loading indicator never disappeared")


class CommunicationLost(AutomationError):
    """
    The page session could not be reached or went away mid-call.

    channel_closed is True when the page navigated, reloaded or closed while
    a request was in flight.
    """

    def __init__(self, message: str, channel_closed: bool = False):
        self.channel_closed = channel_closed
        super().__init__(message)


class StoreError(Exception):
    """Spreadsheet store failure; aborts the cycle."""


class AuthFailure(StoreError):
    pass


class StoreUnreachable(StoreError):
    pass


class ConfigMissing(Exception):
    """No sheet identifier configured."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "No Google Sheet configured")
