#!/usr/bin/env python3
"""
Row Processor - one sheet row to one GenerateVideo request to one status write.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Tuple

from app_errors import AutomationError
from messages import GenerateVideo, Request, Response
from sheets_reader import ERROR_PREFIX, STATUS_DONE, SheetsReader, status_cell

logger = logging.getLogger('flow.rows')

SESSION_NOT_LOADED = "Automation session not loaded"
PAGE_RELOADING = "Generation failed - page reloading"
QUICK_FAILURE = "Generation failed - quick failure detected"


def normalize_key(key: str) -> str:
    return str(key).strip().lower()


def build_field_map(headers: List[str], values: List[str]) -> Dict[str, str]:
    """Map normalized headers to the row's cells; missing trailing cells become ""."""
    fields = {}
    for index, header in enumerate(headers):
        fields[normalize_key(header)] = values[index] if index < len(values) else ""
    return fields


def classify_error(response: Response) -> Tuple[str, bool]:
    """
    Reduce a failed response to the text written after "Error - ".

    Returns:
        (category, needs_cooldown). Cool-down categories mean the Flow page
        is reloading and the next row must wait for it.
    """
    message = response.error or "Generation failed"
    error_type = response.error_type or ""

    if error_type == "QuickFailure" or "disappeared within" in message:
        return QUICK_FAILURE, True
    if response.data.get("reloading") or "message channel closed" in message:
        return PAGE_RELOADING, True
    if error_type == "CommunicationLost" or "Could not establish connection" in message:
        return SESSION_NOT_LOADED, False
    return message, False


@dataclass
class RowOutcome:
    row_index: int
    success: bool
    status: str
    needs_cooldown: bool = False


class RowProcessor:

    def __init__(self, sheets: SheetsReader, send: Callable[[Request], Awaitable[Response]]):
        self.sheets = sheets
        self.send = send

    async def process(self, sheet_id: str, tab_name: str, row_index: int,
                      headers: List[str], values: List[str]) -> RowOutcome:
        """
        Run the job for one row and write "Done" or "Error - <reason>".

        Store errors from the write-back propagate; they abort the cycle.
        """
        fields = build_field_map(headers, values)
        logger.info(f"[ROW {row_index}] Sending to automation session: {fields}")
        try:
            response = await self.send(GenerateVideo(fields=fields, row_index=row_index))
        except AutomationError as e:
            response = Response.failure(e)

        if response.success:
            status, cooldown = STATUS_DONE, False
            logger.info(f"[ROW {row_index}] ✅ Video generated")
        else:
            category, cooldown = classify_error(response)
            status = f"{ERROR_PREFIX}{category}"
            logger.error(f"[ROW {row_index}] ❌ {response.error}")

        await self.sheets.write_cell(sheet_id, status_cell(tab_name, row_index), status)
        logger.info(f"[ROW {row_index}] Marked as {status}")
        return RowOutcome(row_index=row_index, success=response.success, status=status, needs_cooldown=cooldown)
