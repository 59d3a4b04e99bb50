import asyncio

import pytest

from app_errors import CommunicationLost, QuickFailure
from conftest import FakeSheets
from messages import GenerateVideo, Response
from row_processor import (
    PAGE_RELOADING,
    QUICK_FAILURE,
    SESSION_NOT_LOADED,
    RowProcessor,
    build_field_map,
    classify_error,
)


def test_field_map_normalizes_headers_and_pads_short_rows():
    fields = build_field_map([" Status ", "Prompt", "Format"], ["", "A cat surfing"])
    assert fields == {"status": "", "prompt": "A cat surfing", "format": ""}


@pytest.mark.parametrize("response, expected", [
    (Response.failure(QuickFailure(3.2)), (QUICK_FAILURE, True)),
    (Response.failure(CommunicationLost("gone", channel_closed=True)), (PAGE_RELOADING, True)),
    (Response(success=False, error="The message channel closed before a response was received"),
     (PAGE_RELOADING, True)),
    (Response(success=False, error="Could not establish connection. Receiving end does not exist."),
     (SESSION_NOT_LOADED, False)),
    (Response.failure(CommunicationLost("Could not establish connection.")), (SESSION_NOT_LOADED, False)),
    (Response(success=False, error="Element not found: //textarea"), ("Element not found: //textarea", False)),
])
def test_classify_error(response, expected):
    assert classify_error(response) == expected


def run_row(response_or_exc, values=("", "A cat")):
    sheets = FakeSheets([["Status", "Prompt"], list(values)])
    sent = []

    async def send(request):
        sent.append(request)
        if isinstance(response_or_exc, Exception):
            raise response_or_exc
        return response_or_exc

    outcome = asyncio.run(RowProcessor(sheets, send).process("sheet", "Sheet1", 2, ["Status", "Prompt"], list(values)))
    return outcome, sheets, sent


def test_success_writes_done():
    outcome, sheets, sent = run_row(Response.ok(rowIndex=2, files=[]))

    assert outcome.success
    assert sheets.writes == [("Sheet1!A2", "Done")]
    assert sent == [GenerateVideo(fields={"status": "", "prompt": "A cat"}, row_index=2)]


def test_quick_failure_writes_error_and_requests_cooldown():
    outcome, sheets, _ = run_row(Response.failure(QuickFailure(2.0)))

    assert not outcome.success
    assert outcome.needs_cooldown
    assert sheets.writes == [("Sheet1!A2", "Error - Generation failed - quick failure detected")]


def test_raised_automation_error_becomes_row_error():
    outcome, sheets, _ = run_row(CommunicationLost("Could not establish connection. Receiving end does not exist."))

    assert not outcome.needs_cooldown
    assert sheets.writes == [("Sheet1!A2", "Error - Automation session not loaded")]
