import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from app_settings import DEFAULT_FLOW_URL_PATTERN
from proven_browser import ProvenBrowser


def fake_page(url, closed=False):
    page = MagicMock()
    page.url = url
    page.is_closed.return_value = closed
    return page


def test_find_target_page_skips_other_and_closed_tabs(tmp_path):
    browser = ProvenBrowser(tmp_path / "profile")
    flow = fake_page("https://labs.google/fx/tools/flow/project/1")
    browser.context = MagicMock()
    browser.context.pages = [
        fake_page("https://docs.google.com/spreadsheets/d/x"),
        fake_page("https://labs.google/fx/tools/flow", closed=True),
        flow,
    ]

    assert browser.find_target_page(DEFAULT_FLOW_URL_PATTERN) is flow


def test_find_target_page_before_start(tmp_path):
    assert ProvenBrowser(tmp_path).find_target_page(DEFAULT_FLOW_URL_PATTERN) is None


def test_proven_session_cookies_loaded(tmp_path):
    session_file = tmp_path / "proven_session.json"
    session_file.write_text(json.dumps({"cookies": [
        {"name": "SID", "value": "abc", "domain": ".google.com", "expiry": 1900000000},
        {"name": "broken"},
    ]}))
    browser = ProvenBrowser(tmp_path / "profile", session_file)
    browser.context = MagicMock()
    browser.context.add_cookies = AsyncMock()

    asyncio.run(browser._add_cookies(browser._load_proven_session()))

    cookies = browser.context.add_cookies.await_args.args[0]
    assert [c["name"] for c in cookies] == ["SID"]
    assert cookies[0]["expires"] == 1900000000
