"""Shared fakes: virtual clock, in-memory sheet, scripted page adapter and session."""

import asyncio
import re
from typing import Dict, List, Optional

import pytest

from app_errors import ElementNotFound, StoreUnreachable
from app_settings import Timings
from messages import Response
from state_store import StateStore


class FakeClock:
    """Virtual time: sleep() advances instantly and yields to the loop."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def time_ms(self) -> int:
        return int(self.now * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSheets:
    """In-memory stand-in for SheetsReader (async read_rows/write_cell)."""

    def __init__(self, rows: List[List[str]]):
        self.rows = [list(r) for r in rows]
        self.writes: List[tuple] = []
        self.reads: List[str] = []
        self.fail_reads = False
        self.fail_writes = False

    async def read_rows(self, sheet_id: str, range_spec: str) -> List[List[str]]:
        self.reads.append(range_spec)
        if self.fail_reads:
            raise StoreUnreachable("Read range failed: connection refused")
        await asyncio.sleep(0)
        if range_spec.endswith("!A:A"):
            return [r[:1] for r in self.rows]
        return [list(r) for r in self.rows]

    async def write_cell(self, sheet_id: str, range_spec: str, value: str) -> None:
        if self.fail_writes:
            raise StoreUnreachable("Write cell failed: connection refused")
        await asyncio.sleep(0)
        self.writes.append((range_spec, value))
        row_index = int(re.search(r"(\d+)$", range_spec).group(1))
        row = self.rows[row_index - 1]
        if row:
            row[0] = value
        else:
            row.append(value)

    def statuses(self) -> List[str]:
        return [r[0] if r else "" for r in self.rows[1:]]


class FakeAdapter:
    """
    Scripted PageAdapter.

    missing: selectors that never become visible.
    indicator_lifetime: seconds wait_disappear "takes" (None = never gone).
    """

    def __init__(self, clock: FakeClock, missing=(), indicator_appears: bool = True,
                 indicator_lifetime: Optional[float] = 60.0, download_buttons: int = 2):
        self.clock = clock
        self.missing = set(missing)
        self.indicator_appears = indicator_appears
        self.indicator_lifetime = indicator_lifetime
        self.download_buttons = download_buttons
        self.calls: List[tuple] = []
        self.fail_click_nth = False

    async def locate(self, selector, timeout):
        if selector in self.missing:
            self.clock.advance(timeout)
            raise ElementNotFound(selector)
        return selector

    async def set_value(self, selector, text, timeout):
        await self.locate(selector, timeout)
        self.calls.append(("set_value", selector, text))

    async def click(self, selector, timeout):
        await self.locate(selector, timeout)
        self.calls.append(("click", selector))

    async def click_nth(self, selector, index):
        if self.fail_click_nth:
            raise ElementNotFound(selector)
        self.calls.append(("click_nth", selector, index))

    async def count(self, selector):
        return self.download_buttons

    async def wait_appear(self, selector, timeout):
        self.calls.append(("wait_appear", selector))
        if not self.indicator_appears:
            self.clock.advance(timeout)
        return self.indicator_appears

    async def wait_disappear(self, selector, timeout):
        self.calls.append(("wait_disappear", selector))
        if self.indicator_lifetime is None or self.indicator_lifetime > timeout:
            self.clock.advance(timeout)
            return False
        self.clock.advance(self.indicator_lifetime)
        return True

    def clicked(self, selector) -> bool:
        return ("click", selector) in self.calls


class FakeSession:
    """AutomationSession double with scripted liveness and per-row responses."""

    def __init__(self, alive: bool = True, responses: Optional[Dict[int, Response]] = None):
        self.alive = alive
        self.responses = responses or {}
        self.generated: List[int] = []
        self.ping_calls = 0
        self.ensure_calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.on_generate = None

    async def ping(self, timeout=None):
        self.ping_calls += 1
        return self.alive

    async def ensure_alive(self):
        self.ensure_calls += 1
        return self.alive

    async def generate(self, fields, row_index):
        self.generated.append(row_index)
        if self.gate is not None:
            await self.gate.wait()
        if self.on_generate:
            self.on_generate(row_index)
        return self.responses.get(row_index, Response.ok(rowIndex=row_index, files=[]))


class FakeLocator:
    def __init__(self, session: Optional[FakeSession]):
        self.session = session
        self.calls = 0

    async def locate_session(self):
        self.calls += 1
        return self.session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timings():
    return Timings()


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state")
