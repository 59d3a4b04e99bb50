#!/usr/bin/env python3
"""
Cycle Scheduler - the single-flight control loop.

One cycle: read RunState -> read the sheet -> find the Flow tab -> make sure
the automation helper answers -> for each row that is not Done: mark
"Processing...", run it, write the terminal status, throttle.

Cycles are triggered by the periodic ``automationCycle`` job and by
CheckUnprocessed pokes; the cycle lock turns any overlap into a no-op.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app_errors import CommunicationLost, ConfigMissing, StoreError
from app_settings import Timings
from automation_session import NO_RECEIVER, AutomationSession, SessionLocator
from automation_utils import Clock
from filename_handshake import FilenameHandshake
from messages import (
    CheckDownloads,
    CheckUnprocessed,
    GenerateVideo,
    Ping,
    PrepareDownload,
    Request,
    Response,
)
from row_processor import RowProcessor
from sheets_reader import (
    STATUS_PROCESSING,
    SheetsReader,
    count_unprocessed,
    data_range,
    is_done,
    row_status,
    status_cell,
    status_column_range,
)
from state_store import StateStore, start_run, stop_run
from video_downloader import VideoDownloader

logger = logging.getLogger('flow.cycle')

ALARM_NAME = 'automationCycle'


@dataclass
class CycleReport:
    unprocessed: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: bool = False
    aborted: Optional[str] = None


class CycleScheduler:
    """
    Coordinator owning the cycle lock, the active session and the alarm.
    """

    def __init__(self, state_store: StateStore, sheets: SheetsReader, locator: SessionLocator,
                 handshake: FilenameHandshake, downloader: VideoDownloader,
                 timings: Optional[Timings] = None, clock: Optional[Clock] = None,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.state_store = state_store
        self.sheets = sheets
        self.locator = locator
        self.handshake = handshake
        self.downloader = downloader
        self.timings = timings or Timings()
        self.clock = clock or Clock()
        self.scheduler = scheduler if scheduler is not None else AsyncIOScheduler()

        self._lock = asyncio.Lock()
        self._active_session: Optional[AutomationSession] = None
        self._armed_interval: Optional[int] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def is_cycle_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one pass over all rows that are not Done.

        Returns:
            CycleReport, or None when another cycle already holds the lock
        """
        if self._lock.locked():
            logger.info("[CYCLE] ⚠️ Automation already running, skipping this cycle")
            return None

        async with self._lock:
            logger.info("[CYCLE] ===== START =====")
            try:
                report = await self._run_locked()
            except ConfigMissing as e:
                logger.error(f"[CYCLE] ❌ {e}")
                report = CycleReport(aborted="config missing")
            except StoreError as e:
                logger.error(f"[CYCLE] ❌ Google Sheets error, aborting cycle: {e}")
                report = CycleReport(aborted="store unavailable")
            finally:
                self._active_session = None
                logger.info("[CYCLE] Lock released")
            logger.info(f"[CYCLE] Complete: {report}")
            logger.info("[CYCLE] ===== END =====")
            return report

    async def _run_locked(self) -> CycleReport:
        state = self.state_store.load_run_state()
        if not state.is_running:
            logger.info("[CYCLE] Not running, clearing alarm")
            self.cancel_alarm()
            return CycleReport(stopped=True)

        sheet_id = state.require_sheet()
        tab = state.sheet_tab_name
        logger.info(f"[CYCLE] Reading Google Sheet: {sheet_id} ({tab})")
        rows = await self.sheets.read_rows(sheet_id, data_range(tab))

        report = CycleReport()
        if len(rows) <= 1:
            logger.info("[CYCLE] No data rows")
            return report

        report.unprocessed = count_unprocessed(rows)
        logger.info(f"[CYCLE] Found {len(rows) - 1} rows, {report.unprocessed} unprocessed")
        if report.unprocessed == 0:
            logger.info("[CYCLE] ✅ All rows processed, nothing to do")
            return report

        session = await self.locator.locate_session()
        if session is None:
            logger.warning("[CYCLE] Flow tab not found")
            report.aborted = "target tab not found"
            return report
        if not await session.ensure_alive():
            report.aborted = "automation session unresponsive"
            return report

        self._active_session = session
        processor = RowProcessor(self.sheets, self.dispatch)
        headers = rows[0]

        for i in range(1, len(rows)):
            if not self.state_store.load_run_state().is_running:
                logger.info("[CYCLE] Stopped by user")
                report.stopped = True
                break

            row_index = i + 1
            values = rows[i]
            status = row_status(values)
            if is_done(status):
                logger.info(f"[CYCLE] Row {row_index}: Already processed (status: {status}), skipping")
                report.skipped += 1
                continue

            logger.info(f"[CYCLE] Processing row {row_index}")
            await self.sheets.write_cell(sheet_id, status_cell(tab, row_index), STATUS_PROCESSING)
            outcome = await processor.process(sheet_id, tab, row_index, headers, values)

            if outcome.success:
                report.processed += 1
                self._remember_processed(tab, row_index)
            else:
                report.failed += 1

            if outcome.needs_cooldown:
                logger.info(f"[CYCLE] Row {row_index}: Page is reloading, waiting "
                            f"{self.timings.reload_cooldown:g} seconds...")
                await self.clock.sleep(self.timings.reload_cooldown)
                logger.info(f"[CYCLE] Row {row_index}: Continuing after reload...")

            await self.clock.sleep(self.timings.row_throttle)

        return report

    def _remember_processed(self, tab: str, row_index: int) -> None:
        keys = self.state_store.load_run_state().processed_row_keys
        keys.add(f"{tab}!{row_index}")
        self.state_store.update_run_state(processed_row_keys=keys)

    # ------------------------------------------------------------------
    # Request envelope
    # ------------------------------------------------------------------

    async def dispatch(self, request: Request) -> Response:
        """Route one request variant; unknown variants are a programming error."""
        if isinstance(request, Ping):
            session = self._active_session or await self.locator.locate_session()
            if session is not None and await session.ping():
                return Response.ok(message="Automation session loaded")
            return Response(success=False, error="Automation session not responding")

        if isinstance(request, GenerateVideo):
            session = self._active_session
            if session is None:
                return Response.failure(CommunicationLost(NO_RECEIVER))
            return await session.generate(request.fields, request.row_index)

        if isinstance(request, PrepareDownload):
            self.handshake.prepare(request.filename)
            return Response.ok(message=f"Ready to rename to {request.filename}")

        if isinstance(request, CheckDownloads):
            return Response.ok(downloads=self.downloader.recent_downloads(request.limit))

        if isinstance(request, CheckUnprocessed):
            return await self._check_unprocessed()

        raise TypeError(f"Unhandled request variant: {request!r}")

    async def _check_unprocessed(self) -> Response:
        state = self.state_store.load_run_state()
        if not state.is_running:
            return Response.ok(hasUnprocessed=False, count=0)
        try:
            sheet_id = state.require_sheet()
            rows = await self.sheets.read_rows(sheet_id, status_column_range(state.sheet_tab_name))
        except (StoreError, ConfigMissing) as e:
            logger.error(f"[CHECK] Error checking for unprocessed rows: {e}")
            return Response.failure(e)

        count = count_unprocessed(rows)
        total = max(len(rows) - 1, 0)
        self.state_store.update_run_state(processed_rows=total - count, total_rows=total)
        logger.info(f"[CHECK] Unprocessed check: {count} rows pending")

        if count > 0 and not self._lock.locked():
            logger.info("[CHECK] Found unprocessed rows, triggering automation cycle...")
            self._poke()
        return Response.ok(hasUnprocessed=count > 0, count=count)

    def _poke(self) -> None:
        task = asyncio.ensure_future(self.run_cycle())
        self._background.add(task)
        task.add_done_callback(self._poke_done)

    def _poke_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[CHECK] Cycle error", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Alarm / commands
    # ------------------------------------------------------------------

    def arm_alarm(self, interval_seconds: int) -> None:
        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=ALARM_NAME,
            name=ALARM_NAME,
            replace_existing=True,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        self._armed_interval = interval_seconds
        logger.info(f"⏰ Alarm {ALARM_NAME} armed every {interval_seconds}s")

    def cancel_alarm(self) -> None:
        try:
            self.scheduler.remove_job(ALARM_NAME)
            logger.info(f"⏰ Alarm {ALARM_NAME} cleared")
        except JobLookupError:
            pass
        self._armed_interval = None

    def alarm_armed(self) -> bool:
        return self.scheduler.get_job(ALARM_NAME) is not None

    def restore_alarm(self) -> None:
        """Re-arm the cycle after a restart if the run was active."""
        state = self.state_store.load_run_state()
        if state.is_running and state.sheet_id:
            self.arm_alarm(state.poll_interval_seconds)

    def start(self, sheet_id: Optional[str] = None, tab_name: Optional[str] = None,
              interval_seconds: Optional[int] = None) -> None:
        state = start_run(self.state_store, sheet_id, tab_name, interval_seconds)
        self.arm_alarm(state.poll_interval_seconds)

    def stop(self) -> None:
        stop_run(self.state_store)
        self.cancel_alarm()

    async def watch_state(self) -> None:
        """
        Reconcile the alarm with persisted RunState and poke for pending rows.

        Start/stop commands from another process only touch RunState; this
        job is how the worker notices them.
        """
        state = self.state_store.load_run_state()
        if not state.is_running:
            if self.alarm_armed():
                self.cancel_alarm()
            return
        if not state.sheet_id:
            logger.warning("⚠️ Automation is running but no Google Sheet is configured")
            return
        if not self.alarm_armed() or self._armed_interval != state.poll_interval_seconds:
            self.arm_alarm(state.poll_interval_seconds)
        await self.dispatch(CheckUnprocessed())
