#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Flow Automation - Google Sheet driven Veo video generation

Polls a Google Sheet, fills the Flow form in a browser tab for each row that
is not Done, downloads the generated videos with deterministic names and
writes the row status back.

Commands:
    configure   set the sheet (URL or id), tab and poll interval
    start/stop  flip the persisted run flag (picked up by `serve`)
    serve       long-running worker: browser + scheduler
    run-once    one cycle now, then exit
    status      show run state (and sheet counts with --sync)
    test-connection, downloads
"""

import argparse
import asyncio
import logging
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app_errors import ConfigMissing, StoreError
from app_settings import Settings, load_settings
from automation_session import SessionLocator
from automation_utils import setup_logging
from cycle_scheduler import CycleScheduler
from filename_handshake import FilenameHandshake
from proven_browser import ProvenBrowser
from sheets_reader import SheetsReader, count_unprocessed, extract_sheet_id, status_column_range
from state_store import StateStore, start_run, stop_run
from video_downloader import VideoDownloader

logger = logging.getLogger('flow.main')


def open_store(settings: Settings) -> StateStore:
    """StateStore for settings, seeding the sheet from .env on first use."""
    store = StateStore(settings.state_dir)
    state = store.load_run_state()
    if not state.sheet_id and settings.google_sheets_id:
        changes = {'sheet_id': settings.google_sheets_id}
        if settings.google_sheet_name:
            changes['sheet_tab_name'] = settings.google_sheet_name
        store.update_run_state(**changes)
    return store


class FlowWorker:
    """Wires browser, sheet client, downloader and cycle scheduler together."""

    def __init__(self, settings: Settings, headless: bool = False):
        self.settings = settings
        self.headless = headless or settings.headless
        self.store = open_store(settings)
        self.handshake = FilenameHandshake()
        self.downloader = VideoDownloader(self.handshake, settings.download_dir)
        self.sheets = SheetsReader(settings.google_credentials_path)
        self.browser = ProvenBrowser(settings.browser_profile_dir, settings.proven_session_file,
                                     settings.download_dir)
        self.scheduler = AsyncIOScheduler()
        self.locator = SessionLocator(self.browser, settings.flow_url_pattern, self.handshake,
                                      self.downloader, settings.timings)
        self.cycle = CycleScheduler(self.store, self.sheets, self.locator, self.handshake,
                                    self.downloader, settings.timings, scheduler=self.scheduler)

    async def open(self) -> None:
        await self.browser.start(headless=self.headless)
        await self.browser.open_target(self.settings.flow_url, self.settings.flow_url_pattern)

    async def close(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down.")
        await self.browser.close()

    async def serve(self) -> int:
        stop_evt = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_evt.set)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(stop_evt.set))

        try:
            await self.open()
            self.scheduler.start()
            self.cycle.restore_alarm()
            self.scheduler.add_job(
                self.cycle.watch_state,
                trigger=IntervalTrigger(seconds=self.settings.timings.watch_interval),
                id='watchState',
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("✅ Worker running - use `start` / `stop` to control, Ctrl+C to exit")
            await stop_evt.wait()
            logger.info("Shutdown signal received")
        finally:
            await self.close()
        return 0

    async def run_once(self) -> int:
        state = self.store.load_run_state()
        state.require_sheet()
        if not state.is_running:
            print("Automation is stopped. Run `start` first.")
            return 1
        try:
            await self.open()
            report = await self.cycle.run_cycle()
        finally:
            await self.close()
        print(f"Cycle finished: {report}")
        return 0 if report and not report.aborted else 1


def cmd_configure(args, settings: Settings) -> int:
    store = open_store(settings)
    changes = {}
    if args.sheet:
        sheet_id = extract_sheet_id(args.sheet)
        if not sheet_id:
            print(f"❌ Not a Google Sheet URL or id: {args.sheet}")
            return 1
        changes['sheet_id'] = sheet_id
    if args.tab:
        changes['sheet_tab_name'] = args.tab
    if args.interval:
        if args.interval < 1:
            print("❌ Interval must be at least 1 second")
            return 1
        changes['poll_interval_seconds'] = args.interval
    state = store.update_run_state(**changes) if changes else store.load_run_state()
    print(f"Sheet ID: {state.sheet_id or '(not set)'}")
    print(f"Tab: {state.sheet_tab_name}")
    print(f"Poll interval: {state.poll_interval_seconds}s")
    return 0


def cmd_start(args, settings: Settings) -> int:
    store = open_store(settings)
    sheet_id = extract_sheet_id(args.sheet) if args.sheet else None
    state = start_run(store, sheet_id, args.tab, args.interval)
    print(f"✅ Automation running for sheet {state.sheet_id} - the worker (`serve`) picks it up")
    return 0


def cmd_stop(args, settings: Settings) -> int:
    stop_run(open_store(settings))
    print("⏸️ Automation stopped")
    return 0


def cmd_status(args, settings: Settings) -> int:
    store = open_store(settings)
    state = store.load_run_state()
    if args.sync:
        sheet_id = state.require_sheet()
        sheets = SheetsReader(settings.google_credentials_path)
        rows = asyncio.run(sheets.read_rows(sheet_id, status_column_range(state.sheet_tab_name)))
        total = max(len(rows) - 1, 0)
        pending = count_unprocessed(rows)
        state = store.update_run_state(processed_rows=total - pending, total_rows=total)
    print("=" * 60)
    print("Flow Automation - Status")
    print("=" * 60)
    print(f"Running: {'yes' if state.is_running else 'no'}")
    print(f"Sheet ID: {state.sheet_id or '(not set)'}")
    print(f"Tab: {state.sheet_tab_name}")
    print(f"Poll interval: {state.poll_interval_seconds}s")
    print(f"Processed: {state.processed_rows}/{state.total_rows}")
    print(f"Processed this run: {len(state.processed_row_keys)}")
    return 0


def cmd_test_connection(args, settings: Settings) -> int:
    state = open_store(settings).load_run_state()
    sheet_id = state.require_sheet()
    sheets = SheetsReader(settings.google_credentials_path)
    ok = asyncio.run(sheets.test_connection(sheet_id, state.sheet_tab_name))
    return 0 if ok else 1


def cmd_downloads(args, settings: Settings) -> int:
    downloader = VideoDownloader(FilenameHandshake(), settings.download_dir)
    downloads = downloader.recent_downloads(args.limit)
    if not downloads:
        print(f"No downloads in {settings.download_dir}")
        return 0
    for item in downloads:
        print(f"{item['modified']}  {item['size']:>12}  {item['filename']}")
    return 0


def cmd_serve(args, settings: Settings) -> int:
    return asyncio.run(FlowWorker(settings, headless=args.headless).serve())


def cmd_run_once(args, settings: Settings) -> int:
    return asyncio.run(FlowWorker(settings, headless=args.headless).run_once())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Flow Automation - Google Sheet driven video generation")
    parser.add_argument('--env-file', help='Path to .env file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('configure', help='Set sheet, tab and poll interval')
    p.add_argument('--sheet', help='Google Sheet URL or id')
    p.add_argument('--tab', help='Sheet tab name')
    p.add_argument('--interval', type=int, help='Poll interval in seconds')
    p.set_defaults(func=cmd_configure)

    p = sub.add_parser('start', help='Start automation')
    p.add_argument('--sheet', help='Google Sheet URL or id')
    p.add_argument('--tab', help='Sheet tab name')
    p.add_argument('--interval', type=int, help='Poll interval in seconds')
    p.set_defaults(func=cmd_start)

    p = sub.add_parser('stop', help='Stop automation')
    p.set_defaults(func=cmd_stop)

    p = sub.add_parser('status', help='Show run state')
    p.add_argument('--sync', action='store_true', help='Refresh counts from the sheet')
    p.set_defaults(func=cmd_status)

    p = sub.add_parser('serve', help='Run the worker')
    p.add_argument('--headless', action='store_true', help='Run browser headless')
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser('run-once', help='Run one cycle and exit')
    p.add_argument('--headless', action='store_true', help='Run browser headless')
    p.set_defaults(func=cmd_run_once)

    p = sub.add_parser('test-connection', help='Check Google Sheets access')
    p.set_defaults(func=cmd_test_connection)

    p = sub.add_parser('downloads', help='List recent downloads')
    p.add_argument('--limit', type=int, default=10)
    p.set_defaults(func=cmd_downloads)
    return parser


def main(argv=None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    setup_logging(settings.log_file, logging.DEBUG if args.verbose else logging.INFO)

    try:
        return args.func(args, settings)
    except ConfigMissing:
        print("❌ Please configure Google Sheet first: configure --sheet <url>")
        return 1
    except StoreError as e:
        print(f"❌ Google Sheets error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
