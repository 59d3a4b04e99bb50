#!/usr/bin/env python3
"""
Job Driver - one end-to-end Flow generation for one sheet row.

States: IDLE -> FORM_FILLING -> SUBMITTED -> AWAITING_COMPLETION
        -> DOWNLOADING -> DONE, with ERRORED reachable from any of them.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from app_errors import AutomationError, ElementNotFound, HangTimeout, QuickFailure
from app_settings import Timings
from automation_utils import Clock
from filename_handshake import FilenameHandshake, artifact_filename
from page_adapter import (
    SELECTORS,
    PageAdapter,
    aspect_ratio_option,
    model_option,
    video_count_option,
)

logger = logging.getLogger('flow.driver')

DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_VIDEO_COUNT = 2


class JobState(Enum):
    IDLE = "idle"
    FORM_FILLING = "form_filling"
    SUBMITTED = "submitted"
    AWAITING_COMPLETION = "awaiting_completion"
    DOWNLOADING = "downloading"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class JobRequest:
    prompt: str
    aspect_ratio: Optional[str] = None
    video_count: int = DEFAULT_VIDEO_COUNT
    model: Optional[str] = None

    @classmethod
    def from_fields(cls, fields: Dict[str, str]) -> "JobRequest":
        """Read a normalized row field map (lowercase keys)."""
        prompt = (fields.get('prompt') or '').strip()
        if not prompt:
            raise AutomationError("Prompt is empty")

        aspect_ratio = (fields.get('format') or fields.get('aspect_ratio') or '').strip() or None

        raw_count = (fields.get('videos to generate') or fields.get('video_count') or '').strip()
        try:
            video_count = int(raw_count) if raw_count else DEFAULT_VIDEO_COUNT
        except ValueError:
            raise AutomationError(f"Invalid video count: {raw_count}")
        if video_count < 1:
            raise AutomationError(f"Invalid video count: {raw_count}")

        model = (fields.get('model') or '').strip() or None
        return cls(prompt=prompt, aspect_ratio=aspect_ratio, video_count=video_count, model=model)


@dataclass
class JobResult:
    row_index: int
    filenames: List[str] = field(default_factory=list)


class JobDriver:
    """
    Drives the Flow page through one generation.

    Any exception moves the driver to ERRORED with the message kept in
    ``error`` and is re-raised for the row-level caller.
    """

    def __init__(self, adapter: PageAdapter, handshake: FilenameHandshake,
                 timings: Optional[Timings] = None, clock: Optional[Clock] = None):
        self.adapter = adapter
        self.handshake = handshake
        self.timings = timings or Timings()
        self.clock = clock or Clock()
        self.state = JobState.IDLE
        self.error: Optional[str] = None

    def _enter(self, state: JobState) -> None:
        logger.debug(f"[DRIVER] {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, fields: Dict[str, str], row_index: int) -> JobResult:
        """
        Fill the form, submit, wait for the generation and download outputs.

        Args:
            fields: Normalized row field map
            row_index: 1-based sheet row, used in artifact names

        Returns:
            JobResult with the filenames whose downloads were triggered
        """
        if self.state is not JobState.IDLE:
            raise RuntimeError(f"JobDriver already used (state={self.state.value})")
        try:
            job = JobRequest.from_fields(fields)
            logger.info(f"[DRIVER] Row {row_index}: {job}")

            self._enter(JobState.FORM_FILLING)
            await self._fill_form(job)

            self._enter(JobState.SUBMITTED)
            await self.adapter.click(SELECTORS["submit_button"], self.timings.element_timeout)
            logger.info(f"[DRIVER] Row {row_index}: generation submitted")

            self._enter(JobState.AWAITING_COMPLETION)
            await self._await_completion()

            self._enter(JobState.DOWNLOADING)
            filenames = await self._download(row_index, job.video_count)

            self._enter(JobState.DONE)
            logger.info(f"[DRIVER] ✅ Row {row_index}: triggered {len(filenames)} download(s)")
            return JobResult(row_index=row_index, filenames=filenames)
        except Exception as e:
            self.error = str(e)
            self._enter(JobState.ERRORED)
            logger.error(f"[DRIVER] ❌ Row {row_index}: {e}")
            raise

    async def _fill_form(self, job: JobRequest) -> None:
        t = self.timings
        try:
            await self.adapter.click(SELECTORS["start_project"], t.new_session_timeout)
            await self.clock.sleep(1.0)
        except ElementNotFound:
            logger.info("[DRIVER] New project button not found, continuing...")

        await self.adapter.set_value(SELECTORS["prompt_input"], job.prompt, t.element_timeout)
        await self.clock.sleep(1.0)

        change_ratio = job.aspect_ratio is not None and job.aspect_ratio != DEFAULT_ASPECT_RATIO
        change_count = job.video_count != DEFAULT_VIDEO_COUNT
        if not (change_ratio or change_count or job.model):
            return

        await self.adapter.click(SELECTORS["settings_dialog"], t.element_timeout)
        await self.clock.sleep(1.0)

        if change_ratio:
            logger.info(f"[DRIVER] Setting aspect ratio: {job.aspect_ratio}")
            await self._choose(SELECTORS["aspect_ratio_dropdown"], aspect_ratio_option(job.aspect_ratio))
        if change_count:
            logger.info(f"[DRIVER] Setting video count: {job.video_count}")
            await self._choose(SELECTORS["video_count_dropdown"], video_count_option(job.video_count))
        if job.model:
            logger.info(f"[DRIVER] Selecting model: {job.model}")
            await self._choose(SELECTORS["model_dropdown"], model_option(job.model))

    async def _choose(self, dropdown: str, option: str) -> None:
        await self.adapter.click(dropdown, self.timings.element_timeout)
        await self.clock.sleep(self.timings.action_delay)
        await self.adapter.click(option, self.timings.element_timeout)
        await self.clock.sleep(self.timings.action_delay)

    async def _await_completion(self) -> None:
        t = self.timings
        indicator = SELECTORS["loading_indicator"]

        if not await self.adapter.wait_appear(indicator, t.indicator_appear_timeout):
            logger.error("[DRIVER] ⚠️ Loading indicator never appeared")
            raise QuickFailure(0.0, t.quick_failure_threshold)

        started = self.clock.monotonic()
        if not await self.adapter.wait_disappear(indicator, t.hang_timeout):
            raise HangTimeout(self.clock.monotonic() - started)

        lifetime = self.clock.monotonic() - started
        logger.info(f"[DRIVER] Loading indicator disappeared after {lifetime:.1f} seconds")
        if lifetime < t.quick_failure_threshold:
            raise QuickFailure(lifetime, t.quick_failure_threshold)

        await self.clock.sleep(t.completion_settle)

    async def _download(self, row_index: int, requested: int) -> List[str]:
        t = self.timings
        available = await self.adapter.count(SELECTORS["download_dropdown"])
        target = min(requested, available)
        logger.info(f"[DRIVER] Found {available} download buttons, downloading {target}")

        filenames = []
        for i in range(target):
            filename = artifact_filename(row_index, i + 1, self.clock.time_ms())
            self.handshake.prepare(filename)
            try:
                await self.clock.sleep(t.prepare_gap)
                await self.adapter.click_nth(SELECTORS["download_dropdown"], i)
                await self.clock.sleep(t.action_delay)
                await self.adapter.click(SELECTORS["download_menu_item"], t.download_menu_timeout)
            except Exception:
                self.handshake.discard()
                raise
            await self.clock.sleep(t.download_settle)
            filenames.append(filename)
            logger.info(f"[DRIVER] Download {i + 1}/{target} triggered: {filename}")
        return filenames
