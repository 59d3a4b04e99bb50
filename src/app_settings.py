#!/usr/bin/env python3
"""
Settings for the Flow sheet automation.

Paths and identifiers come from the environment (.env via python-dotenv).
Timing overrides come from config/settings.json when that file exists.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger('flow.settings')

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_FLOW_URL = "https://labs.google/fx/tools/flow"
# Locale segment is optional: labs.google/fx/vi/tools/flow, labs.google/fx/tools/flow
DEFAULT_FLOW_URL_PATTERN = r"labs\.google/fx/(?:[A-Za-z-]+/)?tools/flow"


@dataclass
class Timings:
    """All waits, in seconds."""

    probe_timeout: float = 5.0
    inject_settle: float = 1.0
    row_throttle: float = 2.0
    reload_cooldown: float = 70.0
    quick_failure_threshold: float = 10.0
    indicator_appear_timeout: float = 15.0
    hang_timeout: float = 1200.0
    element_timeout: float = 10.0
    new_session_timeout: float = 2.0
    download_menu_timeout: float = 5.0
    prepare_gap: float = 0.2
    download_settle: float = 1.5
    completion_settle: float = 2.0
    action_delay: float = 0.5
    quick_failure_reload_after: float = 60.0
    watch_interval: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Timings":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"⚠️ Ignoring unknown timing setting: {key}")
                continue
            values[key] = float(value)
        return cls(**values)


@dataclass
class Settings:
    google_credentials_path: Optional[str] = None
    google_sheets_id: Optional[str] = None
    google_sheet_name: Optional[str] = None
    state_dir: Path = PROJECT_ROOT / "state"
    download_dir: Path = PROJECT_ROOT / "downloads"
    browser_profile_dir: Path = PROJECT_ROOT / "state" / "browser_profile"
    flow_url: str = DEFAULT_FLOW_URL
    flow_url_pattern: str = DEFAULT_FLOW_URL_PATTERN
    headless: bool = False
    log_file: Optional[str] = "automation.log"
    timings: Timings = field(default_factory=Timings)

    @property
    def proven_session_file(self) -> Path:
        return self.state_dir / "proven_session.json"


def _resolve(path_str: Optional[str], default: Path) -> Path:
    if not path_str:
        return default
    path = Path(path_str)
    if not path.is_absolute():
        path = (PROJECT_ROOT / path).resolve()
    return path


def _load_timings(settings_file: Path) -> Timings:
    if not settings_file.exists():
        return Timings()
    try:
        with open(settings_file, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"⚠️ Could not read {settings_file}: {e}, using default timings")
        return Timings()
    return Timings.from_dict(data.get("timings", {}))


def load_settings(env_file: Optional[str] = None, settings_file: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment and config/settings.json.

    Args:
        env_file: Optional explicit .env path
        settings_file: Optional explicit settings.json path

    Returns:
        Populated Settings
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    credentials = os.getenv('GOOGLE_CREDENTIALS_JSON_PATH')
    if credentials and not os.path.isabs(credentials):
        credentials = str((PROJECT_ROOT / credentials).resolve())

    state_dir = _resolve(os.getenv('STATE_DIR'), PROJECT_ROOT / "state")

    return Settings(
        google_credentials_path=credentials,
        google_sheets_id=os.getenv('GOOGLE_SHEETS_ID'),
        google_sheet_name=os.getenv('GOOGLE_SHEET_NAME'),
        state_dir=state_dir,
        download_dir=_resolve(os.getenv('DOWNLOAD_DIR'), PROJECT_ROOT / "downloads"),
        browser_profile_dir=_resolve(os.getenv('BROWSER_PROFILE_DIR'), state_dir / "browser_profile"),
        flow_url=os.getenv('FLOW_URL', DEFAULT_FLOW_URL),
        flow_url_pattern=os.getenv('FLOW_URL_PATTERN', DEFAULT_FLOW_URL_PATTERN),
        headless=os.getenv('HEADLESS', '').strip().lower() in ('1', 'true', 'yes'),
        log_file=os.getenv('LOG_FILE', 'automation.log') or None,
        timings=_load_timings(settings_file or PROJECT_ROOT / "config" / "settings.json"),
    )
