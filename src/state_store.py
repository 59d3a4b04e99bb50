#!/usr/bin/env python3
"""
State Store Module for Flow Automation

Persistent key-value store (one JSON file) holding the automation's
RunState across restarts. RunState lives under the single key "flowState".
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Set

from app_errors import ConfigMissing

if os.name == "posix":
    import fcntl
else:
    fcntl = None

logger = logging.getLogger('flow.state')

DEFAULT_TAB_NAME = "Sheet1"
DEFAULT_POLL_INTERVAL = 60


@dataclass
class RunState:
    is_running: bool = False
    sheet_id: str = ""
    sheet_tab_name: str = DEFAULT_TAB_NAME
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL
    processed_rows: int = 0
    total_rows: int = 0
    processed_row_keys: Set[str] = field(default_factory=set)

    SET_FIELDS = ("processed_row_keys",)

    def require_sheet(self) -> str:
        if not self.sheet_id:
            raise ConfigMissing()
        return self.sheet_id

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in self.SET_FIELDS:
            data[name] = sorted(data[name])
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunState":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for name in cls.SET_FIELDS:
            if name in values:
                values[name] = set(values[name] or [])
        if 'poll_interval_seconds' in values:
            values['poll_interval_seconds'] = int(values['poll_interval_seconds']) or DEFAULT_POLL_INTERVAL
        return cls(**values)


class StateStore:
    """
    JSON-file key-value store.

    Every write replaces the whole file atomically, so a reader in another
    process never sees a partial write. Read-modify-write cycles hold an
    advisory lock on run_state.json.lock (POSIX), so a `stop` from the CLI
    cannot be overwritten by the worker's concurrent update.
    """

    STATE_KEY = "flowState"

    def __init__(self, state_dir: Path):
        """
        Args:
            state_dir: Directory holding run_state.json
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.state_file = self.state_dir / "run_state.json"
        self.lock_file = self.state_dir / "run_state.json.lock"
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self):
        with self._lock:
            if fcntl is None:
                yield
            else:
                with open(self.lock_file, 'a') as lock:
                    fcntl.flock(lock, fcntl.LOCK_EX)
                    try:
                        yield
                    finally:
                        fcntl.flock(lock, fcntl.LOCK_UN)

    def _load_all(self) -> Dict[str, Any]:
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"❌ {self.state_file} is not valid JSON ({e}), starting from empty state")
            return {}

    def _save_all(self, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix="run_state.", suffix=".tmp", dir=self.state_dir)
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.state_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._locked():
            data = self._load_all()
            data[key] = value
            data["_updated_at"] = datetime.now().isoformat()
            self._save_all(data)

    def load_run_state(self) -> RunState:
        return RunState.from_dict(self.get(self.STATE_KEY))

    def save_run_state(self, state: RunState) -> None:
        self.set(self.STATE_KEY, state.to_dict())

    def update_run_state(self, **changes) -> RunState:
        """Re-read RunState, apply changes, write it back; returns the new state."""
        with self._locked():
            data = self._load_all()
            state = RunState.from_dict(data.get(self.STATE_KEY))
            for name, value in changes.items():
                if not hasattr(state, name):
                    raise AttributeError(f"RunState has no field {name!r}")
                setattr(state, name, value)
            data[self.STATE_KEY] = state.to_dict()
            data["_updated_at"] = datetime.now().isoformat()
            self._save_all(data)
        return state


def start_run(store: StateStore, sheet_id: Optional[str] = None, tab_name: Optional[str] = None,
              interval_seconds: Optional[int] = None) -> RunState:
    """
    Mark the run active, resetting the per-run processed cache.

    Raises:
        ConfigMissing: no sheet given and none configured
    """
    changes: Dict[str, Any] = {'is_running': True, 'processed_rows': 0, 'processed_row_keys': set()}
    if sheet_id:
        changes['sheet_id'] = sheet_id
    if tab_name:
        changes['sheet_tab_name'] = tab_name
    if interval_seconds:
        changes['poll_interval_seconds'] = int(interval_seconds)
    if not sheet_id:
        store.load_run_state().require_sheet()
    state = store.update_run_state(**changes)
    logger.info(f"🚀 Automation started for sheet {state.sheet_id} ({state.sheet_tab_name}), "
                f"every {state.poll_interval_seconds}s")
    return state


def stop_run(store: StateStore) -> RunState:
    state = store.update_run_state(is_running=False)
    logger.info("⏸️ Automation stopped")
    return state
