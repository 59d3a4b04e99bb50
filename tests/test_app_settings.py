import json
import re

from app_settings import DEFAULT_FLOW_URL_PATTERN, Timings, load_settings


def test_timing_defaults():
    t = Timings()
    assert t.reload_cooldown == 70.0
    assert t.row_throttle == 2.0
    assert t.quick_failure_threshold == 10.0
    assert t.probe_timeout == 5.0


def test_timings_from_settings_file(tmp_path, monkeypatch):
    settings_file = tmp_path / "settings.json"
    settings_file.write_text(json.dumps({"timings": {"hang_timeout": 600, "bogus": 1}}))
    monkeypatch.delenv("LOG_FILE", raising=False)

    settings = load_settings(settings_file=settings_file)

    assert settings.timings.hang_timeout == 600.0
    assert settings.timings.row_throttle == 2.0
    assert settings.log_file == "automation.log"


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "st"))
    monkeypatch.setenv("HEADLESS", "true")
    monkeypatch.setenv("LOG_FILE", "")

    settings = load_settings(settings_file=tmp_path / "none.json")

    assert settings.state_dir == tmp_path / "st"
    assert settings.browser_profile_dir == tmp_path / "st" / "browser_profile"
    assert settings.proven_session_file == tmp_path / "st" / "proven_session.json"
    assert settings.headless
    assert settings.log_file is None


def test_flow_url_pattern_matches_locale_variants():
    pattern = re.compile(DEFAULT_FLOW_URL_PATTERN)
    assert pattern.search("https://labs.google/fx/tools/flow/project/123")
    assert pattern.search("https://labs.google/fx/vi/tools/flow")
    assert not pattern.search("https://labs.google/fx/tools/whisk")
