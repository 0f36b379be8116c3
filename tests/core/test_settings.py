import json
from unittest.mock import patch

import pytest

from browserwarden.core.config import ConfigManager, LifecycleSettings
from browserwarden.core.state import SessionKind

@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the global config file at a temp dir and clear env overrides."""
    for name in LifecycleSettings.model_fields:
        monkeypatch.delenv(f"{ConfigManager.ENV_PREFIX}{name.upper()}", raising=False)
    config_file = tmp_path / "home" / "config.json"
    with patch.object(ConfigManager, "CONFIG_DIR", config_file.parent), \
            patch.object(ConfigManager, "CONFIG_FILE", config_file):
        yield config_file

def test_defaults():
    settings = LifecycleSettings()
    assert settings.session_timeout_seconds == 30 * 60
    assert settings.cleanup_interval_seconds == 5 * 60
    assert settings.max_memory_mb == 2048
    assert settings.memory_eviction_fraction == 0.25
    assert settings.zombie_slack_factor == 2
    assert settings.engine_process_pattern == "headless_shell|chromium"
    assert settings.zombie_kill_pattern == "headless_shell"
    assert settings.default_viewport == {"width": 1920, "height": 1080}

def test_derived_directories(tmp_path):
    settings = LifecycleSettings(base_dir=tmp_path)
    settings.ensure_dirs()
    assert settings.screenshot_dir == tmp_path / "screenshot"
    assert settings.test_dir.is_dir()
    assert settings.log_dir.is_dir()

@pytest.mark.parametrize("field, value", [
    ("session_timeout_seconds", 0),
    ("cleanup_interval_seconds", -1),
    ("max_memory_mb", 0),
    ("memory_eviction_fraction", 0),
    ("memory_eviction_fraction", 1.5),
    ("zombie_slack_factor", 0),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValueError):
        LifecycleSettings(**{field: value})

def test_local_file_overrides_global(isolated_config, tmp_path):
    isolated_config.parent.mkdir(parents=True)
    isolated_config.write_text(json.dumps({"session_timeout_seconds": 100, "max_memory_mb": 512}))
    (tmp_path / ".browserwardenrc").write_text(json.dumps({"session_timeout_seconds": 200}))

    settings = ConfigManager.load_settings(cwd=tmp_path)
    assert settings.session_timeout_seconds == 200
    assert settings.max_memory_mb == 512

def test_env_overrides_files(isolated_config, tmp_path, monkeypatch):
    (tmp_path / "browserwarden.json").write_text(json.dumps({"max_memory_mb": 512}))
    monkeypatch.setenv("BROWSERWARDEN_MAX_MEMORY_MB", "1024")
    monkeypatch.setenv("BROWSERWARDEN_HEADLESS", "false")

    settings = ConfigManager.load_settings(cwd=tmp_path)
    assert settings.max_memory_mb == 1024
    assert settings.headless is False

def test_explicit_overrides_win_and_none_is_ignored(isolated_config, tmp_path, monkeypatch):
    monkeypatch.setenv("BROWSERWARDEN_SESSION_TIMEOUT_SECONDS", "60")
    settings = ConfigManager.load_settings(cwd=tmp_path, session_timeout_seconds=90, max_memory_mb=None)
    assert settings.session_timeout_seconds == 90
    assert settings.max_memory_mb == 2048

def test_invalid_config_reported_as_value_error(isolated_config, tmp_path):
    (tmp_path / ".browserwardenrc").write_text(json.dumps({"zombie_slack_factor": 0}))
    with pytest.raises(ValueError, match="Invalid configuration"):
        ConfigManager.load_settings(cwd=tmp_path)

def test_save_config_round_trip(isolated_config, tmp_path):
    assert ConfigManager.save_config({"cleanup_interval_seconds": 30}) is True
    assert ConfigManager.load_settings(cwd=tmp_path).cleanup_interval_seconds == 30

def test_session_kind_labels():
    assert SessionKind.BROWSER.label == "Session"
    assert SessionKind.ELECTRON.label == "Electron session"
