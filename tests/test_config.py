"""Tests for configuration loading."""

import json
import tempfile
from pathlib import Path

import pytest

from savepoint import config as config_module
from savepoint.config import SavepointConfig, find_config_file, load_config, save_config
from savepoint.exceptions import InvalidParameters


@pytest.fixture
def workspace(monkeypatch):
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir)
        monkeypatch.setattr(config_module, "USER_CONFIG_PATH", path / "home" / "config.json")
        for name in SavepointConfig.model_fields:
            monkeypatch.delenv("SAVEPOINT_" + name.upper(), raising=False)
        yield path


def test_defaults(workspace):
    config = load_config(workspace)

    assert config.cache_timeout_seconds == 300
    assert config.max_retries == 2
    assert config.retry_delay_ms == 100
    assert config.backup_prefix == "savepoint/backup/"
    assert config.backup_retention_days == 7
    assert config.github_token is None


def test_workspace_file(workspace):
    (workspace / ".savepoint.json").write_text(json.dumps({"max_snapshots": 5}))

    assert find_config_file(workspace) == workspace / ".savepoint.json"
    assert load_config(workspace).max_snapshots == 5


def test_user_file_used_when_workspace_has_none(workspace):
    save_config(SavepointConfig(page_size=7))

    assert load_config(workspace).page_size == 7


def test_environment_overrides_file(workspace, monkeypatch):
    (workspace / ".savepoint.json").write_text(json.dumps({"max_retries": 5}))
    monkeypatch.setenv("SAVEPOINT_MAX_RETRIES", "4")
    monkeypatch.setenv("SAVEPOINT_BACKUP_BEFORE_RESTORE", "false")
    monkeypatch.setenv("SAVEPOINT_GITHUB_PUSH_BRANCHES", "trunk, main")

    config = load_config(workspace)

    assert config.max_retries == 4
    assert config.backup_before_restore is False
    assert config.github_push_branches == ["trunk", "main"]


def test_invalid_json(workspace):
    (workspace / ".savepoint.json").write_text("{not json")

    with pytest.raises(InvalidParameters):
        load_config(workspace)


def test_invalid_value(workspace, monkeypatch):
    monkeypatch.setenv("SAVEPOINT_SCAN_DEPTH", "deep")

    with pytest.raises(InvalidParameters):
        load_config(workspace)


def test_save_round_trip(workspace):
    target = workspace / "saved.json"
    save_config(SavepointConfig(github_token="ghp_x"), target)

    assert load_config(config_file=target).github_token == "ghp_x"
