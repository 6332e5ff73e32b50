"""Unit test for settings configuration."""

import json

import pytest
from pydantic import ValidationError

from memfabric.config.settings import Settings, load_settings


def test_default_settings():
    """Test that default settings are correctly configured."""
    settings = Settings()
    assert settings.orchestrator.write_deadline_s == 5.0
    assert settings.orchestrator.search_deadline_s == 3.0
    assert settings.orchestrator.namespace == "default"
    assert settings.anchor.enabled is True
    assert settings.anchor.ledger_url is None
    assert settings.log_level == "INFO"


def test_default_backends():
    """The four default systems with their priorities and intervals."""
    settings = Settings()
    by_name = {b.name: b for b in settings.backends}

    assert set(by_name) == {"primary", "secondary", "vector", "cognitive"}
    assert by_name["primary"].priority == 1
    assert by_name["secondary"].reconciliation_interval_ms == 60000
    assert by_name["vector"].kind == "vector"
    assert by_name["cognitive"].priority == 3


def test_paths_configuration():
    """Test that default paths are properly set."""
    settings = Settings()
    assert settings.paths.data_dir == "data"
    assert settings.paths.snapshot_db is None


def test_load_from_json_file(tmp_path):
    path = tmp_path / "memfabric.json"
    path.write_text(json.dumps({
        "orchestrator": {"write_deadline_s": 1.5},
        "backends": [{"name": "only", "kind": "sqlite", "priority": 2}],
    }))

    settings = load_settings(path, environ={})

    assert settings.orchestrator.write_deadline_s == 1.5
    assert [b.name for b in settings.backends] == ["only"]
    assert settings.backends[0].kind == "sqlite"


def test_env_overrides_file(tmp_path):
    path = tmp_path / "memfabric.json"
    path.write_text(json.dumps({"orchestrator": {"write_deadline_s": 1.5}}))

    settings = load_settings(path, environ={
        "MEMFABRIC_WRITE_DEADLINE_S": "0.25",
        "MEMFABRIC_LEDGER_URL": "http://ledger.local",
        "MEMFABRIC_ANCHOR_ENABLED": "false",
        "MEMFABRIC_LOG_LEVEL": "DEBUG",
    })

    assert settings.orchestrator.write_deadline_s == 0.25
    assert settings.anchor.ledger_url == "http://ledger.local"
    assert settings.anchor.enabled is False
    assert settings.log_level == "DEBUG"


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        load_settings(environ={"MEMFABRIC_WRITE_DEADLINE_S": "-1"})

    with pytest.raises(ValidationError):
        Settings.model_validate({"backends": [{"name": "x", "kind": "redis"}]})

    with pytest.raises(ValidationError):
        Settings.model_validate({"backends": [{"name": "x", "reconciliation_interval_ms": 0}]})


def test_reconcile_clock_skew():
    assert Settings().orchestrator.reconcile_clock_skew_s == 0.0

    settings = load_settings(environ={"MEMFABRIC_RECONCILE_CLOCK_SKEW_S": "2.5"})
    assert settings.orchestrator.reconcile_clock_skew_s == 2.5

    with pytest.raises(ValidationError):
        load_settings(environ={"MEMFABRIC_RECONCILE_CLOCK_SKEW_S": "-1"})
