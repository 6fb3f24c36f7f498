"""Readiness tests. The live run needs config, packages and storage; the backend API is optional."""
import pytest

from notify_sync import settings as settings_module
from notify_sync.config_store import ConfigStore
from notify_sync.readiness import check_config, check_storage, is_ready, run_all_checks
from notify_sync.settings import Settings


def test_is_ready_requires_core_checks_only():
    checks = {
        "config": (True, "ok"),
        "packages": (True, "ok"),
        "storage": (True, "ok"),
        "api": (False, "connection refused"),
    }
    ready, summary = is_ready(checks)
    assert ready
    assert summary["api"] == "connection refused"


def test_is_ready_fails_on_storage():
    checks = {
        "config": (True, "ok"),
        "packages": (True, "ok"),
        "storage": (False, "read-only file system"),
    }
    ready, _ = is_ready(checks)
    assert not ready


def test_check_storage_round_trip(tmp_path, monkeypatch):
    store = ConfigStore(Settings, str(tmp_path / "missing.yaml"))
    assert store.update({"storage_backend": "file", "storage_dir": str(tmp_path)})
    monkeypatch.setattr(settings_module, "_config_store", store)
    ok, msg = check_storage()
    assert ok, msg
    assert list(tmp_path.iterdir()) == []


def test_check_config_reports_broken_file(tmp_path, monkeypatch):
    config = tmp_path / "notify_sync.yaml"
    config.write_text("poll_mode: sometimes\n")
    monkeypatch.setattr(settings_module, "_config_store", ConfigStore(Settings, str(config)))
    ok, msg = check_config()
    assert not ok
    assert "poll_mode" in msg


@pytest.mark.integration
def test_readiness_all_checks_pass():
    """Config, packages and storage must pass; the backend may be unavailable (e.g. sandbox)."""
    checks = run_all_checks()
    for name in ("config", "packages", "storage"):
        ok, msg = checks.get(name, (False, "missing"))
        assert ok, f"readiness {name}: {msg}"
    ready, summary = is_ready(checks)
    if not ready:
        report = "\n".join(f"  {name}: {msg}" for name, msg in summary.items())
        pytest.fail(f"Readiness checks failed:\n{report}")
