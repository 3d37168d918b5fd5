import json
import logging
from pathlib import Path

from pbl.config import LedgerSettings, get_app_paths
from pbl.logging_config import JsonFormatter


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("PBL_BATCH_NUMBER_RETRIES", "9")
    monkeypatch.setenv("PBL_CONFLICT_RETRIES", "1")
    monkeypatch.setenv("PBL_CONFLICT_BACKOFF", "0.5")
    monkeypatch.delenv("PBL_BUSY_TIMEOUT", raising=False)

    settings = LedgerSettings.from_env()

    assert settings.batch_number_retries == 9
    assert settings.conflict_retries == 1
    assert settings.conflict_backoff_seconds == 0.5
    assert settings.busy_timeout_seconds == 5.0


def test_data_dir_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("PBL_DATA_DIR", str(tmp_path / "pharmacy"))

    paths = get_app_paths()

    assert paths.base_dir == (tmp_path / "pharmacy").resolve()
    assert paths.db_path.name == "ledger.db"
    assert paths.logs_dir.is_dir()


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("pbl.sales", logging.INFO, __file__, 1, "sale_created sale_id=%s", (7,), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["logger"] == "pbl.sales"
    assert payload["level"] == "INFO"
    assert payload["message"] == "sale_created sale_id=7"


def test_windows_data_dir_uses_appdata(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("PBL_DATA_DIR", raising=False)
    monkeypatch.setattr("pbl.config.sys.platform", "win32")
    monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))

    paths = get_app_paths("Ledger")

    assert paths.base_dir == tmp_path / "Roaming" / "Ledger"
    assert paths.logs_dir.is_dir()


def test_mac_data_dir_uses_application_support(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("PBL_DATA_DIR", raising=False)
    monkeypatch.setattr("pbl.config.sys.platform", "darwin")
    monkeypatch.setattr("pbl.config.Path.home", lambda: tmp_path)

    paths = get_app_paths("Ledger")

    assert paths.base_dir == tmp_path / "Library" / "Application Support" / "Ledger"
    assert paths.db_path == paths.base_dir / "ledger.db"


def test_linux_data_dir_is_hidden_in_home(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("PBL_DATA_DIR", raising=False)
    monkeypatch.setattr("pbl.config.sys.platform", "linux")
    monkeypatch.setattr("pbl.config.Path.home", lambda: tmp_path)

    assert get_app_paths("Ledger").base_dir == tmp_path / ".ledger"
