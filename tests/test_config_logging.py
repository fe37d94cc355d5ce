import logging

from vaulty_bot.config import load_settings
from vaulty_bot.logging_config import setup_logging


def test_load_settings(monkeypatch):
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "abc123")
    monkeypatch.delenv("VAULTY_DATA_PATH", raising=False)
    monkeypatch.delenv("VAULTY_REMINDER_MINUTES", raising=False)
    s = load_settings()
    assert s.token == "abc123"
    assert s.data_path == "vaulty_config.json"
    assert s.reminder_after == 600.0

    # empty token environment
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "")
    s2 = load_settings()
    assert s2.token == ""


def test_timer_and_service_settings(monkeypatch):
    monkeypatch.setenv("VAULTY_EXPIRE_MINUTES", "5")
    monkeypatch.setenv("VAULTY_REMINDER_MINUTES", "soon")
    monkeypatch.setenv("VAULTY_SYNC_PER_GUILD", "false")
    monkeypatch.setenv("MASTER_SPREADSHEET_ID", " sheet ")
    s = load_settings()
    assert s.expire_after == 300.0
    assert s.reminder_after == 600.0
    assert s.sync_per_guild is False
    assert s.spreadsheet_id == "sheet"


def test_setup_logging_idempotent():
    logger1 = setup_logging(logging.DEBUG)
    logger2 = setup_logging(logging.DEBUG)
    assert logger1 is logger2
    assert logger1.name == "vaulty"
    assert logger1.handlers  # at least one handler installed


def test_log_level_setting(monkeypatch):
    monkeypatch.setenv("VAULTY_LOG_LEVEL", "debug")
    assert load_settings().log_level == "DEBUG"
    monkeypatch.delenv("VAULTY_LOG_LEVEL")
    assert load_settings().log_level == "INFO"


def test_setup_logging_sets_module_levels(monkeypatch):
    root = logging.getLogger("vaulty")
    names = ["vaulty.onboarding", "vaulty.sheets", "vaulty.storage", "httpx"]
    saved = {name: logging.getLogger(name).level for name in names}
    saved_root = root.level
    monkeypatch.setattr(root, "handlers", [])
    try:
        setup_logging(logging.INFO, {"vaulty.sheets": logging.ERROR})
        assert logging.getLogger("vaulty.onboarding").level == logging.INFO
        assert logging.getLogger("vaulty.sheets").level == logging.ERROR
        assert logging.getLogger("vaulty.storage").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.setLevel(saved_root)
        for name, level in saved.items():
            logging.getLogger(name).setLevel(level)
