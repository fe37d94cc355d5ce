import os
from dataclasses import dataclass


def _minutes(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default * 60.0
    try:
        return float(raw) * 60.0
    except ValueError:
        return default * 60.0


@dataclass(frozen=True)
class Settings:
    token: str
    data_path: str = "vaulty_config.json"
    spreadsheet_id: str = ""
    google_credentials: str = ""
    pushover_token: str = ""
    pushover_user: str = ""
    # seconds; the environment gives them in minutes
    reminder_after: float = 10 * 60.0
    expire_after: float = 20 * 60.0
    # Set to True to sync commands per guild for faster propagation
    sync_per_guild: bool = True
    log_level: str = "INFO"


def load_settings() -> Settings:
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    return Settings(
        token=token or "",
        data_path=os.getenv("VAULTY_DATA_PATH", "").strip() or "vaulty_config.json",
        spreadsheet_id=os.getenv("MASTER_SPREADSHEET_ID", "").strip(),
        google_credentials=os.getenv("GOOGLE_CREDENTIALS_JSON", "").strip(),
        pushover_token=os.getenv("PUSHOVER_APP_TOKEN", "").strip(),
        pushover_user=os.getenv("PUSHOVER_USER_KEY", "").strip(),
        reminder_after=_minutes("VAULTY_REMINDER_MINUTES", 10),
        expire_after=_minutes("VAULTY_EXPIRE_MINUTES", 20),
        sync_per_guild=os.getenv("VAULTY_SYNC_PER_GUILD", "1").strip().lower()
        not in {"0", "false", "no", "off"},
        log_level=os.getenv("VAULTY_LOG_LEVEL", "").strip().upper() or "INFO",
    )
