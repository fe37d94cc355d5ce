import logging
import sys
from collections.abc import Mapping

# Per-module levels under the "vaulty" logger; the session engine and the
# sheet writer log every step at INFO.
DEFAULT_LEVELS: Mapping[str, int] = {
    "vaulty.onboarding": logging.INFO,
    "vaulty.sheets": logging.INFO,
    "vaulty.storage": logging.WARNING,
}

# httpx logs every Pushover request at INFO
_NOISY = ("discord", "discord.client", "discord.gateway", "httpx", "httpcore", "gspread", "google.auth")


def setup_logging(
    level: int | str = logging.INFO, levels: Mapping[str, int | str] | None = None
) -> logging.Logger:
    logger = logging.getLogger("vaulty")
    if logger.handlers:
        return logger  # already configured
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    child_levels = dict(DEFAULT_LEVELS) if logger.level > logging.DEBUG else {}
    child_levels.update(levels or {})
    for name, child_level in child_levels.items():
        logging.getLogger(name).setLevel(child_level)
    # reduce library noise unless debugging
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
