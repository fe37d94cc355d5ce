import py_compile
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def test_bot_and_main_compile() -> None:
    """The Discord-facing modules should at least be syntactically valid."""

    for name in ("bot.py", "main.py", "ui/views.py", "ui/modals.py", "commands/register.py"):
        py_compile.compile(str(ROOT / "vaulty_bot" / name), doraise=True)
