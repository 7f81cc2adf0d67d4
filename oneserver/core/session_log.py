"""Session transcript — every executed action, appended to the log file.

One ``SessionLog`` is created per wizard run and handed to every component
that executes or reports something. It owns two things:

* the append-only list of :class:`ActionRecord` entries, each one logged
  as soon as it is added;
* the operator-facing message helpers (``info``/``success``/``warning``/
  ``error``), which print a colour-coded line and log the plain text.

Everything goes through the ``oneserver.session`` logger, so the handler
that :func:`setup_logging` attaches is the only writer of the log file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from oneserver.core.models import ActionRecord, Outcome

logger = logging.getLogger(__name__)
transcript = logging.getLogger("oneserver.session")

_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    log_file: Path, debug: bool = False, console: Optional[Console] = None
) -> logging.Logger:
    """Configure the ``oneserver`` logger for one session.

    The log directory is created with mode 0700 and the file is truncated,
    so each run leaves exactly one transcript behind. Debug tracing goes to
    the console only when ``debug`` is set.
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(log_file.parent, 0o700)
    except OSError:
        logger.debug("Could not restrict permissions on %s", log_file.parent)
    log_file.write_text("")

    root = logging.getLogger("oneserver")
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
    root.addHandler(file_handler)

    if debug:
        console_handler = RichHandler(
            console=console or Console(stderr=True), rich_tracebacks=True
        )
        console_handler.setLevel(logging.DEBUG)
        root.addHandler(console_handler)

    root.propagate = False
    return root


class SessionLog:
    """Append-only transcript of one session's actions."""

    def __init__(self, log_file: Path, console: Optional[Console] = None):
        self.log_file = Path(log_file)
        self.console = console or Console()
        self._records: list[ActionRecord] = []

    # ── Actions ──────────────────────────────────────────────────────

    @property
    def records(self) -> tuple[ActionRecord, ...]:
        return tuple(self._records)

    def append(self, record: ActionRecord) -> None:
        self._records.append(record)
        if record.succeeded:
            status = "success"
        else:
            status = f"failed (exit code {record.exit_code})"
        lines = [
            "---",
            f"Task: {record.name}",
            f"Command: {record.command}",
        ]
        if record.output:
            lines.append(record.output.rstrip("\n"))
        lines.append(f"Status: {status}")
        if not record.succeeded and record.allow_failure:
            lines.append("Warning: task failed but was allowed to continue")
        lines.append("---")
        self._write(lines)

    def failures(self) -> list[ActionRecord]:
        """Tolerated failures recorded so far, in execution order."""
        return [
            r for r in self._records
            if r.outcome is Outcome.FAILURE and r.allow_failure
        ]

    def note(self, text: str) -> None:
        """Write free-form diagnostic text to the log only."""
        self._write(text.rstrip("\n").splitlines(), logging.DEBUG)

    # ── Operator messages ───────────────────────────────────────────

    def info(self, message: str) -> None:
        self._say("cyan", message, logging.INFO)

    def success(self, message: str) -> None:
        self._say("green", message, logging.INFO)

    def warning(self, message: str) -> None:
        self._say("yellow", message, logging.WARNING)

    def error(self, message: str) -> None:
        self._say("red", message, logging.ERROR)

    def _say(self, colour: str, message: str, level: int) -> None:
        self.console.print(f"[{colour}]{escape(message)}[/]")
        self._write(message.splitlines() or [""], level)

    def _write(self, lines: list[str], level: int = logging.INFO) -> None:
        # one record per line so every line carries the handler's prefix
        for line in lines:
            transcript.log(level, line)
