"""Shared test fixtures for oneserver tests."""

from __future__ import annotations

import io
import logging
import shlex
import subprocess
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from oneserver.core.executor import ActionExecutor
from oneserver.core.models import ActionRecord, HostEnvironment
from oneserver.core.prompts import Prompter
from oneserver.core.session_log import SessionLog


class CommandResponder:
    """Fake ``subprocess.run``: answers by command prefix and records calls.

    ``on(prefix, (rc, out), ...)`` registers replies consumed in order; the
    last one repeats. Later registrations win over earlier ones. Commands
    with no matching rule succeed with empty output.
    """

    def __init__(self):
        self.rules: list[tuple[str, list[tuple[int, str]]]] = []
        self.calls: list[str] = []
        self.inputs: list = []

    def on(self, prefix: str, *replies: tuple[int, str]) -> "CommandResponder":
        self.rules.insert(0, (prefix, list(replies) or [(0, "")]))
        return self

    def fail(self, prefix: str, returncode: int = 1, output: str = "") -> "CommandResponder":
        return self.on(prefix, (returncode, output))

    def __call__(self, command, **kwargs):
        text = command if isinstance(command, str) else shlex.join(command)
        self.calls.append(text)
        self.inputs.append(kwargs.get("input"))
        for prefix, replies in self.rules:
            if text.startswith(prefix):
                returncode, stdout = replies.pop(0) if len(replies) > 1 else replies[0]
                return subprocess.CompletedProcess(command, returncode, stdout=stdout)
        return subprocess.CompletedProcess(command, 0, stdout="")

    def ran(self, prefix: str) -> bool:
        return any(call.startswith(prefix) for call in self.calls)

    def count(self, prefix: str) -> int:
        return sum(1 for call in self.calls if call.startswith(prefix))


@pytest.fixture
def console() -> Console:
    """Console writing into a buffer; read it with ``console.file.getvalue()``."""
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def session_log(tmp_path, console):
    """SessionLog whose transcript lands, unprefixed, in ``tmp_path/session.log``."""
    log_file = tmp_path / "session.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    transcript = logging.getLogger("oneserver.session")
    transcript.setLevel(logging.DEBUG)
    transcript.addHandler(handler)
    try:
        yield SessionLog(log_file, console=console)
    finally:
        transcript.removeHandler(handler)
        handler.close()


@pytest.fixture
def executor(session_log) -> ActionExecutor:
    return ActionExecutor(session_log)


@pytest.fixture
def host_commands():
    """Patch the executor's subprocess.run with a CommandResponder."""
    responder = CommandResponder()
    with patch("oneserver.core.executor.subprocess.run", side_effect=responder):
        yield responder


@pytest.fixture
def prompter() -> MagicMock:
    """Prompter double; set ``side_effect`` lists to script the answers."""
    return MagicMock(spec=Prompter)


@pytest.fixture
def mock_host() -> HostEnvironment:
    return HostEnvironment(
        os_id="ubuntu",
        os_version="Ubuntu 24.04 LTS",
        is_root=True,
        is_interactive=True,
        invoking_user="deploy",
    )


def make_record(
    name: str = "task",
    exit_code: int = 0,
    allow_failure: bool = False,
    output: str = "",
    command: str = "true",
) -> ActionRecord:
    """Helper to create an ActionRecord for testing."""
    now = datetime.now()
    return ActionRecord(
        name=name,
        command=command,
        started_at=now,
        finished_at=now,
        exit_code=exit_code,
        allow_failure=allow_failure,
        output=output,
    )
