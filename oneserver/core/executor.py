"""Action executor — runs external commands with a fail-fast policy."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from oneserver.core.errors import FatalActionError
from oneserver.core.models import ActionRecord, Command
from oneserver.core.session_log import SessionLog

logger = logging.getLogger(__name__)

NONINTERACTIVE_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

_NOT_FOUND_EXIT = 127


@dataclass
class ProbeResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def describe(command: Command) -> str:
    if isinstance(command, str):
        return command
    return shlex.join(command)


class ActionExecutor:
    """Executes named actions and records them in the session log.

    ``run`` is for anything that changes the host; ``capture`` is for
    read-only probes (version queries, unit-file listings) and leaves no
    ActionRecord behind.
    """

    def __init__(self, session_log: SessionLog):
        self.session_log = session_log

    def run(
        self,
        name: str,
        command: Command,
        allow_failure: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ) -> ActionRecord:
        """Run one action.

        A non-zero exit raises :class:`FatalActionError` unless
        ``allow_failure`` is set, in which case the failed record is
        returned for the caller to branch on.
        """
        started = datetime.now()
        exit_code, output = self._execute(command, env)
        record = ActionRecord(
            name=name,
            command=describe(command),
            started_at=started,
            finished_at=datetime.now(),
            exit_code=exit_code,
            allow_failure=allow_failure,
            output=output,
        )
        self.session_log.append(record)
        logger.debug("%s -> exit %d", record.command, exit_code)

        if record.succeeded or allow_failure:
            return record

        self.session_log.error(
            f"Error: task '{name}' failed. See the log for details: "
            f"{self.session_log.log_file}"
        )
        raise FatalActionError(record)

    def capture(
        self,
        command: Command,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ProbeResult:
        exit_code, output = self._execute(command, env, input=input)
        logger.debug("probe %s -> exit %d", describe(command), exit_code)
        return ProbeResult(exit_code=exit_code, output=output)

    @staticmethod
    def _execute(
        command: Command,
        env: Optional[Mapping[str, str]],
        input: Optional[str] = None,
    ) -> tuple[int, str]:
        merged_env = None
        if env:
            merged_env = dict(os.environ)
            merged_env.update(env)
        try:
            result = subprocess.run(
                command,
                shell=isinstance(command, str),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                input=input,
                env=merged_env,
            )
        except FileNotFoundError as e:
            return _NOT_FOUND_EXIT, str(e)
        return result.returncode, result.stdout or ""
