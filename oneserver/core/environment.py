"""Host detection — distribution, privileges, terminal, invoking user."""

from __future__ import annotations

import os
import platform
import re
import subprocess
import sys
from pathlib import Path
from typing import Mapping, Optional

from oneserver.core.models import HostEnvironment

OS_RELEASE = Path("/etc/os-release")

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class EnvironmentDetector:
    """Detects what the wizards need to know about the host."""

    @staticmethod
    def detect_current() -> HostEnvironment:
        return HostEnvironment(
            os_id=_detect_os_id(),
            os_version=_detect_os_version(),
            is_root=_detect_root(),
            is_interactive=sys.stdin.isatty(),
            invoking_user=detect_invoking_user(),
        )


def read_os_release(path: Path = OS_RELEASE) -> dict[str, str]:
    values: dict[str, str] = {}
    try:
        text = path.read_text()
    except OSError:
        return values
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"')
    return values


def is_ubuntu(path: Path = OS_RELEASE) -> bool:
    return read_os_release(path).get("ID") == "ubuntu"


def _detect_os_id() -> str:
    return read_os_release().get("ID", platform.system().lower())


def _detect_os_version() -> str:
    try:
        if platform.system() == "Linux":
            result = subprocess.run(
                ["lsb_release", "-ds"],
                capture_output=True, text=True, timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip().strip('"')
        return platform.platform()
    except (OSError, subprocess.SubprocessError):
        return platform.platform()


def _detect_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def detect_invoking_user(environ: Optional[Mapping[str, str]] = None) -> str:
    """The human behind ``sudo``: SUDO_USER, ``who am i``, ``logname``, root."""
    env = os.environ if environ is None else environ
    user = env.get("SUDO_USER", "").strip()
    if not user:
        user = _first_field(["who", "am", "i"])
    if not user:
        user = _first_field(["logname"])
    user = "".join(user.split())
    if not _USERNAME_RE.match(user):
        return "root"
    return user


def _first_field(command: list[str]) -> str:
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError):
        return ""
    if result.returncode != 0:
        return ""
    lines = result.stdout.strip().splitlines()
    if not lines or not lines[0].split():
        return ""
    return lines[0].split()[0]
