"""APT install backend for the staged installer."""

from __future__ import annotations

from types import MappingProxyType
from typing import Optional

from oneserver.core.executor import NONINTERACTIVE_ENV, ActionExecutor
from oneserver.core.installer import InstallBackend
from oneserver.core.models import Command, InstallUnit


class AptBackend(InstallBackend):
    """apt-get commands; availability comes from ``apt-cache search``."""

    env = MappingProxyType(dict(NONINTERACTIVE_ENV))

    def __init__(self, executor: ActionExecutor, search_pattern: str):
        self.executor = executor
        self.search_pattern = search_pattern
        self._available: Optional[set[str]] = None

    def minimal_install(self, unit: InstallUnit) -> Command:
        return [
            "apt-get", "install", "-y", "-qq", "--no-install-recommends",
            unit.identifier,
        ]

    def full_install(self, unit: InstallUnit) -> Command:
        return ["apt-get", "install", "-y", "-qq", unit.identifier]

    def repair(self) -> Command:
        return ["apt-get", "-f", "install", "-y", "-qq"]

    def preflight(self) -> list[tuple[str, Command]]:
        return [
            ("Configure unpacked packages", ["dpkg", "--configure", "-a"]),
            ("Repair broken dependencies", self.repair()),
        ]

    def is_available(self, unit: InstallUnit) -> bool:
        if self._available is None:
            probe = self.executor.capture(
                ["apt-cache", "search", "--names-only", self.search_pattern]
            )
            self._available = {
                line.split()[0] for line in probe.output.splitlines() if line.split()
            }
        return unit.identifier in self._available

    def diagnose(self, unit: InstallUnit) -> Optional[Command]:
        return ["apt-get", "install", "-s", unit.identifier]

    def manual_fix_hints(self, failed: list[InstallUnit]) -> list[str]:
        names = " ".join(u.identifier for u in failed)
        return [
            f"Read the full log: cat {self.executor.session_log.log_file}",
            f"Repair dependencies and retry: apt-get -f install && apt-get install {names}",
            "Check for held packages: dpkg --get-selections | grep hold",
        ]
