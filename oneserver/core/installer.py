"""Staged installer — a strict core unit plus best-effort extension units."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Mapping, Optional

from oneserver.core.errors import UnitUnavailableError
from oneserver.core.executor import ActionExecutor
from oneserver.core.models import (
    ActionRecord,
    Command,
    InstallOutcome,
    InstallResult,
    InstallUnit,
    UnitKind,
)

logger = logging.getLogger(__name__)


class InstallBackend(ABC):
    """Turns install units into package-manager commands."""

    env: Mapping[str, str] = MappingProxyType({})
    # backends without a "no recommends" mode skip the minimal rung
    supports_minimal = True

    @abstractmethod
    def minimal_install(self, unit: InstallUnit) -> Command: ...

    @abstractmethod
    def full_install(self, unit: InstallUnit) -> Command: ...

    @abstractmethod
    def repair(self) -> Command: ...

    def is_available(self, unit: InstallUnit) -> bool:
        return True

    def preflight(self) -> list[tuple[str, Command]]:
        return []

    def diagnose(self, unit: InstallUnit) -> Optional[Command]:
        return None

    def manual_fix_hints(self, failed: list[InstallUnit]) -> list[str]:
        return []


class StagedInstaller:
    """Installs one core unit strictly, then each extension via a fallback ladder."""

    def __init__(self, executor: ActionExecutor, backend: InstallBackend):
        self.executor = executor
        self.backend = backend
        self.session_log = executor.session_log

    def install(self, units: list[InstallUnit]) -> list[InstallOutcome]:
        core, extensions = self._partition(units)

        for name, command in self.backend.preflight():
            self.executor.run(name, command, allow_failure=True, env=self.backend.env)

        outcomes = [self._install_core(core)]

        if extensions:
            self.session_log.info(
                f"Installing {len(extensions)} extension package(s) one by one..."
            )
        for unit in extensions:
            outcomes.append(self._install_extension(unit))

        failed = [o.unit for o in outcomes if o.result is InstallResult.FAILED]
        installed = sum(
            1 for o in outcomes[1:] if o.result is InstallResult.INSTALLED
        )
        if extensions:
            self.session_log.info(
                f"Extensions installed: {installed}/{len(extensions)}"
            )
        if failed:
            self._report_failures(failed)

        if core.service:
            self._start_service(core.service)
        return outcomes

    @staticmethod
    def _partition(
        units: list[InstallUnit],
    ) -> tuple[InstallUnit, list[InstallUnit]]:
        cores = [u for u in units if u.kind is UnitKind.CORE]
        if len(cores) != 1:
            raise ValueError(
                f"Expected exactly one core unit, got {len(cores)}"
            )
        return cores[0], [u for u in units if u.kind is UnitKind.EXTENSION]

    def _install_core(self, unit: InstallUnit) -> InstallOutcome:
        if not self.backend.is_available(unit):
            self.session_log.error(
                f"Error: {unit.identifier} is not available from the configured sources."
            )
            raise UnitUnavailableError(unit.identifier)

        self.session_log.info(f"Installing core package {unit.identifier}...")
        attempts: list[ActionRecord] = []
        if self.backend.supports_minimal:
            record = self.executor.run(
                f"Install {unit.identifier} (minimal)",
                self.backend.minimal_install(unit),
                allow_failure=True,
                env=self.backend.env,
            )
            attempts.append(record)
            if record.succeeded:
                return InstallOutcome(unit, InstallResult.INSTALLED, attempts)
            self.session_log.warning(
                "Minimal core install failed, retrying in standard mode..."
            )
        attempts.append(self.executor.run(
            f"Install {unit.identifier}",
            self.backend.full_install(unit),
            env=self.backend.env,
        ))
        return InstallOutcome(unit, InstallResult.INSTALLED, attempts)

    def _install_extension(self, unit: InstallUnit) -> InstallOutcome:
        if not self.backend.is_available(unit):
            self.session_log.warning(f"  Skipping unavailable extension: {unit.identifier}")
            return InstallOutcome(unit, InstallResult.SKIPPED)

        attempts: list[ActionRecord] = []
        for record in self._ladder(unit):
            attempts.append(record)
            if record.succeeded:
                self.session_log.success(f"  ✓ {unit.identifier}")
                return InstallOutcome(unit, InstallResult.INSTALLED, attempts)

        self.session_log.warning(f"  ✗ {unit.identifier} (failed)")
        return InstallOutcome(unit, InstallResult.FAILED, attempts)

    def _ladder(self, unit: InstallUnit):
        """Yield one record per rung; the caller stops at the first success."""
        env = self.backend.env
        if self.backend.supports_minimal:
            yield self.executor.run(
                f"Install extension {unit.identifier} (attempt 1: minimal)",
                self.backend.minimal_install(unit),
                allow_failure=True,
                env=env,
            )
        yield self.executor.run(
            f"Install extension {unit.identifier} (attempt 2: standard)",
            self.backend.full_install(unit),
            allow_failure=True,
            env=env,
        )
        self.executor.run(
            "Repair broken dependencies",
            self.backend.repair(),
            allow_failure=True,
            env=env,
        )
        yield self.executor.run(
            f"Install extension {unit.identifier} (attempt 3: after repair)",
            self.backend.full_install(unit),
            allow_failure=True,
            env=env,
        )

    def _report_failures(self, failed: list[InstallUnit]) -> None:
        self.session_log.warning("The following extensions failed and were skipped:")
        for unit in failed:
            self.session_log.warning(f"  - {unit.identifier}")

        for unit in failed:
            command = self.backend.diagnose(unit)
            if command is None:
                continue
            probe = self.executor.capture(command, env=self.backend.env)
            self.session_log.note(
                f"=== Diagnosis for {unit.identifier} ===\n{probe.output}"
            )

        hints = self.backend.manual_fix_hints(failed)
        if hints:
            self.session_log.warning("Possible fixes:")
            for i, hint in enumerate(hints, 1):
                self.session_log.warning(f"  {i}. {hint}")

    def _start_service(self, service: str) -> None:
        self.session_log.info(f"Starting and verifying service {service}...")
        self.executor.run(f"Restart {service}", ["systemctl", "restart", service])
        self.executor.run(
            f"Check {service} is active",
            ["systemctl", "is-active", "--quiet", service],
        )
        self.executor.run(f"Enable {service} at boot", ["systemctl", "enable", service])
        self.session_log.success(f"Service {service} is running and enabled at boot.")
