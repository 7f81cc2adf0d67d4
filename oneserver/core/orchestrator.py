"""Orchestrator — probe, reconcile, install, verify, summarise."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from oneserver.core.errors import ProvisionError
from oneserver.core.models import SessionResult, Upgrade, Version, VerifyResult
from oneserver.core.prompts import Prompter
from oneserver.core.reconcile import (
    ExecutionResult,
    ReconciliationStateMachine,
    reconcile,
)
from oneserver.core.session_log import SessionLog
from oneserver.core.verify import VerifyAndRemediate
from oneserver.runtimes.base import RuntimeModule

logger = logging.getLogger(__name__)


def report_tolerated_failures(session_log: SessionLog) -> None:
    """Print the failure summary for allowed-to-fail actions, if any."""
    failures = session_log.failures()
    if not failures:
        return
    session_log.warning(f"{len(failures)} non-fatal task(s) failed:")
    for record in failures:
        session_log.warning(f"  - {record.name} (exit code {record.exit_code})")
    session_log.warning(f"Full details: {session_log.log_file}")


class RuntimeSession:
    """Runs one runtime wizard from probing to the final summary."""

    def __init__(
        self,
        runtime: RuntimeModule,
        prompter: Prompter,
        verifier: Optional[VerifyAndRemediate] = None,
        console: Optional[Console] = None,
    ):
        self.runtime = runtime
        self.prompter = prompter
        self.session_log = runtime.session_log
        self.console = console or self.session_log.console
        self.verifier = verifier or VerifyAndRemediate(self.session_log)
        self.machine = ReconciliationStateMachine(runtime, prompter)

    def run(self) -> SessionResult:
        info = self.runtime.get_info()
        self.console.print(
            Panel(
                f"[bold]Runtime:[/] {info.name}\n"
                f"[bold]Managed by:[/] {info.manager}\n"
                f"[bold]Log:[/] {self.session_log.log_file}",
                title=f"{info.name} install & update",
                border_style="blue",
            )
        )

        self.runtime.prepare()
        available = self.runtime.available_versions()
        if not available:
            raise ProvisionError(
                f"No {info.name} versions found in the configured sources."
            )
        recommended = self.runtime.recommended_version(available)
        installed = self.runtime.installed_version()
        logger.debug("installed=%s recommended=%s", installed, recommended)

        if installed is None:
            self.session_log.info(f"{info.name} not detected, starting a fresh install.")
            target = self.runtime.select_fresh_version(self.prompter, available)
            plan = Upgrade(target)
            execution = self.machine.execute(plan)
        else:
            self.session_log.success(f"Installed: {self.runtime.describe(installed)}")
            self.session_log.info(f"Latest recommended: {self.runtime.describe(recommended)}")
            managed = self.runtime.managed_versions()
            if managed:
                self.session_log.info(
                    f"Versions held by {info.manager}: "
                    + " ".join(str(v) for v in managed)
                )
            plan = self.machine.resolve(reconcile(installed, recommended), installed)
            execution = self.machine.execute(plan, installed)

        result = SessionResult(
            success=True,
            plan=plan,
            installed_version=execution.installed_version,
            outcomes=execution.outcomes,
        )
        if execution.changed:
            result.verification = self._verify(execution.installed_version)
            result.summary = self.runtime.summary(execution.installed_version)
            self._display_summary(info.name, execution, result)
        else:
            self.session_log.info("No installation or change was made.")

        report_tolerated_failures(self.session_log)
        return result

    def _verify(self, version: Version) -> VerifyResult:
        label = self.runtime.describe(version)
        self.session_log.info(f"Verifying that {label} is live...")
        outcome = self.verifier.verify_and_fix(
            probe=lambda: self.runtime.is_live(version),
            remediation=lambda: self.runtime.remediate(version),
            manual_steps=self.runtime.manual_recovery(version),
            description=f"{label} is live",
        )
        if outcome is VerifyResult.VERIFIED:
            self.session_log.success(f"Confirmed: {label} is live.")
        return outcome

    def _display_summary(
        self, name: str, execution: ExecutionResult, result: SessionResult
    ) -> None:
        table = Table(title=f"{name} — operation complete")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        for key, value in result.summary.items():
            table.add_row(key, value)
        if execution.failed_units:
            table.add_row("Failed extensions", ", ".join(execution.failed_units))
        table.add_row("Log file", str(self.session_log.log_file))
        self.console.print(table)
