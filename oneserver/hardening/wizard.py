"""Hardening wizard — packages, SSH, firewall, in that order."""

from __future__ import annotations

import logging
from typing import Optional

from rich.panel import Panel
from rich.table import Table

from oneserver.core.config_mutator import SafeConfigMutator
from oneserver.core.executor import NONINTERACTIVE_ENV, ActionExecutor
from oneserver.core.models import HostEnvironment, SessionResult
from oneserver.core.orchestrator import report_tolerated_failures
from oneserver.core.prompts import Prompter
from oneserver.core.verify import VerifyAndRemediate
from oneserver.hardening.firewall import FirewallConfigurator
from oneserver.hardening.ssh import SshHardener

logger = logging.getLogger(__name__)


class HardeningSession:
    def __init__(
        self,
        executor: ActionExecutor,
        prompter: Prompter,
        host: HostEnvironment,
        verifier: Optional[VerifyAndRemediate] = None,
        ssh: Optional[SshHardener] = None,
        firewall: Optional[FirewallConfigurator] = None,
    ):
        self.executor = executor
        self.session_log = executor.session_log
        self.prompter = prompter
        self.host = host
        self.verifier = verifier or VerifyAndRemediate(self.session_log)
        mutator = SafeConfigMutator(self.session_log)
        self.mutator = mutator
        self.ssh = ssh or SshHardener(
            executor, mutator, prompter, self.verifier, host.invoking_user
        )
        self.firewall = firewall or FirewallConfigurator(executor, mutator, prompter)

    def run(self) -> SessionResult:
        console = self.session_log.console
        console.print(
            Panel(
                f"[bold]Host:[/] {self.host.os_version}\n"
                f"[bold]User:[/] {self.host.invoking_user}\n"
                f"[bold]Log:[/] {self.session_log.log_file}",
                title="Server hardening",
                border_style="blue",
            )
        )

        console.print("\n[bold][1/3] System packages[/]")
        self.update_packages()

        console.print("\n[bold][2/3] SSH[/]")
        self.ssh.change_port()
        self.ssh.enable_key_auth()
        verification = self.ssh.restart_and_verify()

        console.print("\n[bold][3/3] Firewall[/]")
        ports = self.firewall.configure(self.ssh.current_port)

        result = SessionResult(success=True, verification=verification)
        result.summary = {
            "SSH port": str(self.ssh.current_port),
            "Key user": self.ssh.target_user,
            "Open TCP ports": ", ".join(str(p) for p in ports),
        }
        for path, backup in self.mutator.backups.items():
            result.summary[f"Backup of {path}"] = str(backup)

        table = Table(title="Hardening complete")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        for key, value in result.summary.items():
            table.add_row(key, value)
        table.add_row("Log file", str(self.session_log.log_file))
        console.print(table)

        report_tolerated_failures(self.session_log)
        return result

    def update_packages(self) -> None:
        self.session_log.info("Refreshing package lists...")
        self.executor.run("Refresh package lists", ["apt-get", "update", "-qq"])
        if self.prompter.confirm("Upgrade all installed packages now?", default=True):
            self.executor.run(
                "Upgrade installed packages",
                ["apt-get", "upgrade", "-y", "-qq"],
                env=NONINTERACTIVE_ENV,
            )
            self.session_log.success("System packages upgraded.")
        else:
            self.session_log.warning("Package upgrade skipped.")
