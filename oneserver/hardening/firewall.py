"""UFW firewall setup and Docker-friendly packet forwarding."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from oneserver.core.config_mutator import SafeConfigMutator, find_value
from oneserver.core.executor import NONINTERACTIVE_ENV, ActionExecutor
from oneserver.core.models import ConfigDirective
from oneserver.core.prompts import Prompter

logger = logging.getLogger(__name__)

UFW_DEFAULTS = Path("/etc/default/ufw")
WEB_PORTS = (80, 443)
FORWARD_ACCEPT = ConfigDirective(
    "DEFAULT_FORWARD_POLICY", '"ACCEPT"', r'"?[A-Za-z]+"?', separator="="
)


def parse_ports(text: str) -> tuple[list[int], list[str]]:
    """Split a space-separated answer into valid ports and rejected tokens."""
    valid: list[int] = []
    rejected: list[str] = []
    for token in text.split():
        if token.isascii() and token.isdigit() and 1 <= int(token) <= 65535:
            valid.append(int(token))
        else:
            rejected.append(token)
    return valid, rejected


class FirewallConfigurator:
    def __init__(
        self,
        executor: ActionExecutor,
        mutator: SafeConfigMutator,
        prompter: Prompter,
        ufw_defaults: Path = UFW_DEFAULTS,
    ):
        self.executor = executor
        self.session_log = executor.session_log
        self.mutator = mutator
        self.prompter = prompter
        self.ufw_defaults = Path(ufw_defaults)

    def is_installed(self) -> bool:
        return shutil.which("ufw") is not None

    def is_active(self) -> bool:
        probe = self.executor.capture(["ufw", "status"])
        return probe.ok and "Status: active" in probe.output

    def collect_ports(self, ssh_port: int) -> list[int]:
        self.session_log.info(
            f"SSH ({ssh_port}), HTTP (80) and HTTPS (443) are opened automatically."
        )
        answer = self.prompter.ask(
            "Other TCP ports to open, separated by spaces (Enter for none)"
        )
        extra, rejected = parse_ports(answer)
        for token in rejected:
            self.session_log.warning(f"'{token}' is not a valid port, skipped.")
        return sorted({ssh_port, *WEB_PORTS, *extra})

    def configure(self, ssh_port: int) -> list[int]:
        """Reset-and-rebuild the UFW rule set; returns the opened TCP ports."""
        if not self.is_installed():
            self.session_log.info("Installing UFW...")
            self.executor.run(
                "Install ufw", ["apt-get", "install", "-y", "-qq", "ufw"],
                env=NONINTERACTIVE_ENV,
            )

        ports = self.collect_ports(ssh_port)

        if self.is_active():
            self.session_log.warning("UFW is already active.")
            if self.prompter.confirm("Reset the existing rules and start over?", default=True):
                self.executor.run("Reset UFW rules", ["ufw", "--force", "reset"])

        self.session_log.info("Applying firewall rules...")
        self.executor.run("Deny incoming by default", ["ufw", "default", "deny", "incoming"])
        self.executor.run("Allow outgoing by default", ["ufw", "default", "allow", "outgoing"])
        for port in ports:
            self.executor.run(f"Allow {port}/tcp", ["ufw", "allow", f"{port}/tcp"])
        self.executor.run("Allow 443/udp (HTTP/3)", ["ufw", "allow", "443/udp"])
        self.session_log.success(
            "Rules staged for TCP ports " + ", ".join(str(p) for p in ports) + " and 443/udp."
        )

        if self.prompter.confirm("Enable the firewall now?", default=True):
            self.executor.run("Enable UFW", ["ufw", "--force", "enable"])
            self.session_log.success("Firewall enabled.")
        else:
            self.session_log.warning("Firewall left disabled. Enable it later with: sudo ufw enable")

        status = self.executor.capture(["ufw", "status", "verbose"])
        self.session_log.console.print(status.output.rstrip(), markup=False, highlight=False)

        self.configure_forwarding()
        return ports

    def configure_forwarding(self) -> bool:
        """Offer DEFAULT_FORWARD_POLICY="ACCEPT" so containers can reach the network."""
        if not self.is_installed():
            self.session_log.warning("UFW is not installed, skipping forwarding setup.")
            return False
        if not self.is_active():
            self.session_log.warning("UFW is not active, skipping forwarding setup.")
            return False

        current = find_value(self.ufw_defaults, FORWARD_ACCEPT)
        if current is not None and current.strip('"') == "ACCEPT":
            self.session_log.success("UFW forwarding policy is already ACCEPT.")
            return False

        self.session_log.warning(
            "Docker containers need forwarded traffic; UFW drops it by default."
        )
        if not self.prompter.confirm(
            'Set DEFAULT_FORWARD_POLICY="ACCEPT"?', default=False
        ):
            self.session_log.warning("Forwarding policy left unchanged.")
            return False

        self.mutator.apply(self.ufw_defaults, FORWARD_ACCEPT)
        record = self.executor.run("Reload UFW", ["ufw", "reload"], allow_failure=True)
        if record.succeeded:
            self.session_log.success("Forwarding policy set to ACCEPT and UFW reloaded.")
        else:
            self.session_log.error("UFW reload failed. Run manually: sudo ufw reload")
        return True
