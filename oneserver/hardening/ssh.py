"""SSH hardening — port change, key-only login, restart with verification."""

from __future__ import annotations

import logging
import pwd
import re
from pathlib import Path
from typing import Callable, Optional

from rich.markup import escape

from oneserver.core.config_mutator import SafeConfigMutator, find_value
from oneserver.core.executor import ActionExecutor
from oneserver.core.models import ConfigDirective, VerifyResult
from oneserver.core.prompts import Prompter
from oneserver.core.verify import VerifyAndRemediate

logger = logging.getLogger(__name__)

SSH_CONFIG = Path("/etc/ssh/sshd_config")
SSHD_DROPIN_DIR = Path("/etc/ssh/sshd_config.d")
DEFAULT_PORT = 22
MIN_PORT = 1024
MAX_PORT = 65535

_WORD = r"[a-zA-Z-]+"
PASSWORD_AUTH_OFF = ConfigDirective("PasswordAuthentication", "no", _WORD)
KEY_AUTH_DIRECTIVES = (
    ConfigDirective("PubkeyAuthentication", "yes", _WORD),
    PASSWORD_AUTH_OFF,
    ConfigDirective("PermitRootLogin", "prohibit-password", _WORD),
)


def port_directive(port: int | str) -> ConfigDirective:
    return ConfigDirective("Port", str(port), r"[0-9]+")


def lookup_home(user: str) -> Optional[Path]:
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return None


class SshHardener:
    def __init__(
        self,
        executor: ActionExecutor,
        mutator: SafeConfigMutator,
        prompter: Prompter,
        verifier: VerifyAndRemediate,
        target_user: str,
        config_path: Path = SSH_CONFIG,
        dropin_dir: Path = SSHD_DROPIN_DIR,
        home_lookup: Callable[[str], Optional[Path]] = lookup_home,
    ):
        self.executor = executor
        self.session_log = executor.session_log
        self.mutator = mutator
        self.prompter = prompter
        self.verifier = verifier
        self.target_user = target_user
        self.config_path = Path(config_path)
        self.dropin_dir = Path(dropin_dir)
        self.home_lookup = home_lookup
        self.current_port = self.read_port()
        self.needs_restart = False

    def read_port(self) -> int:
        value = find_value(self.config_path, port_directive(DEFAULT_PORT))
        return int(value) if value and value.isdigit() else DEFAULT_PORT

    # ── systemd units ────────────────────────────────────────────────

    def _unit_files(self) -> list[str]:
        probe = self.executor.capture(["systemctl", "list-unit-files"])
        return [line.split()[0] for line in probe.output.splitlines() if line.split()]

    def service_name(self) -> str:
        units = self._unit_files()
        if "ssh.service" in units:
            return "ssh"
        if "sshd.service" in units:
            return "sshd"
        return "ssh"

    def disable_socket(self) -> None:
        """Socket activation on Ubuntu keeps sshd on port 22; turn it off."""
        if "ssh.socket" not in self._unit_files():
            return
        self.session_log.warning("ssh.socket detected, disabling it so the port setting applies...")
        if self.executor.capture(["systemctl", "is-active", "--quiet", "ssh.socket"]).ok:
            self.executor.run("Stop ssh.socket", ["systemctl", "stop", "ssh.socket"], allow_failure=True)
        if self.executor.capture(["systemctl", "is-enabled", "--quiet", "ssh.socket"]).ok:
            self.executor.run("Disable ssh.socket", ["systemctl", "disable", "ssh.socket"], allow_failure=True)
        self.executor.run("Reload systemd units", ["systemctl", "daemon-reload"], allow_failure=True)

    def is_listening(self, port: int) -> bool:
        pattern = re.compile(rf":{port}\b.*sshd")
        for command in (["ss", "-tlnp"], ["netstat", "-tlnp"]):
            probe = self.executor.capture(command)
            if probe.ok and any(pattern.search(line) for line in probe.output.splitlines()):
                return True
        return False

    # ── Port ─────────────────────────────────────────────────────────

    def change_port(self) -> bool:
        if not self.prompter.confirm(
            f"Change the SSH port (currently {self.current_port})?", default=False
        ):
            return False
        port = self.prompter.ask_int(
            f"New SSH port ({MIN_PORT}-{MAX_PORT})", MIN_PORT, MAX_PORT
        )
        self.mutator.apply(self.config_path, port_directive(port))
        self.session_log.success("SSH port setting updated.")

        self.session_log.info("Validating the sshd configuration...")
        self.executor.run("Validate sshd configuration", ["sshd", "-t"])
        self.session_log.success("sshd configuration is valid.")

        self.disable_socket()
        service = self.service_name()
        if self.executor.capture(
            ["systemctl", "is-enabled", "--quiet", f"{service}.service"]
        ).ok:
            self.session_log.success(f"{service}.service is already enabled.")
        else:
            self.executor.run(
                f"Enable {service}.service", ["systemctl", "enable", f"{service}.service"]
            )
            self.session_log.success(f"{service}.service enabled.")

        self.session_log.success(f"SSH port changed to {port}.")
        self.current_port = port
        self.needs_restart = True
        return True

    # ── Key-only authentication ─────────────────────────────────────

    def enable_key_auth(self) -> bool:
        if not self.prompter.confirm(
            "Enable key-only authentication? (recommended; disables password logins)",
            default=False,
        ):
            return False

        console = self.session_log.console
        console.print("\n[yellow]--- Creating an SSH key ---[/]")
        console.print("On your local machine run: [green]ssh-keygen -t ed25519[/]")
        console.print("Then copy the public key: [green]cat ~/.ssh/id_ed25519.pub[/]\n")

        key = self._read_public_key()
        if not key:
            self.session_log.warning("Password logins stay enabled.")
            return False

        user = self._confirm_target_user()
        if user is None:
            return False
        home = self.home_lookup(user)
        if home is None or not home.is_dir():
            self.session_log.error(
                f"Error: cannot find a home directory for '{user}'. Key not added."
            )
            return False

        self._install_key(user, home, key)

        self.session_log.info("Applying SSH security settings...")
        for directive in KEY_AUTH_DIRECTIVES:
            self.mutator.apply(self.config_path, directive)
        if self.dropin_dir.is_dir():
            for conf in sorted(self.dropin_dir.glob("*.conf")):
                if self.mutator.apply_if_present(conf, PASSWORD_AUTH_OFF):
                    self.session_log.info(f"  -> updated {conf}")
        self.session_log.success("Key-only authentication enabled.")
        self.needs_restart = True
        return True

    def _read_public_key(self) -> str:
        console = self.session_log.console
        while True:
            key = self.prompter.ask("Paste the public key to authorise")
            if not key:
                self.session_log.error("No public key entered. Skipping SSH key setup.")
                return ""
            probe = self.executor.capture(
                ["ssh-keygen", "-l", "-f", "/dev/stdin"], input=key + "\n"
            )
            fingerprint = probe.output.strip()
            if not probe.ok or not fingerprint:
                self.session_log.error("The public key is invalid or incomplete.")
                if self.prompter.confirm("Enter the key again?", default=True):
                    continue
                return ""

            fields = key.split()
            body = fields[1] if len(fields) > 1 else ""
            console.print("\n[cyan]Detected key:[/]")
            console.print(f"[green]{escape(fingerprint)}[/]")
            console.print(f"[yellow]Type and length: {escape(fields[0])} {len(body)} characters[/]")
            if self.prompter.confirm("Is this the right key?", default=True):
                return key
            self.session_log.warning("Discarded, please paste the key again.")

    def _confirm_target_user(self) -> Optional[str]:
        self.session_log.warning(f"The key will be added for user '{self.target_user}'")
        if self.prompter.confirm("Is this the right user?", default=True):
            return self.target_user
        name = self.prompter.ask("Target user name")
        if not name or self.home_lookup(name) is None:
            self.session_log.error(f"User '{name}' does not exist. Key not added.")
            return None
        self.target_user = name
        self.session_log.info(f"Target user set to {name}")
        return name

    def _install_key(self, user: str, home: Path, key: str) -> None:
        ssh_dir = home / ".ssh"
        authorized_keys = ssh_dir / "authorized_keys"
        self.executor.run(f"Create .ssh for {user}", ["mkdir", "-p", str(ssh_dir)])
        self.executor.run("Restrict .ssh to mode 700", ["chmod", "700", str(ssh_dir)])
        with open(authorized_keys, "a", encoding="utf-8") as f:
            f.write(key.strip() + "\n")
        self.session_log.note(f"Appended public key to {authorized_keys}")
        self.executor.run(
            "Restrict authorized_keys to mode 600", ["chmod", "600", str(authorized_keys)]
        )
        self.executor.run(
            "Give .ssh to its owner", ["chown", "-R", f"{user}:{user}", str(ssh_dir)]
        )

    # ── Restart ──────────────────────────────────────────────────────

    def restart_and_verify(self) -> Optional[VerifyResult]:
        if not self.needs_restart:
            return None
        service = self.service_name()
        port = self.current_port
        self.session_log.info(f"Restarting the SSH service ({service})...")
        self.disable_socket()

        record = self.executor.run(
            "Restart SSH service", ["systemctl", "restart", service], allow_failure=True
        )
        if not record.succeeded:
            self.session_log.error("Restarting the SSH service failed! Check the configuration.")
            self.session_log.error("Try the following commands:")
            for step in (
                "sudo sshd -t",
                "sudo systemctl stop ssh.socket; sudo systemctl disable ssh.socket",
                "sudo systemctl daemon-reload",
                f"sudo systemctl enable {service}; sudo systemctl restart {service}",
            ):
                self.session_log.error(f"  {step}")
            self.session_log.error("Keep this session open and repair from another terminal.")
            return VerifyResult.UNRECOVERED

        self.session_log.success("SSH service restarted.")
        result = self.verifier.verify_and_fix(
            probe=lambda: self.is_listening(port),
            remediation=lambda: self._remediate(service),
            manual_steps=[
                "sudo ss -tlnp | grep sshd",
                "sudo systemctl stop ssh.socket",
                "sudo systemctl disable ssh.socket",
                f"sudo systemctl enable {service}",
                f"sudo systemctl restart {service}",
            ],
            description=f"sshd listening on port {port}",
        )
        if result is VerifyResult.VERIFIED:
            self.session_log.success(f"Confirmed: sshd is listening on port {port}.")

        console = self.session_log.console
        console.print("\n[yellow]Important:[/] do not close this SSH session!")
        console.print("Open a new terminal and test the connection with:")
        console.print(f"[green]ssh -p {port} {self.target_user}@<server-ip>[/]")
        console.print("Close this window only after the new connection works.")
        return result

    def _remediate(self, service: str) -> None:
        self.disable_socket()
        self.executor.run(f"Enable {service}", ["systemctl", "enable", service], allow_failure=True)
        self.executor.run(
            f"Restart {service} again", ["systemctl", "restart", service], allow_failure=True
        )
