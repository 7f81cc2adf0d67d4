"""PHP-FPM runtime — APT packages from the Sury repository.

Versions are ``major.minor`` pairs taken from the ``phpX.Y-fpm`` package
names. On Ubuntu the Sury builds sometimes depend on library versions the
distribution does not ship; the Ubuntu archive is then offered as an
alternate source.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from oneserver.core.environment import OS_RELEASE, is_ubuntu
from oneserver.core.errors import ProvisionError
from oneserver.core.executor import NONINTERACTIVE_ENV
from oneserver.core.installer import StagedInstaller
from oneserver.core.models import (
    ActionRecord,
    InstallOutcome,
    InstallUnit,
    UnitKind,
    Version,
)
from oneserver.core.prompts import Prompter
from oneserver.core.versions import parse_version, sort_versions
from oneserver.runtimes.apt import AptBackend
from oneserver.runtimes.base import RuntimeInfo, RuntimeModule

logger = logging.getLogger(__name__)

FPM_PACKAGE_RE = re.compile(r"^php(\d+\.\d+)-fpm\b")

EXTENSIONS = [
    "mysql", "redis", "gd", "igbinary", "imagick",
    "intl", "zip", "xml", "curl", "mbstring",
]
# igbinary is not packaged in the Ubuntu archive for every release
OFFICIAL_EXTENSIONS = [e for e in EXTENSIONS if e != "igbinary"]

SURY_SOURCES_FILE = Path("/etc/apt/sources.list.d/extrepo_sury.sources")


class PhpRuntime(RuntimeModule):
    def __init__(
        self,
        executor,
        etc_dir: Path = Path("/etc/php"),
        os_release: Path = OS_RELEASE,
        sury_sources: Path = SURY_SOURCES_FILE,
    ):
        super().__init__(executor)
        self.etc_dir = Path(etc_dir)
        self.os_release = Path(os_release)
        self.sury_sources = Path(sury_sources)
        self.official_source = False

    def get_info(self) -> RuntimeInfo:
        manager = "APT (Ubuntu archive)" if self.official_source else "APT (Sury repository)"
        return RuntimeInfo(identifier="php", name="PHP", manager=manager)

    # ── Sources ──────────────────────────────────────────────────────

    def prepare(self) -> None:
        self.session_log.info("Configuring the Sury PHP repository...")
        self.executor.run("Refresh package lists", ["apt-get", "update", "-qq"])
        if shutil.which("extrepo") is None:
            self.executor.run(
                "Install extrepo",
                ["apt-get", "install", "-y", "-qq", "extrepo"],
                env=NONINTERACTIVE_ENV,
            )
        else:
            self.session_log.info("extrepo is already installed.")
        self.executor.run("Enable the Sury repository", ["extrepo", "enable", "sury"])
        self.executor.run("Refresh package lists again", ["apt-get", "update", "-qq"])
        self.session_log.success("Package sources configured.")

    def has_alternate_source(self) -> bool:
        return not self.official_source and is_ubuntu(self.os_release)

    def alternate_source_name(self) -> str:
        return "the official Ubuntu PHP packages"

    def use_alternate_source(self, prompter: Prompter) -> Optional[Version]:
        self.session_log.info("Switching to the official Ubuntu PHP packages...")
        if shutil.which("extrepo") is not None:
            self.executor.run(
                "Disable the Sury repository",
                ["extrepo", "disable", "sury"],
                allow_failure=True,
            )
        self.sury_sources.unlink(missing_ok=True)
        self.executor.run("Refresh package lists", ["apt-get", "update", "-qq"])
        self.official_source = True

        available = self.available_versions()
        if not available:
            raise ProvisionError("No PHP version found in the Ubuntu archive.")
        self.session_log.info("PHP versions in the Ubuntu archive:")
        for version in available:
            self.session_log.info(f"  - PHP {version}")
        target = available[-1]
        if not prompter.confirm(f"Install Ubuntu's PHP {target}?", default=True):
            self.session_log.warning("Operation cancelled.")
            return None
        return target

    # ── Versions ─────────────────────────────────────────────────────

    def available_versions(self) -> list[Version]:
        probe = self.executor.capture(
            ["apt-cache", "search", "--names-only", r"^php[0-9]+\.[0-9]+-fpm$"]
        )
        return _fpm_versions(probe.output)

    def installed_version(self) -> Optional[Version]:
        probe = self.executor.capture(
            ["dpkg-query", "-W", "-f=${Package}\\n", "php*-fpm"]
        )
        versions = _fpm_versions(probe.output) if probe.ok else []
        return versions[-1] if versions else None

    def select_fresh_version(
        self, prompter: Prompter, available: list[Version]
    ) -> Version:
        known = {str(v) for v in available}
        answer = prompter.ask_valid(
            f"PHP version to install (e.g. 8.3, Enter for latest {available[-1]})",
            validate=lambda text: text in known,
            error="Unknown version. Available: " + ", ".join(sorted(known)),
            default=str(available[-1]),
        )
        return parse_version(answer)

    # ── Install / remove ─────────────────────────────────────────────

    def units_for(self, version: Version) -> list[InstallUnit]:
        fpm = f"php{version}-fpm"
        extensions = OFFICIAL_EXTENSIONS if self.official_source else EXTENSIONS
        units = [InstallUnit(fpm, UnitKind.CORE, service=fpm)]
        units.extend(
            InstallUnit(f"php{version}-{ext}", UnitKind.EXTENSION, optional=True)
            for ext in extensions
        )
        return units

    def install(self, version: Version) -> list[InstallOutcome]:
        self.session_log.info(f"Installing PHP {version} and common extensions...")
        backend = AptBackend(self.executor, f"^php{version}-")
        return StagedInstaller(self.executor, backend).install(self.units_for(version))

    def uninstall(self, version: Version) -> ActionRecord:
        return self.executor.run(
            f"Remove PHP {version} packages",
            # apt-get treats arguments with regex characters as name regexes
            ["apt-get", "remove", "-y", "--purge", f"^php{re.escape(str(version))}-"],
            allow_failure=True,
            env=NONINTERACTIVE_ENV,
        )

    # ── Verification ─────────────────────────────────────────────────

    def is_live(self, version: Version) -> bool:
        probe = self.executor.capture(
            ["systemctl", "is-active", "--quiet", f"php{version}-fpm"]
        )
        return probe.ok

    def remediate(self, version: Version) -> None:
        self.executor.run(
            f"Restart php{version}-fpm",
            ["systemctl", "restart", f"php{version}-fpm"],
            allow_failure=True,
        )

    def manual_recovery(self, version: Version) -> list[str]:
        service = f"php{version}-fpm"
        return [
            f"sudo php-fpm{version} -t",
            f"sudo journalctl -u {service} --no-pager -n 50",
            f"sudo systemctl restart {service}",
        ]

    def summary(self, version: Version) -> dict[str, str]:
        probe = self.executor.capture([f"php{version}", "-v"])
        match = re.search(r"PHP (\d+\.\d+\.\d+)", probe.output)
        full = match.group(1) if match else "unknown"
        return {
            "Version": f"{full} (branch {version})",
            "php.ini": str(self.etc_dir / str(version) / "fpm" / "php.ini"),
            "Socket": self._listen_socket(version),
        }

    def _listen_socket(self, version: Version) -> str:
        pool = self.etc_dir / str(version) / "fpm" / "pool.d" / "www.conf"
        try:
            lines = pool.read_text().splitlines()
        except OSError:
            return "unknown"
        for line in lines:
            match = re.match(r"^\s*listen\s*=\s*(.+?)\s*$", line)
            if match:
                return match.group(1)
        return "unknown"


def _fpm_versions(output: str) -> list[Version]:
    found = []
    for line in output.splitlines():
        match = FPM_PACKAGE_RE.match(line.strip())
        if match:
            found.append(parse_version(match.group(1)))
    return sort_versions(found)
