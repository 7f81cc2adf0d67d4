"""Node.js runtime — managed by fnm, exposed system-wide through symlinks.

fnm itself lives in ``/usr/local/share/fnm`` and keeps every installed
major side by side under ``node-versions``. The active major is whatever
``/usr/local/bin/node`` points at; switching versions means installing the
new major and re-pointing the node/npm/npx links.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Optional

from oneserver.core.errors import ProvisionError
from oneserver.core.executor import NONINTERACTIVE_ENV
from oneserver.core.installer import InstallBackend, StagedInstaller
from oneserver.core.models import (
    ActionRecord,
    Command,
    InstallOutcome,
    InstallUnit,
    UnitKind,
    Version,
)
from oneserver.core.prompts import Prompter
from oneserver.core.versions import parse_version, sort_versions
from oneserver.runtimes.base import RuntimeInfo, RuntimeModule

logger = logging.getLogger(__name__)

# Update these when a new LTS line or Current release ships.
LTS_VERSIONS = (20, 22, 24)
CURRENT_VERSION = 25

FNM_INSTALL_URL = "https://fnm.vercel.app/install"
LINKED_BINARIES = ("node", "npm", "npx")

_FNM_VERSION_RE = re.compile(r"v(\d+)\.\d+\.\d+")


class FnmBackend(InstallBackend):
    """``fnm install <major>``; fnm has no minimal mode and no repair pass."""

    supports_minimal = False

    def __init__(self, fnm_bin: Path, versions_dir: Path):
        self.fnm_bin = fnm_bin
        self.env = {"FNM_DIR": str(versions_dir)}

    def minimal_install(self, unit: InstallUnit) -> Command:
        return self.full_install(unit)

    def full_install(self, unit: InstallUnit) -> Command:
        return [str(self.fnm_bin), "install", unit.identifier.rsplit("-", 1)[-1]]

    def repair(self) -> Command:
        return [str(self.fnm_bin), "list"]


class NodeRuntime(RuntimeModule):
    keeps_old_versions = True

    def __init__(
        self,
        executor,
        install_dir: Path = Path("/usr/local/share/fnm"),
        profile: Path = Path("/etc/profile.d/fnm.sh"),
        symlink_dir: Path = Path("/usr/local/bin"),
    ):
        super().__init__(executor)
        self.install_dir = Path(install_dir)
        self.fnm_bin = self.install_dir / "fnm"
        self.versions_dir = self.install_dir / "node-versions"
        self.profile = Path(profile)
        self.symlink_dir = Path(symlink_dir)

    @property
    def fnm_env(self) -> dict[str, str]:
        return {"FNM_DIR": str(self.versions_dir)}

    @property
    def node_link(self) -> Path:
        return self.symlink_dir / "node"

    def get_info(self) -> RuntimeInfo:
        return RuntimeInfo(identifier="node", name="Node.js", manager="fnm")

    # ── Versions ─────────────────────────────────────────────────────

    def installed_version(self) -> Optional[Version]:
        full = self._linked_node_version()
        return Version((full.major,)) if full else None

    def managed_versions(self) -> list[Version]:
        if not _is_executable(self.fnm_bin):
            return []
        probe = self.executor.capture([str(self.fnm_bin), "list"], env=self.fnm_env)
        majors = [
            Version((int(m),)) for m in _FNM_VERSION_RE.findall(probe.output)
        ]
        return sort_versions(majors)

    def available_versions(self) -> list[Version]:
        return [Version((m,)) for m in (*LTS_VERSIONS, CURRENT_VERSION)]

    def recommended_version(self, available: list[Version]) -> Version:
        return Version((LTS_VERSIONS[-1],))

    def describe(self, version: Version) -> str:
        if version.major == CURRENT_VERSION:
            label = " (Current)"
        elif version.major in LTS_VERSIONS:
            label = " (LTS)"
        else:
            label = ""
        return f"Node.js {version.major}.x{label}"

    def select_fresh_version(
        self, prompter: Prompter, available: list[Version]
    ) -> Version:
        recommended = self.recommended_version(available)
        labels = [
            self.describe(v) + (" - recommended" if v == recommended else "")
            for v in available
        ]
        labels.append("Enter a major version manually")
        index = prompter.choose(
            f"Select the Node.js version to install "
            f"(Enter for {self.describe(recommended)}):",
            labels,
            allow_empty=True,
        )
        if index is None:
            return recommended
        if index < len(available):
            return available[index]
        answer = prompter.ask_valid(
            "Major version (e.g. 20, 22)",
            validate=lambda text: text.isdigit(),
            error="Invalid version, enter digits only.",
        )
        return Version((int(answer),))

    # ── Install / remove ─────────────────────────────────────────────

    def install(self, version: Version) -> list[InstallOutcome]:
        major = version.major
        self.session_log.info("Checking that fnm is installed...")
        if _is_executable(self.fnm_bin):
            self.session_log.info(f"fnm is ready: {self._fnm_version()}")
        else:
            self.install_fnm()

        self.session_log.info(f"Installing Node.js {major}.x through fnm...")
        backend = FnmBackend(self.fnm_bin, self.versions_dir)
        outcomes = StagedInstaller(self.executor, backend).install(
            [InstallUnit(f"node-{major}", UnitKind.CORE)]
        )
        self.executor.run(
            f"Make Node.js {major}.x the fnm default",
            [str(self.fnm_bin), "default", str(major)],
            allow_failure=True,
            env=self.fnm_env,
        )

        self.session_log.info("Updating system-wide symlinks...")
        self.link_binaries(major)
        self.executor.run(
            "Check the linked node binary", [str(self.node_link), "--version"]
        )
        self.session_log.success(f"Node.js {major}.x installed.")
        return outcomes

    def install_fnm(self) -> None:
        self.session_log.info("Installing fnm...")
        missing = [dep for dep in ("curl", "unzip") if shutil.which(dep) is None]
        if missing:
            self.executor.run(
                f"Install prerequisites: {' '.join(missing)}",
                ["apt-get", "install", "-y", "-qq", *missing],
                env=NONINTERACTIVE_ENV,
            )
        self.install_dir.mkdir(parents=True, exist_ok=True)
        self.executor.run(
            "Download and install fnm",
            f"curl -fsSL {FNM_INSTALL_URL} | bash -s -- "
            f"--install-dir '{self.install_dir}' --skip-shell",
        )
        if not _is_executable(self.fnm_bin):
            raise ProvisionError(f"fnm executable not found after install: {self.fnm_bin}")

        self.profile.parent.mkdir(parents=True, exist_ok=True)
        self.profile.write_text(
            "# fnm (Fast Node Manager) - managed by oneserver, do not edit\n"
            f'export FNM_DIR="{self.versions_dir}"\n'
            f'export PATH="{self.install_dir}:$PATH"\n'
            f'eval "$({self.fnm_bin} env --shell bash 2>/dev/null || true)"\n'
        )
        self.profile.chmod(0o644)
        self.session_log.success(f"fnm installed: {self._fnm_version()}")

    def link_binaries(self, major: int, allow_failure: bool = False) -> bool:
        """Point node/npm/npx in the symlink dir at the given fnm major."""
        probe = self.executor.capture(
            [str(self.fnm_bin), "exec", f"--using={major}", "--", "which", "node"],
            env=self.fnm_env,
        )
        lines = probe.output.strip().splitlines() if probe.ok else []
        node_path = Path(lines[-1].strip()) if lines else None
        if node_path is None or not _is_executable(node_path):
            message = f"Cannot find the Node.js {major}.x executable."
            if allow_failure:
                self.session_log.warning(message)
                return False
            raise ProvisionError(message)

        linked = True
        for binary in LINKED_BINARIES:
            src = node_path.parent / binary
            dst = self.symlink_dir / binary
            if not _is_executable(src):
                self.session_log.warning(f"  Skipping {binary}: not part of Node.js {major}.x")
                continue
            record = self.executor.run(
                f"Link {dst} -> {src}",
                ["ln", "-sf", str(src), str(dst)],
                allow_failure=allow_failure,
            )
            linked = linked and record.succeeded
        return linked

    def uninstall(self, version: Version) -> ActionRecord:
        return self.executor.run(
            f"Remove Node.js {version.major}.x from fnm",
            [str(self.fnm_bin), "uninstall", str(version.major)],
            allow_failure=True,
            env=self.fnm_env,
        )

    # ── Verification ─────────────────────────────────────────────────

    def is_live(self, version: Version) -> bool:
        full = self._linked_node_version()
        return full is not None and full.major == version.major

    def remediate(self, version: Version) -> None:
        self.link_binaries(version.major, allow_failure=True)

    def manual_recovery(self, version: Version) -> list[str]:
        major = version.major
        return [
            f"sudo FNM_DIR={self.versions_dir} {self.fnm_bin} install {major}",
            f"sudo FNM_DIR={self.versions_dir} {self.fnm_bin} exec --using={major} -- which node",
            f"sudo ln -sf <path printed above> {self.node_link}",
        ]

    def summary(self, version: Version) -> dict[str, str]:
        npm = self.executor.capture([str(self.symlink_dir / "npm"), "-v"])
        full = self._linked_node_version()
        self.session_log.warning(
            f"New shells load fnm from {self.profile}; "
            f"for this shell run: source {self.profile}"
        )
        return {
            "Node.js": f"v{full}" if full else "unknown",
            "npm": f"v{npm.output.strip()}" if npm.ok else "unknown",
            "node path": os.path.realpath(self.node_link),
            "npm path": os.path.realpath(self.symlink_dir / "npm"),
            "fnm": str(self.fnm_bin),
            "Versions dir": str(self.versions_dir),
            "Shell profile": str(self.profile),
        }

    # ── Helpers ──────────────────────────────────────────────────────

    def _linked_node_version(self) -> Optional[Version]:
        if not _is_executable(self.node_link):
            return None
        probe = self.executor.capture([str(self.node_link), "--version"])
        text = probe.output.strip()
        if not probe.ok or not text:
            return None
        return parse_version(text.lstrip("v"))

    def _fnm_version(self) -> str:
        probe = self.executor.capture([str(self.fnm_bin), "--version"])
        return probe.output.strip() if probe.ok else "version unknown"


def _is_executable(path: Path) -> bool:
    return Path(path).is_file() and os.access(path, os.X_OK)
