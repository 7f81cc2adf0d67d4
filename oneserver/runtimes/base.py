"""RuntimeModule — abstract base for the version-managed runtimes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from oneserver.core.executor import ActionExecutor
from oneserver.core.models import ActionRecord, InstallOutcome, Version
from oneserver.core.prompts import Prompter


@dataclass
class RuntimeInfo:
    identifier: str
    name: str
    manager: str


class RuntimeModule(ABC):
    # fnm keeps versions side by side, so removing the old one is optional
    keeps_old_versions: bool = False

    def __init__(self, executor: ActionExecutor):
        self.executor = executor
        self.session_log = executor.session_log

    @abstractmethod
    def get_info(self) -> RuntimeInfo: ...

    def prepare(self) -> None:
        """Bootstrap package sources before any version is probed."""

    @abstractmethod
    def installed_version(self) -> Optional[Version]: ...

    def managed_versions(self) -> list[Version]:
        return []

    @abstractmethod
    def available_versions(self) -> list[Version]: ...

    def recommended_version(self, available: list[Version]) -> Version:
        return available[-1]

    def switch_choices(self) -> list[Version]:
        return self.available_versions()

    def describe(self, version: Version) -> str:
        return f"{self.get_info().name} {version}"

    @abstractmethod
    def select_fresh_version(
        self, prompter: Prompter, available: list[Version]
    ) -> Version: ...

    @abstractmethod
    def install(self, version: Version) -> list[InstallOutcome]: ...

    @abstractmethod
    def uninstall(self, version: Version) -> ActionRecord: ...

    @abstractmethod
    def is_live(self, version: Version) -> bool: ...

    @abstractmethod
    def remediate(self, version: Version) -> None: ...

    def manual_recovery(self, version: Version) -> list[str]:
        return []

    def has_alternate_source(self) -> bool:
        return False

    def alternate_source_name(self) -> str:
        return ""

    def use_alternate_source(self, prompter: Prompter) -> Optional[Version]:
        return None

    def summary(self, version: Version) -> dict[str, str]:
        return {"Version": str(version)}
