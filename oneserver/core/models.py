"""Core data models for oneserver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

Command = Union[str, list[str]]


class Comparison(Enum):
    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"


@dataclass(frozen=True)
class Version:
    parts: tuple[int, ...]

    @property
    def major(self) -> int:
        return self.parts[0] if self.parts else 0

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.parts)


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ActionRecord:
    name: str
    command: str
    started_at: datetime
    finished_at: datetime
    exit_code: int
    allow_failure: bool = False
    output: str = ""

    @property
    def outcome(self) -> Outcome:
        return Outcome.SUCCESS if self.exit_code == 0 else Outcome.FAILURE

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class UnitKind(Enum):
    CORE = "core"
    EXTENSION = "extension"


@dataclass(frozen=True)
class InstallUnit:
    identifier: str
    kind: UnitKind
    optional: bool = False
    service: Optional[str] = None  # only meaningful for core units


class InstallResult(Enum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class InstallOutcome:
    unit: InstallUnit
    result: InstallResult
    attempts: list[ActionRecord] = field(default_factory=list)


@dataclass(frozen=True)
class ConfigDirective:
    key: str
    value: str
    pattern: str = r"\S+"  # shape of a value read back by find_value
    separator: str = " "

    def render(self) -> str:
        return f"{self.key}{self.separator}{self.value}"


class MutationResult(Enum):
    APPLIED = "applied"
    APPENDED = "appended"


class Offer(Enum):
    UPGRADE = "upgrade"
    SWITCH = "switch"
    REINSTALL = "reinstall"


@dataclass(frozen=True)
class ReconciliationPlan:
    """Base of the plan variants. Only the probe-time variants carry offers."""

    @property
    def offers(self) -> tuple[Offer, ...]:
        return ()


@dataclass(frozen=True)
class Upgrade(ReconciliationPlan):
    target: Version

    @property
    def offers(self) -> tuple[Offer, ...]:
        return (Offer.UPGRADE, Offer.SWITCH)


@dataclass(frozen=True)
class AlreadyLatest(ReconciliationPlan):
    current: Version

    @property
    def offers(self) -> tuple[Offer, ...]:
        return (Offer.SWITCH, Offer.REINSTALL)


@dataclass(frozen=True)
class AlreadyNewer(ReconciliationPlan):
    current: Version

    @property
    def offers(self) -> tuple[Offer, ...]:
        return (Offer.SWITCH,)


@dataclass(frozen=True)
class SwitchTo(ReconciliationPlan):
    target: Version


@dataclass(frozen=True)
class Reinstall(ReconciliationPlan):
    current: Version


@dataclass(frozen=True)
class NoOp(ReconciliationPlan):
    reason: str = ""


class VerifyResult(Enum):
    VERIFIED = "verified"
    UNRECOVERED = "unrecovered"


@dataclass
class HostEnvironment:
    os_id: str
    os_version: str
    is_root: bool
    is_interactive: bool
    invoking_user: str


@dataclass
class SessionResult:
    success: bool
    plan: Optional[ReconciliationPlan] = None
    installed_version: Optional[Version] = None
    outcomes: list[InstallOutcome] = field(default_factory=list)
    verification: Optional[VerifyResult] = None
    summary: dict[str, str] = field(default_factory=dict)
    error_message: Optional[str] = None
