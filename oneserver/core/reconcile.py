"""Reconciliation — from (installed, available) to one concrete action.

The work is split in three steps so the decision can be tested without a
terminal:

1. :func:`reconcile` is pure: it compares the two versions and returns a
   preliminary plan carrying the offers of the decision table.
2. :meth:`ReconciliationStateMachine.resolve` walks those offers with the
   operator and always ends in one terminal plan (``Upgrade``,
   ``SwitchTo``, ``Reinstall`` or ``NoOp``).
3. :meth:`ReconciliationStateMachine.execute` performs the terminal plan:
   install the target, and only after a successful install retire the
   version that was live before.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from oneserver.core.models import (
    ActionRecord,
    AlreadyLatest,
    AlreadyNewer,
    Comparison,
    InstallOutcome,
    InstallResult,
    NoOp,
    Offer,
    ReconciliationPlan,
    Reinstall,
    SwitchTo,
    Upgrade,
    UnitKind,
    Version,
)
from oneserver.core.prompts import Prompter
from oneserver.core.versions import compare
from oneserver.runtimes.base import RuntimeModule

logger = logging.getLogger(__name__)

ALTERNATE_SOURCE_THRESHOLD = 3


def reconcile(installed: Version, available: Version) -> ReconciliationPlan:
    comparison = compare(installed, available)
    if comparison is Comparison.LESS:
        return Upgrade(available)
    if comparison is Comparison.GREATER:
        return AlreadyNewer(installed)
    return AlreadyLatest(installed)


@dataclass
class ExecutionResult:
    plan: ReconciliationPlan
    installed_version: Optional[Version] = None
    outcomes: list[InstallOutcome] = field(default_factory=list)
    retired: Optional[ActionRecord] = None

    @property
    def changed(self) -> bool:
        return self.installed_version is not None

    @property
    def failed_units(self) -> list[str]:
        return [
            o.unit.identifier for o in self.outcomes
            if o.result is InstallResult.FAILED
        ]


class ReconciliationStateMachine:
    def __init__(self, runtime: RuntimeModule, prompter: Prompter):
        self.runtime = runtime
        self.prompter = prompter
        self.session_log = runtime.session_log
        self._alternate_source_used = False

    # ── Interactive resolution ──────────────────────────────────────

    def resolve(
        self, plan: ReconciliationPlan, current: Version
    ) -> ReconciliationPlan:
        name = self.runtime.get_info().name
        if isinstance(plan, Upgrade):
            self.session_log.warning(f"A newer version is available: {plan.target}")
        elif isinstance(plan, AlreadyNewer):
            self.session_log.success(
                f"{name} {current} is newer than the latest known release."
            )
        elif isinstance(plan, AlreadyLatest):
            self.session_log.success(f"{name} {current} is already the latest.")

        for offer in plan.offers:
            if offer is Offer.UPGRADE:
                if self.prompter.confirm(
                    f"Upgrade {name} from {current} to {plan.target}?", default=True
                ):
                    return plan
                self.session_log.info("You chose not to upgrade.")
            elif offer is Offer.SWITCH:
                if self.prompter.confirm("Switch to another version?", default=False):
                    return self._resolve_switch(current)
            elif offer is Offer.REINSTALL:
                if self.prompter.confirm(
                    f"Force a reinstall of {name} {current}?", default=False
                ):
                    return Reinstall(current)

        self.session_log.warning("Operation cancelled.")
        return NoOp("declined")

    def _resolve_switch(self, current: Version) -> ReconciliationPlan:
        name = self.runtime.get_info().name
        candidates = [
            v for v in self.runtime.switch_choices()
            if compare(v, current) is not Comparison.EQUAL
        ]
        if not candidates:
            self.session_log.warning(f"No other {name} version is available.")
            return NoOp("no other version")

        index = self.prompter.choose(
            f"Available {name} versions (current: {current}):",
            [self.runtime.describe(v) for v in candidates],
        )
        target = candidates[index]
        if not self.prompter.confirm(
            f"You are about to switch from {name} {current} to {name} {target}. Continue?",
            default=False,
        ):
            self.session_log.warning("Switch cancelled.")
            return NoOp("switch cancelled")
        return SwitchTo(target)

    # ── Execution ───────────────────────────────────────────────────

    def execute(
        self, plan: ReconciliationPlan, current: Optional[Version] = None
    ) -> ExecutionResult:
        if isinstance(plan, NoOp):
            return ExecutionResult(plan=plan)
        if isinstance(plan, (Upgrade, SwitchTo)):
            target = plan.target
        elif isinstance(plan, Reinstall):
            target = plan.current
        else:
            raise ValueError(f"Plan {plan!r} has not been resolved")

        installed, outcomes = self._install(target)
        result = ExecutionResult(
            plan=plan, installed_version=installed, outcomes=outcomes
        )
        if (
            isinstance(plan, (Upgrade, SwitchTo))
            and current is not None
            and compare(installed, current) is not Comparison.EQUAL
        ):
            result.retired = self._retire(current)
        return result

    def _install(self, target: Version) -> tuple[Version, list[InstallOutcome]]:
        outcomes = self.runtime.install(target)
        failed = [
            o for o in outcomes
            if o.unit.kind is UnitKind.EXTENSION and o.result is InstallResult.FAILED
        ]
        if (
            len(failed) < ALTERNATE_SOURCE_THRESHOLD
            or self._alternate_source_used
            or not self.runtime.has_alternate_source()
        ):
            return target, outcomes

        self._alternate_source_used = True
        source = self.runtime.alternate_source_name()
        self.session_log.warning(
            f"{len(failed)} extensions could not be installed for "
            f"{self.runtime.describe(target)}."
        )
        self.session_log.info(
            f"Recommended: switch to {source}, which is fully compatible "
            "with this system but may ship an older version."
        )
        if not self.prompter.confirm(f"Switch to {source}?", default=True):
            self.session_log.warning(
                "Keeping the current source; some extensions will be missing."
            )
            return target, outcomes

        alternate = self.runtime.use_alternate_source(self.prompter)
        if alternate is None:
            return target, outcomes
        if compare(alternate, target) is not Comparison.EQUAL:
            self._retire(target, ask=False)
        return alternate, self.runtime.install(alternate)

    def _retire(self, previous: Version, ask: bool = True) -> Optional[ActionRecord]:
        label = self.runtime.describe(previous)
        if ask and self.runtime.keeps_old_versions:
            manager = self.runtime.get_info().manager
            if not self.prompter.confirm(
                f"Remove the old version {label} from {manager}?", default=False
            ):
                self.session_log.info(f"Keeping {label} installed alongside.")
                return None

        self.session_log.info(f"Removing old version {label}...")
        record = self.runtime.uninstall(previous)
        if record.succeeded:
            self.session_log.success(f"{label} removed.")
        else:
            self.session_log.warning(
                f"Warning: removing {label} failed (it may already be gone); continuing."
            )
        return record
