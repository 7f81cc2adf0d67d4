"""Post-change verification with a bounded remediation round."""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from oneserver.core.models import VerifyResult
from oneserver.core.session_log import SessionLog

logger = logging.getLogger(__name__)


class VerifyAndRemediate:
    """Probe → (remediate → settle → probe)×max_rounds → Verified/Unrecovered.

    The number of remediation rounds is fixed. Once they are exhausted the
    operator gets the literal commands to finish the job by hand.
    """

    def __init__(
        self,
        session_log: SessionLog,
        settle_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_log = session_log
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    def verify_and_fix(
        self,
        probe: Callable[[], bool],
        remediation: Callable[[], None],
        manual_steps: Sequence[str] = (),
        max_rounds: int = 1,
        description: str = "the change",
    ) -> VerifyResult:
        self._settle()
        if probe():
            return VerifyResult.VERIFIED

        for round_number in range(1, max_rounds + 1):
            self.session_log.warning(
                f"Could not confirm {description}, attempting repair "
                f"({round_number}/{max_rounds})..."
            )
            remediation()
            self._settle()
            if probe():
                self.session_log.success(f"Repair succeeded: {description} confirmed.")
                return VerifyResult.VERIFIED

        self.session_log.error(f"Automatic repair failed: {description} not confirmed.")
        if manual_steps:
            self.session_log.warning("Run the following commands manually:")
            for step in manual_steps:
                self.session_log.warning(f"  {step}")
        return VerifyResult.UNRECOVERED

    def _settle(self) -> None:
        if self.settle_seconds > 0:
            logger.debug("Waiting %.1fs before probing", self.settle_seconds)
            self.sleep(self.settle_seconds)
