"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_LOG_DIR = "/var/log/oneserver"
DEFAULT_SETTLE_SECONDS = 3.0

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    log_dir: Path
    debug: bool = False
    settle_seconds: float = DEFAULT_SETTLE_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Resolve settings from ONESERVER_* variables and SCRIPT_DEBUG."""
        env = os.environ if environ is None else environ
        log_dir = env.get("ONESERVER_LOG_DIR") or DEFAULT_LOG_DIR
        debug = env.get("SCRIPT_DEBUG", "false").strip().lower() in _TRUTHY
        try:
            settle = float(env.get("ONESERVER_SETTLE_SECONDS", DEFAULT_SETTLE_SECONDS))
        except ValueError:
            settle = DEFAULT_SETTLE_SECONDS
        return cls(log_dir=Path(log_dir), debug=debug, settle_seconds=max(settle, 0.0))

    def log_file(self, wizard: str) -> Path:
        return self.log_dir / f"{wizard}.log"
