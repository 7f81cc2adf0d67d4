"""Idempotent key/value edits of line-oriented config files."""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from oneserver.core.models import ConfigDirective, MutationResult
from oneserver.core.session_log import SessionLog

logger = logging.getLogger(__name__)


def _key_regex(directive: ConfigDirective) -> re.Pattern[str]:
    """``KEY`` then whitespace (or the explicit separator), after any ``#``."""
    if directive.separator.strip():
        sep = r"\s*" + re.escape(directive.separator.strip())
    else:
        sep = r"(?:\s|$)"
    return re.compile(r"^[#\s]*" + re.escape(directive.key) + sep)


def find_value(path: Path, directive: ConfigDirective) -> Optional[str]:
    """Value of the first active (uncommented) line for the directive's key.

    ``None`` when the key is only commented out or absent, or when the
    active value does not fully match the directive's pattern.
    """
    regex = _key_regex(directive)
    try:
        lines = Path(path).read_text().splitlines()
    except FileNotFoundError:
        return None
    for line in lines:
        if line.lstrip().startswith("#"):
            continue
        match = regex.match(line)
        if match is None:
            continue
        value = line[match.end():].strip()
        if re.fullmatch(directive.pattern, value):
            return value
        return None
    return None


class SafeConfigMutator:
    """Rewrites or appends ``key value`` lines, backing files up once."""

    def __init__(self, session_log: SessionLog):
        self.session_log = session_log
        self.backups: dict[Path, Path] = {}

    def apply(self, path: Path, directive: ConfigDirective) -> MutationResult:
        """Make ``directive`` hold in ``path``.

        The first line that matches the key (commented or not) is rewritten
        and uncommented; when none matches, one line is appended. Writing
        the same directive twice leaves the file as the first call did.
        """
        path = Path(path)
        text = path.read_text() if path.exists() else ""
        lines = text.splitlines()
        regex = _key_regex(directive)
        rendered = directive.render()

        for index, line in enumerate(lines):
            if regex.match(line):
                if line != rendered:
                    lines[index] = rendered
                    self._write(path, text, lines)
                result = MutationResult.APPLIED
                break
        else:
            lines.append(rendered)
            self._write(path, text, lines)
            result = MutationResult.APPENDED

        self.session_log.note(
            f"Config {path}: {rendered} ({result.value})"
        )
        return result

    def apply_if_present(
        self, path: Path, directive: ConfigDirective
    ) -> Optional[MutationResult]:
        """Like :meth:`apply`, but never appends; ``None`` if the key is absent."""
        path = Path(path)
        if not path.exists():
            return None
        regex = _key_regex(directive)
        if not any(regex.match(line) for line in path.read_text().splitlines()):
            return None
        return self.apply(path, directive)

    def _write(self, path: Path, original: str, lines: list[str]) -> None:
        self._backup(path)
        content = "\n".join(lines)
        if lines and (original.endswith("\n") or not original):
            content += "\n"
        path.write_text(content)

    def _backup(self, path: Path) -> None:
        if path in self.backups or not path.exists():
            return
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.name}.bak.{timestamp}")
        shutil.copy2(path, backup_path)
        self.backups[path] = backup_path
        logger.debug("Backed up %s to %s", path, backup_path)
