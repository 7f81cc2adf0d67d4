"""Exceptions that end a provisioning session."""

from __future__ import annotations

from oneserver.core.models import ActionRecord


class ProvisionError(Exception):
    """A precondition or setup problem that ends the session with status 1."""

    exit_code = 1


class FatalActionError(ProvisionError):
    """A strict action exited non-zero; the session stops right here."""

    def __init__(self, record: ActionRecord):
        super().__init__(
            f"Task '{record.name}' failed (exit code {record.exit_code})"
        )
        self.record = record
        self.exit_code = record.exit_code


class UnitUnavailableError(ProvisionError):
    """The core unit of an install is not present in the package index."""

    def __init__(self, identifier: str):
        super().__init__(f"No installable package found for {identifier}")
        self.identifier = identifier
