"""Runtime registry — maps CLI identifiers to runtime modules."""

from __future__ import annotations

import logging

from oneserver.core.executor import ActionExecutor
from oneserver.runtimes.base import RuntimeModule
from oneserver.runtimes.nodejs import NodeRuntime
from oneserver.runtimes.php import PhpRuntime

logger = logging.getLogger(__name__)

_registry: dict[str, type[RuntimeModule]] = {
    "php": PhpRuntime,
    "node": NodeRuntime,
}

_ALIASES = {"nodejs": "node", "php-fpm": "php"}


def list_modules() -> list[str]:
    """Return identifiers of all registered runtimes."""
    return list(_registry.keys())


def resolve(identifier: str) -> str:
    """Canonical identifier for a name or alias, or raise ValueError."""
    key = _ALIASES.get(identifier.lower(), identifier.lower())
    if key not in _registry:
        available = ", ".join(_registry.keys())
        raise ValueError(
            f"Unknown runtime: {identifier!r}. Available: {available}"
        )
    return key


def get_module(identifier: str, executor: ActionExecutor) -> RuntimeModule:
    """Instantiate a runtime by identifier, or raise ValueError."""
    key = resolve(identifier)
    logger.debug("Loading runtime %s", key)
    return _registry[key](executor)
