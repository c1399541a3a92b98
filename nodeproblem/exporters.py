"""Registry of pluggable exporters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .rules import Status

__all__ = [
    "Exporter",
    "ExporterHandler",
    "ExporterNotFoundError",
    "register",
    "get_exporter_names",
    "get_exporter_handler",
    "new_exporters",
    "clear",
]


class Exporter(Protocol):
    """Something that reports problems to an external system."""

    def export_problems(self, status: Status) -> None: ...


@dataclass(frozen=True)
class ExporterHandler:
    """A factory for an exporter together with the options it is created from."""

    create_exporter: Callable[[Any], Optional[Exporter]]
    options: Any = None


class ExporterNotFoundError(LookupError):
    """Raised when no handler is registered for an exporter type."""


_handlers: dict[str, ExporterHandler] = {}


def register(exporter_type: str, handler: ExporterHandler) -> None:
    """Register the handler used to create exporters of the given type."""
    _handlers[exporter_type] = handler


def get_exporter_names() -> list[str]:
    return list(_handlers)


def get_exporter_handler(exporter_type: str) -> ExporterHandler:
    try:
        return _handlers[exporter_type]
    except KeyError:
        raise ExporterNotFoundError(
            f"Exporter handler for {exporter_type} does not exist"
        ) from None


def new_exporters() -> list[Exporter]:
    """Create every registered exporter; factories returning None are skipped."""
    exporters = []
    for handler in _handlers.values():
        exporter = handler.create_exporter(handler.options)
        if exporter is not None:
            exporters.append(exporter)
    return exporters


def clear() -> None:
    """Forget all registered handlers."""
    _handlers.clear()