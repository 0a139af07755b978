"""Typed operation results and the user notification channel."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from cloud_vault.errors import VaultError

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Aggregate of a concurrent batch once every member has settled.

    Attributes:
        succeeded: Relative paths whose transfer completed.
        failed: Relative path to the exception raised for it.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when no member of the batch failed."""
        return not self.failed

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def first_error(self) -> BaseException | None:
        """Return the first recorded failure, or None for a clean batch."""
        return next(iter(self.failed.values()), None)


@dataclass
class OperationResult:
    """Outcome of one user-level operation, rendered by the caller."""

    ok: bool
    message: str
    error: VaultError | None = None
    payload: Any = None

    @property
    def kind(self) -> str:
        """Error kind of the failure, or ``"ok"``."""
        return "ok" if self.error is None else self.error.kind

    @classmethod
    def success(cls, message: str, payload: Any = None) -> OperationResult:
        return cls(ok=True, message=message, payload=payload)

    @classmethod
    def failure(cls, message: str, error: VaultError, payload: Any = None) -> OperationResult:
        return cls(ok=False, message=message, error=error, payload=payload)


class NotificationChannel:
    """Single-slot message channel; the latest message replaces the previous one."""

    def __init__(self) -> None:
        self._latest: str | None = None
        self._listeners: list[Callable[[str], None]] = []

    @property
    def latest(self) -> str | None:
        return self._latest

    def subscribe(self, listener: Callable[[str], None]) -> None:
        """Register a callable that receives every published message."""
        self._listeners.append(listener)

    def publish(self, message: str) -> None:
        """Replace the latest message and notify every listener."""
        self._latest = message
        logger.debug("[notification] published; message:%s", message)
        for listener in self._listeners:
            listener(message)

    def dismiss(self) -> None:
        """Clear the latest message."""
        self._latest = None
