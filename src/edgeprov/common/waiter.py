"""Bounded polling of remote resource status."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Collection, Protocol


class StatusSource(Protocol):
    """Anything that can report the current status of a remote resource.

    ``refresh`` raises when the status cannot be obtained.
    """

    def refresh(self) -> str: ...


class WaitError(RuntimeError):
    """Base exception for failed waits."""

    def __init__(self, message: str, resource_id: str, last_status: str | None = None) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.last_status = last_status


class UnexpectedStateError(WaitError):
    """Raised when a resource reports a status outside the expected sets."""


class WaitTimeoutError(WaitError):
    """Raised when a resource is still pending once the deadline passes."""

    def __init__(self, message: str, resource_id: str, last_status: str | None, elapsed: float) -> None:
        super().__init__(message, resource_id, last_status)
        self.elapsed = elapsed


class WaitRefreshError(WaitError):
    """Raised when the status refresh itself fails; the cause is chained."""


@dataclass(slots=True)
class StateWaiter:
    """Poll ``source`` until it reports one of the ``target`` statuses.

    The first refresh happens immediately. Pending statuses are retried every
    ``interval`` seconds until ``timeout`` elapses; any status outside
    ``pending`` and ``target`` ends the wait at once, and so does a failing
    refresh. Transport errors are not retried here.
    """

    resource_id: str
    pending: Collection[str]
    target: Collection[str]
    source: StatusSource
    interval: float
    timeout: float
    description: str = "status"
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def wait(self) -> str:
        """Block until a target status is reached and return it."""

        log_extra = {"uuid": self.resource_id}
        started = self.clock()
        deadline = started + self.timeout
        refreshes = 0

        self.logger.debug(
            "waiting for %s target=%s timeout=%ss",
            self.description,
            ",".join(sorted(self.target)) or "-",
            self.timeout,
            extra=log_extra,
        )

        while True:
            try:
                status = self.source.refresh()
            except Exception as exc:
                raise WaitRefreshError(
                    f"unable to refresh {self.description} of {self.resource_id}: {exc}",
                    self.resource_id,
                ) from exc

            refreshes += 1
            self.logger.debug(
                "%s=%s refresh=%d", self.description, status or "<empty>", refreshes, extra=log_extra
            )

            if status in self.target:
                self.logger.info(
                    "%s reached %s after %.0fs",
                    self.description,
                    status,
                    self.clock() - started,
                    extra=log_extra,
                )
                return status

            if status not in self.pending:
                raise UnexpectedStateError(
                    f"unexpected {self.description} '{status}' for {self.resource_id}, "
                    f"expected one of {sorted(self.target)}",
                    self.resource_id,
                    status,
                )

            now = self.clock()
            if now >= deadline:
                elapsed = now - started
                raise WaitTimeoutError(
                    f"timeout while waiting for {self.description} of {self.resource_id} "
                    f"(last={status or '<empty>'}, elapsed={elapsed:.0f}s, timeout={self.timeout:.0f}s)",
                    self.resource_id,
                    status,
                    elapsed,
                )

            self.sleep(min(self.interval, deadline - now))
