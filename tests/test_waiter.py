import logging
import sys
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from edgeprov.common.waiter import (
    StateWaiter,
    UnexpectedStateError,
    WaitRefreshError,
    WaitTimeoutError,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedSource:
    """Return the scripted statuses in order, repeating the last one."""

    def __init__(self, statuses: list) -> None:
        self.statuses = list(statuses)
        self.refreshes = 0

    def refresh(self) -> str:
        self.refreshes += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item


class StateWaiterTests(unittest.TestCase):
    def _waiter(self, source: ScriptedSource, clock: FakeClock, **overrides) -> StateWaiter:
        options = {
            "resource_id": "dev-1",
            "pending": ("INITIALIZING", "PROVISIONING"),
            "target": ("PROVISIONED",),
            "source": source,
            "interval": 5,
            "timeout": 60,
            "logger": logging.getLogger("edgeprov.test.waiter"),
            "sleep": clock.sleep,
            "clock": clock.time,
        }
        options.update(overrides)
        return StateWaiter(**options)

    def test_target_on_first_refresh_does_not_sleep(self) -> None:
        clock = FakeClock()
        source = ScriptedSource(["PROVISIONED"])

        self.assertEqual("PROVISIONED", self._waiter(source, clock).wait())
        self.assertEqual([], clock.sleeps)
        self.assertEqual(1, source.refreshes)

    def test_pending_statuses_are_polled_at_interval(self) -> None:
        clock = FakeClock()
        source = ScriptedSource(["INITIALIZING", "PROVISIONING", "PROVISIONED"])

        self.assertEqual("PROVISIONED", self._waiter(source, clock).wait())
        self.assertEqual([5, 5], clock.sleeps)
        self.assertEqual(3, source.refreshes)

    def test_unexpected_status_stops_immediately(self) -> None:
        clock = FakeClock()
        source = ScriptedSource(["PROVISIONING", "FAILED"])

        with self.assertRaises(UnexpectedStateError) as ctx:
            self._waiter(source, clock).wait()

        self.assertEqual("FAILED", ctx.exception.last_status)
        self.assertEqual("dev-1", ctx.exception.resource_id)
        self.assertEqual([5], clock.sleeps)

    def test_timeout_reports_last_status(self) -> None:
        clock = FakeClock()
        source = ScriptedSource(["PROVISIONING"])

        with self.assertRaises(WaitTimeoutError) as ctx:
            self._waiter(source, clock, timeout=12).wait()

        self.assertEqual([5, 5, 2], clock.sleeps)
        self.assertEqual(4, source.refreshes)
        self.assertEqual("PROVISIONING", ctx.exception.last_status)
        self.assertEqual(12, ctx.exception.elapsed)

    def test_refresh_failure_is_wrapped(self) -> None:
        clock = FakeClock()
        cause = ConnectionError("connection reset")
        source = ScriptedSource([cause])

        with self.assertRaises(WaitRefreshError) as ctx:
            self._waiter(source, clock).wait()

        self.assertIs(cause, ctx.exception.__cause__)
        self.assertEqual([], clock.sleeps)

    def test_empty_status_can_be_pending(self) -> None:
        clock = FakeClock()
        source = ScriptedSource(["", "APPLYING_LICENSE", "APPLIED"])
        waiter = self._waiter(
            source, clock, pending=("APPLYING_LICENSE", ""), target=("REGISTERED", "APPLIED")
        )

        self.assertEqual("APPLIED", waiter.wait())
        self.assertEqual([5, 5], clock.sleeps)


if __name__ == "__main__":
    unittest.main()
