"""Cycle status snapshots and the observers that receive them."""

import enum
import logging
import time
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    READY = "ready"
    SIMULATING = "simulating"
    WAITING_APPROVAL = "waiting_approval"
    SENDING = "sending"
    CONFIRMING = "confirming"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CycleStatus:
    phase: Phase = Phase.IDLE
    is_running: bool = False
    round_id: int | None = None
    slots_left: int | None = None
    req_id: int = 0
    asset_price: float | None = None
    base_price: float | None = None
    last_tx_signature: str | None = None
    message: str | None = None
    updated_at: float = field(default_factory=time.time)

    def evolve(self, **changes) -> "CycleStatus":
        return replace(self, updated_at=time.time(), **changes)


class StatusReporter:
    """Observer interface. Every hook is optional and fire-and-forget."""

    def on_status_update(self, status: CycleStatus) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    def on_transaction_sent(self, signature: str) -> None:
        pass


class StatusBoard:
    """Holds the current snapshot and publishes every transition to observers."""

    def __init__(self, reporters=()):
        self._status = CycleStatus()
        self.reporters: list[StatusReporter] = list(reporters)

    @property
    def current(self) -> CycleStatus:
        return self._status

    def subscribe(self, reporter: StatusReporter):
        self.reporters.append(reporter)

    def update(self, **changes) -> CycleStatus:
        self._status = self._status.evolve(**changes)
        self._publish("on_status_update", self._status)
        return self._status

    def error(self, error: Exception):
        self._publish("on_error", error)

    def transaction_sent(self, signature: str):
        self._publish("on_transaction_sent", signature)

    def _publish(self, hook: str, arg):
        for reporter in self.reporters:
            try:
                getattr(reporter, hook)(arg)
            except Exception:
                logger.exception("status reporter %r failed in %s", reporter, hook)


class ConsoleReporter(StatusReporter):
    """Echo phase changes and messages to the terminal."""

    def __init__(self, echo):
        self.echo = echo
        self._last = None

    def on_status_update(self, status: CycleStatus) -> None:
        key = (status.phase, status.message)
        if key == self._last or status.message is None:
            return
        self._last = key
        prefix = f"[#{status.round_id}]" if status.round_id is not None else "[-]"
        self.echo(f"{prefix} {status.phase.value:<16} {status.message}")

    def on_error(self, error: Exception) -> None:
        self.echo(f"  error: {error}")

    def on_transaction_sent(self, signature: str) -> None:
        self.echo(f"  tx: https://solscan.io/tx/{signature}")
