"""Monitor: polls one process and fires exactly one terminal action.

States::

    IDLE -> WATCHING -> NATURAL_EXIT | TIMEOUT_TRIGGERED | THRESHOLD_TRIGGERED
                                          -> TERMINATED

Each tick checks, in order, and stops at the first match:

  1. elapsed wall-clock time >= policy timeout  -> timeout
  2. process no longer alive                    -> natural exit
  3. cpu_percent > cpu limit                    -> threshold (CPU)
  4. memory_bytes > memory limit                -> threshold (memory)

The ``tick()`` method is deterministic and synchronous: it accepts an
explicit *now* from the monitor's clock, so the state machine is testable
without threads or real processes.  Once a trigger is claimed every later
tick is a no-op.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from killswitch.core.engine import TerminationEngine
from killswitch.core.errors import ProcessNotFound
from killswitch.core.models import (
    MonitorOutcome,
    MonitorState,
    ResourceSample,
    ThresholdPolicy,
    TriggerKind,
    is_valid_pid,
    state_for_trigger,
)
from killswitch.sensors.process import (
    ProcessLiveness,
    ResourceSampler,
    default_liveness,
)

logger = logging.getLogger(__name__)


def format_number(value: float) -> str:
    """Render ``50.0`` as ``50`` and ``12.5`` as ``12.5``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(value)


def cpu_reason(limit: float, sample: ResourceSample) -> str:
    return (
        f"CPU exceeded {format_number(limit)}% "
        f"(was {sample.cpu_percent:.1f}%)"
    )


def memory_reason(limit_mb: float, sample: ResourceSample) -> str:
    return (
        f"Memory exceeded {format_number(limit_mb)}MB "
        f"(was {sample.memory_mb:.1f}MB)"
    )


class Monitor:
    """Watch an existing process against a :class:`ThresholdPolicy`.

    Parameters
    ----------
    pid:
        Process to watch.
    policy:
        CPU, memory and timeout limits for this run.
    engine:
        Performs the kill and receipt on a timeout or threshold trigger.
    sampler, liveness:
        Resource and liveness probes; defaults use psutil / signal 0.
    tick_interval:
        Seconds between the start of consecutive ticks in :meth:`run`.
    on_sample:
        Called with every resource sample (live display).
    clock, sleep:
        Time source and sleeper, injectable for tests.
    """

    def __init__(
        self,
        pid: int,
        policy: ThresholdPolicy,
        engine: TerminationEngine,
        sampler: ResourceSampler | None = None,
        liveness: ProcessLiveness | None = None,
        tick_interval: float = 1.0,
        on_sample: Callable[[ResourceSample], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not is_valid_pid(pid):
            raise ValueError(f"pid must be a positive integer (got {pid!r})")
        self._pid = pid
        self._policy = policy
        self._engine = engine
        self._sampler = sampler or ResourceSampler()
        self._liveness = liveness or default_liveness()
        self._tick_interval = tick_interval
        self._on_sample = on_sample
        self._clock = clock
        self._sleep = sleep

        self._state = MonitorState.IDLE
        self._started_at: float | None = None
        self._completed = False
        self._lock = threading.Lock()
        self._ticks = 0
        self._outcome: MonitorOutcome | None = None

    # --- Properties -----------------------------------------------------

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def outcome(self) -> MonitorOutcome | None:
        return self._outcome

    @property
    def tick_count(self) -> int:
        return self._ticks

    # --- Lifecycle ------------------------------------------------------

    def start(self, now: float | None = None) -> None:
        """Enter WATCHING.  The timeout is measured from here."""
        if self._state is not MonitorState.IDLE:
            return
        self._started_at = self._clock() if now is None else now
        self._state = MonitorState.WATCHING
        logger.info(
            "Watching PID %d (cpu>%s%%, memory>%sMB, timeout=%ss)",
            self._pid,
            format_number(self._policy.cpu_limit_percent),
            format_number(self._policy.memory_limit_mb),
            format_number(self._policy.timeout_seconds),
        )

    def run(self) -> MonitorOutcome:
        """Poll until a trigger fires.  Ticks never overlap."""
        self.start()
        while True:
            began = self._clock()
            outcome = self.tick()
            if outcome is not None:
                return outcome
            remaining = self._tick_interval - (self._clock() - began)
            if remaining > 0:
                self._sleep(remaining)

    def tick(self, now: float | None = None) -> MonitorOutcome | None:
        """Evaluate one poll tick.

        Returns the outcome on the tick that triggers, ``None`` otherwise,
        and ``None`` for every tick after completion.
        """
        if self._completed:
            return None
        if self._started_at is None:
            raise RuntimeError("Monitor.tick() called before start()")

        if now is None:
            now = self._clock()
        self._ticks += 1

        if now - self._started_at >= self._policy.timeout_seconds:
            return self._fire(TriggerKind.TIMEOUT, "timeout exceeded")

        if not self._liveness.is_alive(self._pid):
            return self._fire(TriggerKind.NATURAL_EXIT, "process ended naturally")

        try:
            sample = self._sampler.sample(self._pid)
        except ProcessNotFound as exc:
            return self._fire(TriggerKind.NATURAL_EXIT, str(exc))

        if self._on_sample is not None:
            self._on_sample(sample)

        if sample.cpu_percent > self._policy.cpu_limit_percent:
            return self._fire(
                TriggerKind.CPU,
                cpu_reason(self._policy.cpu_limit_percent, sample),
                sample,
            )
        if sample.memory_bytes > self._policy.memory_limit_bytes:
            return self._fire(
                TriggerKind.MEMORY,
                memory_reason(self._policy.memory_limit_mb, sample),
                sample,
            )
        return None

    # --- Terminal transition --------------------------------------------

    def _claim(self) -> bool:
        with self._lock:
            if self._completed:
                return False
            self._completed = True
            return True

    def _fire(
        self,
        trigger: TriggerKind,
        reason: str,
        sample: ResourceSample | None = None,
    ) -> MonitorOutcome | None:
        if not self._claim():
            return None
        self._state = state_for_trigger(trigger)
        logger.info("PID %d: %s", self._pid, reason)

        termination = None
        if trigger.is_kill:
            termination = self._engine.terminate(self._pid, reason)
        self._state = MonitorState.TERMINATED

        self._outcome = MonitorOutcome(
            trigger=trigger,
            reason=reason,
            ticks=self._ticks,
            sample=sample,
            termination=termination,
        )
        return self._outcome
