"""Shutdown coordination.

Every component that can end the process (signal handler, follower,
publisher) reports through one ``TerminationChannel``. The main thread waits
on it once, and ``ShutdownCoordinator`` turns the first cause into an orderly
exit: stop reading, let the publisher finish what was queued, then save the
last delivered offset. A watchdog timer kills the process if any of that
hangs.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import threading
from typing import Callable, Optional

from .models import TerminationEvent, TerminationSource

EXIT_CLEAN = 0
EXIT_FORCED = 1

DEFAULT_GRACE_PERIOD = 10.0
DEFAULT_CHECKPOINT_INTERVAL = 2.0


class TerminationChannel:
    """Multi-producer, single-consumer channel of termination causes."""

    def __init__(self, poll_interval: float = 0.5) -> None:
        self._events: "queue.Queue[TerminationEvent]" = queue.Queue()
        self._poll_interval = poll_interval
        # written by the signal handler with a plain assignment, the handler
        # must not touch locks the interrupted main thread may be holding
        self._pending_signal: Optional[int] = None

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)

    def _handle_signal(self, signum, _frame):
        self._pending_signal = signum

    def notify(self, event: TerminationEvent) -> None:
        self._events.put(event)

    def notify_reason(self, source: TerminationSource, reason: str) -> None:
        self.notify(TerminationEvent(source=source, reason=reason))

    def _take_signal(self) -> Optional[TerminationEvent]:
        signum = self._pending_signal
        if signum is None:
            return None
        self._pending_signal = None
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        return TerminationEvent(source=TerminationSource.SIGNAL, reason=f"received signal {name}")

    def wait(self, timeout: Optional[float] = None) -> Optional[TerminationEvent]:
        """Block until the first termination cause arrives.

        Returns ``None`` only when *timeout* expires first.
        """
        remaining = timeout
        while remaining is None or remaining > 0:
            event = self._take_signal()
            if event is not None:
                return event
            step = self._poll_interval if remaining is None else min(self._poll_interval, remaining)
            try:
                return self._events.get(timeout=step)
            except queue.Empty:
                if remaining is not None:
                    remaining -= step
        return self._take_signal()

    def pending(self) -> list:
        """Causes that arrived after the first one, for logging."""
        late = []
        while True:
            try:
                late.append(self._events.get_nowait())
            except queue.Empty:
                return late


class CheckpointTicker:
    """Periodically asks the follower to persist its offset."""

    def __init__(self, follower, interval: float = DEFAULT_CHECKPOINT_INTERVAL) -> None:
        self._follower = follower
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="CheckpointTickerThread", daemon=True)
        self._thread.start()

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self._follower.request_checkpoint()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._interval)


class ShutdownCoordinator:
    def __init__(
        self,
        channel: TerminationChannel,
        follower,
        dispatch_queue,
        publisher,
        ticker: Optional[CheckpointTicker] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        force_exit: Callable[[int], None] = os._exit,
    ) -> None:
        self._channel = channel
        self._follower = follower
        self._dispatch_queue = dispatch_queue
        self._publisher = publisher
        self._ticker = ticker
        self._grace_period = grace_period
        self._force_exit = force_exit
        # each blocking step gets a share of the grace period, the watchdog
        # fires once the whole period is used up
        self._step_timeout = grace_period / 4
        self._watchdog: Optional[threading.Timer] = None
        self.cause: Optional[TerminationEvent] = None

    def run(self) -> int:
        """Wait for the first termination cause and shut everything down."""
        cause = self._channel.wait()
        return self.shutdown(cause)

    def shutdown(self, cause: TerminationEvent) -> int:
        self.cause = cause
        logging.info("Shutting down: %s", cause)
        self._arm_watchdog()
        try:
            if self._ticker:
                self._ticker.stop()
            self._stop_follower()
            self._drain_publisher()
            self._final_checkpoint()
        finally:
            self._disarm_watchdog()

        for late in self._channel.pending():
            logging.debug("Ignoring termination cause received during shutdown: %s", late)

        logging.info("The End. %s", cause.reason)
        return EXIT_CLEAN

    def _stop_follower(self) -> None:
        self._follower.stop()
        self._follower.join(self._step_timeout)
        if self._follower.is_alive():
            logging.warning("Follower still running after %.1fs", self._step_timeout)

    def _final_checkpoint(self) -> None:
        """Persist what the publisher delivered, after it is done publishing."""
        if not self._follower.is_alive():
            self._follower.checkpoint()
            return

        done = self._follower.request_checkpoint()
        if not done.wait(self._step_timeout):
            logging.warning("Follower did not confirm the final checkpoint within %.1fs", self._step_timeout)

    def _drain_publisher(self) -> None:
        self._dispatch_queue.close()
        self._publisher.join(self._step_timeout)
        if self._publisher.is_alive():
            logging.warning("Publisher still busy after %.1fs, stopping it", self._step_timeout)
        self._publisher.stop()

    def _arm_watchdog(self) -> None:
        self._watchdog = threading.Timer(self._grace_period, self._expire)
        self._watchdog.daemon = True
        self._watchdog.start()

    def _disarm_watchdog(self) -> None:
        if self._watchdog:
            self._watchdog.cancel()
            self._watchdog = None

    def _expire(self) -> None:
        logging.critical(
            "Shutdown did not finish within the grace period, forcing exit (cause: %s)",
            self.cause.reason if self.cause else "unknown",
        )
        self._force_exit(EXIT_FORCED)
