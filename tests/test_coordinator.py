"""Tests for termination fan-in and the shutdown sequence."""

import signal
import threading
import time

from common.state_persistence import load
from shipper.common.coordinator import (
    EXIT_CLEAN,
    EXIT_FORCED,
    CheckpointTicker,
    ShutdownCoordinator,
    TerminationChannel,
)
from shipper.common.dispatch_queue import DispatchQueue
from shipper.common.follower import Follower
from shipper.common.models import TerminationEvent, TerminationSource


class StubComponent:
    """Minimal follower/publisher double, recording calls into *journal*."""

    def __init__(self, name="stub", alive=True, journal=None):
        self.name = name
        self.alive = alive
        self.stopped = False
        self.requests = 0
        self.checkpoints = 0
        self.journal = journal if journal is not None else []

    def is_alive(self):
        return self.alive

    def request_checkpoint(self):
        self.requests += 1
        done = threading.Event()
        done.set()
        return done

    def checkpoint(self):
        self.checkpoints += 1
        self.journal.append(f"{self.name} checkpoint")
        return True

    def stop(self):
        self.stopped = True
        self.alive = False
        self.journal.append(f"{self.name} stopped")

    def join(self, timeout=None):
        self.journal.append(f"{self.name} joined")


class TestTerminationChannel:
    def test_first_cause_wins(self):
        channel = TerminationChannel(poll_interval=0.01)
        channel.notify_reason(TerminationSource.FOLLOWER, "source exhausted")
        channel.notify_reason(TerminationSource.PUBLISHER, "AMQP error: boom")

        assert channel.wait(timeout=1).reason == "source exhausted"
        assert [e.reason for e in channel.pending()] == ["AMQP error: boom"]

    def test_signal_becomes_termination(self):
        channel = TerminationChannel(poll_interval=0.01)
        channel._handle_signal(signal.SIGTERM, None)

        event = channel.wait(timeout=1)
        assert event.source == TerminationSource.SIGNAL
        assert event.reason == "received signal SIGTERM"

    def test_wait_times_out(self):
        assert TerminationChannel(poll_interval=0.01).wait(timeout=0.05) is None

    def test_wakes_up_on_event_from_other_thread(self):
        channel = TerminationChannel(poll_interval=0.01)
        timer = threading.Timer(0.05, channel.notify_reason, args=(TerminationSource.PUBLISHER, "gone"))
        timer.start()
        assert channel.wait(timeout=2).reason == "gone"


class TestCheckpointTicker:
    def test_requests_checkpoints_periodically(self):
        follower = StubComponent()
        ticker = CheckpointTicker(follower, interval=0.02)
        ticker.start()
        time.sleep(0.2)
        ticker.stop()
        seen = follower.requests
        assert seen >= 2
        time.sleep(0.05)
        assert follower.requests == seen


class TestShutdown:
    def test_drains_publisher_before_final_checkpoint(self):
        journal = []
        follower = StubComponent("follower", journal=journal)
        publisher = StubComponent("publisher", journal=journal)
        dispatch_queue = DispatchQueue()
        channel = TerminationChannel(poll_interval=0.01)
        coordinator = ShutdownCoordinator(channel, follower, dispatch_queue, publisher, grace_period=1.0)

        channel.notify_reason(TerminationSource.PUBLISHER, "AMQP server closed connection")
        assert coordinator.run() == EXIT_CLEAN

        assert journal == [
            "follower stopped", "follower joined", "publisher joined", "publisher stopped", "follower checkpoint",
        ]
        assert dispatch_queue.closed
        assert coordinator.cause.reason == "AMQP server closed connection"

    def test_stopped_follower_still_gets_final_checkpoint(self):
        follower = StubComponent(alive=False)
        coordinator = ShutdownCoordinator(TerminationChannel(), follower, DispatchQueue(), StubComponent())
        coordinator.shutdown(TerminationEvent(TerminationSource.FOLLOWER, "source exhausted"))
        assert follower.checkpoints == 1
        assert follower.requests == 0

    def test_shutdown_persists_last_delivered_offset(self, tmp_path):
        source = tmp_path / "access.log"
        source.write_bytes(b"a\nb\nc\n")
        dispatch_queue = DispatchQueue(capacity=3)
        channel = TerminationChannel(poll_interval=0.01)
        follower = Follower(str(source), dispatch_queue, channel, poll_interval=0.01)
        follower.start()
        for expected in ["a", "b"]:
            item = dispatch_queue.get(timeout=2)
            assert item.line == expected
            dispatch_queue.acknowledge(item)
        assert dispatch_queue.get(timeout=2).line == "c"

        coordinator = ShutdownCoordinator(channel, follower, dispatch_queue, StubComponent(), grace_period=2.0)
        coordinator.shutdown(TerminationEvent(TerminationSource.SIGNAL, "received signal SIGINT"))

        assert not follower.is_alive()
        assert load(str(source) + ".state").offset == 4

    def test_watchdog_forces_exit(self):
        exits = []
        coordinator = ShutdownCoordinator(
            TerminationChannel(), StubComponent(), DispatchQueue(), StubComponent(),
            grace_period=0.05, force_exit=exits.append,
        )
        coordinator.cause = TerminationEvent(TerminationSource.SIGNAL, "received signal SIGTERM")
        coordinator._arm_watchdog()
        time.sleep(0.3)
        assert exits == [EXIT_FORCED]

    def test_watchdog_disarmed_after_clean_shutdown(self):
        exits = []
        coordinator = ShutdownCoordinator(
            TerminationChannel(), StubComponent(), DispatchQueue(), StubComponent(),
            grace_period=0.1, force_exit=exits.append,
        )
        coordinator.shutdown(TerminationEvent(TerminationSource.SIGNAL, "received signal SIGTERM"))
        time.sleep(0.3)
        assert exits == []
