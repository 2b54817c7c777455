from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Tuple

from common.state_persistence import FileIdentity, OffsetStore

from .dispatch_queue import DispatchQueue
from .models import FollowerState, QueuedLine, TerminationSource
from .tail import FileTail, DEFAULT_POLL_INTERVAL

SOURCE_EXHAUSTED = "source exhausted"


class Follower:
    """Follows the source file and feeds its lines into the dispatch queue.

    STARTING -> FOLLOWING -> DRAINING -> STOPPED. Checkpoint requests from
    other threads are queued and served by the follower thread itself, so the
    offset file only ever has this one writer while the thread runs. Once it
    has stopped, ``checkpoint`` may be called directly.

    The checkpointed position is the one the publisher acknowledged through
    the dispatch queue, never the read position.
    """

    def __init__(
        self,
        path: str,
        dispatch_queue: DispatchQueue,
        terminations,
        follow: bool = True,
        offset_store: Optional[OffsetStore] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.path = path
        self.follow = follow
        self._queue = dispatch_queue
        self._terminations = terminations
        self._offset_store = offset_store or OffsetStore.for_source(path)
        self._poll_interval = poll_interval

        self._requests: "queue.Queue[threading.Event]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tail: Optional[FileTail] = None

        self.state = FollowerState.STARTING
        # where reading started, checkpointed until a line is acknowledged
        self._start_position: Optional[Tuple[int, FileIdentity]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="FollowerThread", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        if self._thread is not None:
            return self._thread.is_alive()
        return self.state != FollowerState.STOPPED

    @property
    def position(self) -> Optional[Tuple[int, FileIdentity]]:
        """Offset and identity a checkpoint would persist right now."""
        return self._queue.delivered or self._start_position

    def request_checkpoint(self) -> threading.Event:
        """Ask the follower thread to persist its offset.

        The returned event is set once the request has been served, or right
        away if the follower has already stopped.
        """
        done = threading.Event()
        if self.state == FollowerState.STOPPED:
            done.set()
            return done
        self._requests.put(done)
        if self.state == FollowerState.STOPPED:
            self._release_requests()
        return done

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def run(self) -> None:
        try:
            start_offset = self._start_offset()
            self._tail = FileTail(
                self.path,
                offset=start_offset,
                follow=self.follow,
                poll_interval=self._poll_interval,
                stop_event=self._stop_event,
            ).open()
        except OSError as e:
            self._finish(f"cannot tail file {self.path}: {e}")
            return

        self._start_position = (self._tail.tell(), self._tail.identity)
        self.state = FollowerState.FOLLOWING
        logging.info(f"Following {self.path} from offset {self._tail.tell()} (follow mode: {self.follow})")

        reason = None
        try:
            reason = self._follow_lines()
        except OSError as e:
            reason = f"cannot read file {self.path}: {e}"
        finally:
            self._tail.close()
            self._finish(reason)

    def _start_offset(self) -> int:
        identity = FileIdentity.of_path(self.path)
        if not self.follow:
            return 0

        record = self._offset_store.load()
        if record is None:
            return 0
        if not identity.same_file(record.identity):
            logging.info(
                f"not resuming file {self.path}, changed inode from {record.identity.inode} to {identity.inode}"
            )
            return 0

        logging.info(f"resume logfile tail of file {self.path} (inode {identity.inode}) at offset {record.offset}")
        return record.offset

    def _follow_lines(self) -> Optional[str]:
        """Run until the stream ends (returns the reason) or stop is requested (returns None)."""
        for line in self._tail.lines():
            self._serve_checkpoints()
            if self._stop_event.is_set():
                return None
            if line is None:
                continue
            item = QueuedLine(line=line, offset=self._tail.tell(), identity=self._tail.identity)
            if not self._handoff(item):
                return None

        if self._stop_event.is_set():
            return None
        return SOURCE_EXHAUSTED

    def _handoff(self, item: QueuedLine) -> bool:
        """Block until the publisher side accepts *item*, serving checkpoints meanwhile."""
        while not self._stop_event.is_set():
            if self._queue.put(item, timeout=self._poll_interval):
                return True
            if self._queue.closed:
                return False
            self._serve_checkpoints()
        return False

    def _finish(self, reason: Optional[str]) -> None:
        if reason is not None:
            self.state = FollowerState.DRAINING
            logging.info(f"Follower done with {self.path}: {reason}")
        # last checkpoint before going away, it also answers pending requests
        self.checkpoint()
        self.state = FollowerState.STOPPED
        self._release_requests()
        if reason is not None:
            self._terminations.notify_reason(TerminationSource.FOLLOWER, reason)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------
    def _serve_checkpoints(self) -> None:
        served = []
        while True:
            try:
                served.append(self._requests.get_nowait())
            except queue.Empty:
                break
        if not served:
            return
        self.checkpoint()
        for done in served:
            done.set()

    def _release_requests(self) -> None:
        while True:
            try:
                self._requests.get_nowait().set()
            except queue.Empty:
                return

    def checkpoint(self) -> bool:
        """Persist the delivered position. No-op outside follow mode."""
        position = self.position
        if not self.follow or position is None:
            return False
        offset, identity = position
        return self._offset_store.save(offset, identity)
