"""Line reader that follows a growing file, tail -f style."""

import logging
import os
import threading
from typing import Iterator, Optional

from common.state_persistence import FileIdentity

from .models import LogLine

DEFAULT_POLL_INTERVAL = 0.25


def decode_line(raw: bytes) -> LogLine:
    """Strip the line terminator and turn the bytes into a ``LogLine``.

    ``surrogateescape`` keeps invalid UTF-8 intact, so encoding the line
    back gives exactly the bytes that were read from disk.
    """
    if raw.endswith(b"\n"):
        raw = raw[:-1]
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return LogLine(raw.decode("utf-8", errors="surrogateescape"))


def encode_line(line: LogLine) -> bytes:
    return line.encode("utf-8", errors="surrogateescape")


class FileTail:
    """Reads complete lines from *path* starting at byte *offset*.

    In follow mode ``lines()`` never ends on its own: when no data is
    available it waits ``poll_interval`` and yields ``None`` so the caller
    can do other work. The file is reopened when its path starts pointing to
    a different file (rotation) and rewound when it shrinks (truncation).
    Without follow mode the iterator ends at end of file, emitting a final
    line that lacks its newline.
    """

    def __init__(
        self,
        path: str,
        offset: int = 0,
        follow: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stop_event: Optional[threading.Event] = None,
    ):
        self._path = path
        self._start_offset = offset
        self._follow = follow
        self._poll_interval = poll_interval
        self._stop = stop_event or threading.Event()
        self._file = None
        self._identity: Optional[FileIdentity] = None
        self._offset = 0

    @property
    def identity(self) -> Optional[FileIdentity]:
        return self._identity

    def tell(self) -> int:
        """Offset just past the last line handed out."""
        return self._offset

    def open(self):
        """Open the file and seek to the start offset. Raises ``OSError``."""
        self._open_file(self._start_offset)
        return self

    def close(self):
        if self._file:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *_exc):
        self.close()

    def _open_file(self, offset: int):
        self._file = open(self._path, "rb")
        st = os.fstat(self._file.fileno())
        self._identity = FileIdentity.from_stat(st)
        if offset > st.st_size:
            logging.warning(
                "Offset %d is past the end of %s (%d bytes), reading from the start",
                offset, self._path, st.st_size,
            )
            offset = 0
        self._file.seek(offset)
        self._offset = offset
        logging.debug("Opened %s (inode=%d) at offset %d", self._path, self._identity.inode, offset)

    def lines(self) -> Iterator[Optional[LogLine]]:
        if self._file is None:
            self.open()

        while True:
            raw = self._file.readline()
            if raw.endswith(b"\n"):
                self._offset += len(raw)
                yield decode_line(raw)
                continue

            if not self._follow:
                if raw:
                    self._offset += len(raw)
                    yield decode_line(raw)
                return

            if raw:
                # incomplete line, wait until the writer finishes it
                self._file.seek(self._offset)

            if self._check_rotation():
                # the writer moved on, whatever is left in the old file is final
                for raw in self._file:
                    self._offset += len(raw)
                    yield decode_line(raw)
                self.close()
                self._open_file(0)
                continue
            if self._check_truncation():
                continue

            self._stop.wait(self._poll_interval)
            yield None

    def _check_rotation(self) -> bool:
        """True when the path now refers to another file than the open one."""
        try:
            current = FileIdentity.of_path(self._path)
        except FileNotFoundError:
            # moved away and not recreated yet, keep reading the old handle
            return False

        if current.same_file(self._identity):
            return False

        logging.info("File rotation detected for %s", self._path)
        return True

    def _check_truncation(self) -> bool:
        try:
            size = os.fstat(self._file.fileno()).st_size
        except OSError:
            return False

        if self._offset > size:
            logging.info("File truncation detected for %s", self._path)
            self._file.seek(0)
            self._offset = 0
            return True
        return False
