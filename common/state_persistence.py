from __future__ import annotations
import os
import re
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

STATE_SUFFIX = ".state"
STATE_FILE_MODE = 0o664

_RECORD_FORMAT = "Offset {offset} Time {time} Inode {inode}\n"
_RECORD_PATTERN = re.compile(r"Offset (-?\d+) Time (-?\d+) Inode (\d+)\n?")


@dataclass(frozen=True)
class FileIdentity:
    """Identifies a physical file so that rotation of its path can be detected.

    The persisted offset record only carries the inode, so ``device`` may be
    unknown (``None``) for identities read back from disk.
    """

    inode: int
    device: Optional[int] = None

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileIdentity":
        return cls(inode=st.st_ino, device=st.st_dev)

    @classmethod
    def of_path(cls, path: str) -> "FileIdentity":
        return cls.from_stat(os.stat(path))

    def same_file(self, other: Optional["FileIdentity"]) -> bool:
        if other is None or self.inode != other.inode:
            return False
        if self.device is None or other.device is None:
            return True
        return self.device == other.device


@dataclass(frozen=True)
class OffsetRecord:
    offset: int
    captured_at: int
    identity: FileIdentity


def state_path_for(source_path: str) -> str:
    return source_path + STATE_SUFFIX


def format_record(record: OffsetRecord) -> str:
    return _RECORD_FORMAT.format(
        offset=record.offset,
        time=record.captured_at,
        inode=record.identity.inode,
    )


def parse_record(text: str) -> Optional[OffsetRecord]:
    """Parse the single line record, ``None`` if the layout does not match."""
    match = _RECORD_PATTERN.fullmatch(text)
    if not match:
        return None
    offset, captured_at, inode = (int(group) for group in match.groups())
    return OffsetRecord(offset=offset, captured_at=captured_at, identity=FileIdentity(inode=inode))


def load(path: str) -> Optional[OffsetRecord]:
    """Read the offset record stored at *path*.

    A missing, unreadable or corrupt state file means "start from the
    beginning", so every failure yields ``None`` instead of an error.
    """
    if not Path(path).exists():
        return None

    try:
        with open(path, "r") as fp:
            text = fp.read()
    except (OSError, UnicodeDecodeError) as exc:
        logging.warning(f"[StatePersistence] Ignoring state file {path}, cannot read it: {exc}")
        return None

    record = parse_record(text)
    if record is None:
        logging.warning(f"[StatePersistence] Ignoring state file {path}, cannot parse data: {text!r}")
    return record


def save(path: str, record: OffsetRecord) -> bool:
    """Persist *record* to *path* in an *atomic* fashion.

    Losing a checkpoint only costs duplicate delivery after a restart, so
    failures are logged and reported through the return value.
    """
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = os.path.join(directory, f"temp_{uuid.uuid4().hex}_{os.path.basename(path)}")
    try:
        with open(tmp_path, "w") as fp:
            fp.write(format_record(record))
            fp.flush()
        os.chmod(tmp_path, STATE_FILE_MODE)
        os.replace(tmp_path, path)
        logging.debug(f"[StatePersistence] Saved offset {record.offset} to {path}")
        return True
    except OSError as exc:
        logging.error(f"[StatePersistence] Error saving state to {path}: {exc}")
        if Path(tmp_path).exists():
            try:
                os.remove(tmp_path)
            except OSError as cleanup_exc:
                logging.debug(f"[StatePersistence] Could not remove {tmp_path}: {cleanup_exc}")
        return False


class OffsetStore:
    """Persistence boundary for the follower's read offset.

    Holds no cached state: every ``load`` reads the file, every ``save``
    rewrites it.
    """

    def __init__(self, path: str, clock=time.time) -> None:
        self.path = path
        self._clock = clock

    @classmethod
    def for_source(cls, source_path: str) -> "OffsetStore":
        return cls(state_path_for(source_path))

    def load(self) -> Optional[OffsetRecord]:
        return load(self.path)

    def save(self, offset: int, identity: FileIdentity) -> bool:
        record = OffsetRecord(offset=offset, captured_at=int(self._clock()), identity=identity)
        return save(self.path, record)
