"""File-backed registry of background port-forward sessions.

The registry is a JSON array in ``<state dir>/pids.json``::

    [{"pid": 4242, "profile": "prod", "instance": "bastion", "db": "db.internal:5432"}]

Every mutation reads the whole file, changes it in memory and rewrites it.
There is no locking, so two invocations writing at the same moment can lose
a record (last writer wins). A record only says a tunnel was started; check
``process_alive`` before trusting it.
"""

from __future__ import annotations
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ssm_tunnel import constants
from ssm_tunnel.errors import RegistryError
from ssm_tunnel.process import process_alive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionRecord:
    pid: int
    profile: str
    instance_label: str
    target_descriptor: str

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "profile": self.profile,
            "instance": self.instance_label,
            "db": self.target_descriptor,
        }

    @classmethod
    def from_dict(cls, data: object) -> "SessionRecord":
        if not isinstance(data, dict):
            raise RegistryError(f"invalid session entry: {data!r}")
        pid = data.get("pid")
        if not isinstance(pid, int) or isinstance(pid, bool):
            raise RegistryError(f"invalid pid in session entry: {data!r}")
        return cls(
            pid=pid,
            profile=str(data.get("profile", "")),
            instance_label=str(data.get("instance", "")),
            target_descriptor=str(data.get("db", "")),
        )


def write_json_private(path: Path, payload: object) -> None:
    """Atomically replace ``path`` with ``payload`` as owner-only JSON."""
    path.parent.mkdir(mode=constants.DIR_MODE, parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as fh:
            json.dump(payload, fh, indent=2)
            fh.write("\n")
        os.chmod(tmp_name, constants.FILE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class SessionRegistry:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else constants.pids_file()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> List[SessionRecord]:
        """Strict read. Absent file is empty, malformed content raises."""
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise RegistryError(f"could not read {self.path}: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RegistryError(f"could not parse {self.path}: {e}") from e
        # older versions of the tool wrote `null` for an empty registry
        if data is None:
            return []
        if not isinstance(data, list):
            raise RegistryError(f"could not parse {self.path}: expected a JSON array")
        return [SessionRecord.from_dict(entry) for entry in data]

    def load_lenient(self) -> List[SessionRecord]:
        try:
            return self.load()
        except RegistryError as e:
            logger.warning("ignoring unreadable session registry: %s", e)
            return []

    def save(self, records: List[SessionRecord]) -> None:
        try:
            write_json_private(self.path, [r.to_dict() for r in records])
        except OSError as e:
            raise RegistryError(f"could not write {self.path}: {e}") from e

    def append(self, record: SessionRecord) -> None:
        records = self.load_lenient()
        records.append(record)
        self.save(records)
        logger.debug("registered pid %d in %s", record.pid, self.path)

    def list_alive(self) -> List[SessionRecord]:
        """Return live sessions in on-disk order and drop dead ones from the file."""
        if not self.exists():
            return []
        records = self.load()
        alive = [r for r in records if process_alive(r.pid)]
        dead = len(records) - len(alive)
        if dead:
            logger.debug("pruning %d dead session(s) from %s", dead, self.path)
        self.save(alive)
        return alive

    def remove(self, pid: int) -> bool:
        """Drop every record for ``pid``. Returns False if nothing matched."""
        if not self.exists():
            return False
        records = self.load()
        kept = [r for r in records if r.pid != pid]
        if len(kept) == len(records):
            return False
        self.save(kept)
        return True

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
