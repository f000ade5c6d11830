"""Last successful selection, cached for quick reconnects."""

from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ssm_tunnel import constants
from ssm_tunnel.errors import SelectionError
from ssm_tunnel.registry import write_json_private


@dataclass(frozen=True)
class LastSelection:
    profile: str
    instance_name: str
    instance_id: str
    db_endpoint: str
    db_port: int

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "instance_name": self.instance_name,
            "instance_id": self.instance_id,
            "db_endpoint": self.db_endpoint,
            # kept as a string so files from earlier releases stay readable
            "db_port": str(self.db_port),
        }

    @classmethod
    def from_dict(cls, data: object) -> "LastSelection":
        if not isinstance(data, dict):
            raise SelectionError("last selection must be a JSON object")
        try:
            return cls(
                profile=str(data["profile"]),
                instance_name=str(data.get("instance_name", "")),
                instance_id=str(data["instance_id"]),
                db_endpoint=str(data["db_endpoint"]),
                db_port=int(data["db_port"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SelectionError(f"invalid last selection: {e}") from e


def write_last_selection(selection: LastSelection, path: Optional[Path] = None) -> None:
    write_json_private(path or constants.last_selection_file(), selection.to_dict())


def read_last_selection(path: Optional[Path] = None) -> Optional[LastSelection]:
    path = path or constants.last_selection_file()
    try:
        raw = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise SelectionError(f"could not read {path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SelectionError(f"could not parse {path}: {e}") from e
    return LastSelection.from_dict(data)
