"""
Checkpoint Store - Durable per-relation sync cursors.

One JSON file per relation under the checkpoint directory holds the last
increment value that was fully written to the index. Deleting a file forces
a full resync of that relation on the next pass.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote


logger = logging.getLogger(__name__)


@dataclass
class CheckpointRecord:
    """A persisted cursor."""

    relation: str
    value: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckpointRecord":
        if not isinstance(data, dict):
            raise TypeError(f"checkpoint must be an object, got {type(data).__name__}")
        return cls(
            relation=data.get("relation", ""),
            value=str(data["value"]),
            updated_at=data.get("updated_at", ""),
        )


class CheckpointStore:
    """
    File-backed key/value store: relation id -> cursor value.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash mid-write leaves the previous value
    intact. Only one pass writes a given relation at a time (the engine's
    per-relation guard), so no locking happens here.

    Example:
        store = CheckpointStore(Path(".es-sync"))

        last = store.read("orders-orders-_doc")   # None on first run
        store.write("orders-orders-_doc", "2024-01-01 10:00:00")
    """

    SUFFIX = ".json"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, relation_id: str) -> Path:
        """File of a relation; the id is percent-encoded so distinct ids never share one."""
        return self.directory / f"{quote(relation_id, safe='')}{self.SUFFIX}"

    def read(self, relation_id: str) -> str | None:
        """Last persisted cursor, or None when the relation was never synced."""
        record = self.read_record(relation_id)
        return record.value if record else None

    def read_record(self, relation_id: str) -> CheckpointRecord | None:
        path = self.path_for(relation_id)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CheckpointRecord.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            # Unreadable checkpoint: start over, upserts make it safe
            logger.warning("Could not read checkpoint %s: %s", path, e)
            return None

    def write(self, relation_id: str, value: str) -> bool:
        """
        Persist ``value`` for ``relation_id``.

        Returns False (and logs) on an I/O failure instead of raising: the
        data already reached the index, only resumability is degraded.
        """
        record = CheckpointRecord(
            relation=relation_id,
            value=value,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        path = self.path_for(relation_id)
        tmp_name: str | None = None

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                json.dump(record.to_dict(), tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            return True
        except OSError as e:
            logger.warning("Could not write checkpoint %s=%s: %s", relation_id, value, e)
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False

    def delete(self, relation_id: str) -> bool:
        """Remove a checkpoint. Returns True if one existed."""
        path = self.path_for(relation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list(self) -> dict[str, CheckpointRecord]:
        """All readable checkpoints keyed by relation id."""
        records: dict[str, CheckpointRecord] = {}
        if not self.directory.exists():
            return records

        for path in sorted(self.directory.glob(f"*{self.SUFFIX}")):
            try:
                record = CheckpointRecord.from_dict(
                    json.loads(path.read_text(encoding="utf-8"))
                )
            except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable checkpoint %s: %s", path, e)
                continue
            records[record.relation or unquote(path.stem)] = record
        return records
