"""JSON state file for the QDA store.

The whole workspace/study graph plus the analytics log lives in one JSON
document under a fixed storage key:

    {"qda-storage": {"version": 1, "state": {...}}}

Writes go to a temporary file in the same directory which then replaces the
previous file, so a crash never leaves a half-written state behind.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from qda_mcp.store.errors import PersistenceError

logger = logging.getLogger(__name__)

STORAGE_KEY = "qda-storage"
STATE_VERSION = 1


class StateFile:
    """Reads and writes the serialized store state."""

    def __init__(self, path: Path):
        """Initialize with the location of the state file."""
        self.path = Path(path)
        self._write_lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> dict | None:
        """Load the state dict.

        Returns:
            The stored state, or None if no state file exists yet.

        Raises:
            PersistenceError: If the file cannot be read or is malformed.
        """
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
            payload = json.loads(raw)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read state file {self.path}: {e}") from e

        if not isinstance(payload, dict) or STORAGE_KEY not in payload:
            raise PersistenceError(f"State file {self.path} has no '{STORAGE_KEY}' entry")

        entry = payload[STORAGE_KEY]
        if not isinstance(entry, dict) or not isinstance(entry.get("state"), dict):
            raise PersistenceError(f"State file {self.path} has a malformed '{STORAGE_KEY}' entry")

        version = entry.get("version", STATE_VERSION)
        if version > STATE_VERSION:
            raise PersistenceError(
                f"State file version {version} is newer than supported version {STATE_VERSION}"
            )
        return entry["state"]

    def save(self, state: dict) -> None:
        """Atomically write the state dict.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        payload = {STORAGE_KEY: {"version": STATE_VERSION, "state": state}}
        with self._write_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(payload, f, ensure_ascii=False, indent=2)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise PersistenceError(f"Cannot write state file {self.path}: {e}") from e
        logger.debug("State written to %s", self.path)
