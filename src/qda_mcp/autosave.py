"""Background autosave of the QDA store.

Runs a daemon thread that periodically writes the store to its state file
when something changed since the last save.
"""

import logging
import threading

from qda_mcp.store import QDAStore

logger = logging.getLogger(__name__)


class AutosaveManager:
    """Periodically flushes a QDAStore to disk.

    The thread is a daemon, so it terminates with the process; call
    ``stop()`` on shutdown to get a final save.
    """

    def __init__(self, store: QDAStore, interval: int):
        """Initialize the autosave manager.

        Args:
            store: The store to flush.
            interval: Save interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Autosave interval must be positive, got {interval}")

        self._store = store
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background autosave thread."""
        if self.running:
            logger.warning("Autosave thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._save_loop,
            name="qda-autosave",
            daemon=True,
        )
        self._thread.start()
        logger.info("Autosave started (interval: %ds)", self._interval)

    def stop(self) -> None:
        """Stop the thread and write any pending changes."""
        if self.running:
            self._stop_event.set()
            self._thread.join(timeout=self._interval + 1)
            if self._thread.is_alive():
                logger.warning("Autosave thread did not stop cleanly")
            else:
                logger.info("Autosave stopped")
        self._thread = None
        self.save_now()

    def save_now(self) -> bool:
        """Flush the store immediately. Returns True if a save happened."""
        try:
            return self._store.flush()
        except Exception:
            logger.exception("Error during autosave")
            return False

    def _save_loop(self) -> None:
        logger.debug("Autosave loop started")

        while not self._stop_event.is_set():
            if self._stop_event.wait(timeout=self._interval):
                break

            if self.save_now():
                logger.debug("Autosave: state written")

        logger.debug("Autosave loop stopped")
