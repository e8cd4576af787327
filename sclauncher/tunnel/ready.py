"""Ready-file watch: polls for the file sc creates once the tunnel is up."""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

READY_FILE_NAME = "sc-launcher-readyfile"


def ready_file_path(ready_file_id: str | None = None) -> Path:
    """Ready file in the temp dir, suffixed so concurrent tunnels don't collide."""
    name = READY_FILE_NAME
    if ready_file_id:
        name = f"{name}_{ready_file_id}"
    return Path(tempfile.gettempdir()) / name


class ReadyFileWatcher:
    """Calls ``on_ready`` once when *path* starts to exist.

    Plain stat polling: file-event APIs don't behave the same on every
    filesystem.  ``stop()`` may be called any number of times; only the
    first call releases the watch.
    """

    def __init__(
        self,
        path: Path,
        on_ready: Callable[[], None],
        interval: float = 0.5,
    ) -> None:
        self.path = path
        self._on_ready = on_ready
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._released = False

    @property
    def is_watching(self) -> bool:
        return self._task is not None and not self._released

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._poll())

    def stop(self) -> bool:
        """Release the watch.  Returns False if it was already released."""
        if self._released:
            return False
        self._released = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        logger.debug("Stopped watching %s", self.path)
        return True

    def remove_stale(self) -> None:
        """Delete a ready file left by an earlier sc run."""
        try:
            os.unlink(self.path)
            logger.debug("Removed stale ready file %s", self.path)
        except FileNotFoundError:
            pass

    async def _poll(self) -> None:
        while not self._released:
            if self.path.exists():
                logger.info("Detected sc ready")
                self._on_ready()
                return
            await asyncio.sleep(self._interval)
