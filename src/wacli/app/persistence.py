"""Persistence scheduler: periodic durable snapshots of the state store.

// [LAW:single-enforcer] Only this module writes state.json / overrides.json.

Snapshots are taken on the event loop (so they are never torn by a
concurrent merge) and written from a worker thread (so disk I/O never
blocks input). Write failures are logged and swallowed: losing the most
recent interval is acceptable, crashing is not.
"""

import asyncio
import logging
from pathlib import Path

import wacli.io.persistence
from wacli.app.state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 15.0


class PersistenceScheduler:
    def __init__(self, store: StateStore, data_dir: Path, interval_s: float = DEFAULT_INTERVAL_S):
        self._store = store
        self._data_dir = Path(data_dir)
        self._interval_s = interval_s
        self._task: asyncio.Task | None = None
        self._stopped = False
        self.flush_count = 0
        self.failure_count = 0

    @property
    def state_path(self) -> Path:
        return wacli.io.persistence.state_path(self._data_dir)

    @property
    def overrides_path(self) -> Path:
        return wacli.io.persistence.overrides_path(self._data_dir)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def restore(self) -> None:
        """Load both documents into the store. Synchronous; run before first render."""
        self._store.restore(wacli.io.persistence.read_json(self.state_path))
        self._store.restore_overrides(wacli.io.persistence.read_json(self.overrides_path))

    def start(self) -> None:
        if self.running or self._stopped:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="wacli:persistence")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            await self.flush()

    def _write(self, state: dict, overrides: dict) -> None:
        wacli.io.persistence.write_json_atomic(self.state_path, state)
        wacli.io.persistence.write_json_atomic(self.overrides_path, overrides)

    async def flush(self) -> bool:
        """Snapshot now and write off-loop. Returns False on failure."""
        state = self._store.snapshot()
        overrides = self._store.snapshot_overrides()
        try:
            await asyncio.to_thread(self._write, state, overrides)
        except Exception:
            self.failure_count += 1
            logger.exception("Failed to persist state to %s", self._data_dir)
            return False
        self.flush_count += 1
        logger.debug("Persisted state to %s", self._data_dir)
        return True

    async def stop(self, final_flush: bool = True) -> None:
        """Cancel the timer, then optionally write one last snapshot."""
        if self._stopped:
            return
        self._stopped = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if final_flush:
            await self.flush()
