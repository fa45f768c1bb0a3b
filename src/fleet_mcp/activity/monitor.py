"""Periodic git activity monitor for agent worktrees."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..proxy import ProxyError
from ..storage import StateStore, StateStoreError
from ..vcs import VersionControl
from .classifier import classify, parse_shortstat
from .models import ActivityMetrics

DEFAULT_INTERVAL = 0.5

logger = logging.getLogger(__name__)


class ActivityMonitor:
    """Keep :class:`ActivityMetrics` current for every session in the state file.

    Metrics are mutated only by :meth:`refresh`. Readers go through
    :meth:`update_all`, which hands out copies.
    """

    def __init__(
        self,
        state_store: StateStore,
        vcs: VersionControl,
        *,
        interval: float = DEFAULT_INTERVAL,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._state_store = state_store
        self._vcs = vcs
        self._interval = interval
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._metrics: dict[str, ActivityMetrics] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, cancel: asyncio.Event | None = None) -> None:
        """Start the refresh loop; setting ``cancel`` ends it like :meth:`stop`."""

        if self.running:
            raise RuntimeError("monitor is already running")
        self._task = asyncio.create_task(self._loop(cancel))
        logger.debug("Activity monitor started", extra={"interval": self._interval})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Activity monitor stopped")

    async def _loop(self, cancel: asyncio.Event | None) -> None:
        while cancel is None or not cancel.is_set():
            try:
                await self.refresh()
            except StateStoreError as exc:
                logger.error("Failed to load agent state", extra={"error": str(exc)})
            if cancel is None:
                await asyncio.sleep(self._interval)
                continue
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(cancel.wait(), self._interval)

    async def refresh(self) -> None:
        """Run one refresh cycle."""

        states = self._state_store.load_states()
        now = self._now()

        for name, state in states.items():
            worktree = state.worktree_path
            if not worktree or not Path(worktree).exists():
                continue
            try:
                commits, last_commit_at = await self._vcs.log_info(worktree)
                insertions, deletions, files_changed = parse_shortstat(
                    await self._vcs.staged_shortstat(worktree)
                )
            except ProxyError as exc:
                logger.debug("Skipping activity refresh", extra={"session": name, "error": str(exc)})
                continue

            metrics = self._metrics.setdefault(name, ActivityMetrics())
            metrics.commits = commits
            metrics.insertions = insertions
            metrics.deletions = deletions
            metrics.files_changed = files_changed
            if last_commit_at is not None:
                metrics.last_commit_at = last_commit_at
            metrics.status = classify(metrics, now)

        for name in list(self._metrics):
            if name not in states:
                del self._metrics[name]

    def update_all(self) -> dict[str, ActivityMetrics]:
        """Snapshot of all metrics; mutating it does not affect the monitor."""

        return {name: replace(metrics) for name, metrics in self._metrics.items()}


__all__ = ["ActivityMonitor"]
