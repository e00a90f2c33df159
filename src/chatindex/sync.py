"""Pull-sync from the host: session roster → batched previews → incremental index.

One pass:
  1. ``list_sessions`` (single page; a full page is logged as a scale limit)
  2. ``preview_sessions`` per batch of keys
  3. ``SessionIndexer.index_session`` for every session with a non-empty preview
  4. record ``last_sync`` and prune the embedding cache

Failures are isolated to the smallest unit: a bad preview batch is skipped, a
failing session is counted and skipped, a failing roster fetch ends the pass
without touching ``last_sync``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass

from chatindex.config import SyncCfg
from chatindex.db.models import SessionMetadata
from chatindex.db.repository import Repository
from chatindex.ingest.indexer import SessionIndexer
from chatindex.providers.sessions import SessionDataProvider, SessionDescriptor

logger = logging.getLogger(__name__)

_SUBAGENT_MARKERS = (":subagent:", ":webchat:task-")


@dataclass
class SyncReport:
    """Counters for one completed sync pass."""

    sessions_seen: int = 0
    indexed: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped_batches: int = 0
    truncated: bool = False
    cache_pruned: int = 0


def is_subagent_key(session_key: str) -> bool:
    return any(marker in session_key for marker in _SUBAGENT_MARKERS)


def metadata_for(descriptor: SessionDescriptor) -> SessionMetadata:
    return SessionMetadata(
        display_name=descriptor.display_name,
        goal_title=descriptor.goal_title,
        condo_name=descriptor.condo_name,
        is_subagent=is_subagent_key(descriptor.key),
    )


class SyncHandle:
    """Handle to a running background sync loop. Call stop() to cancel it."""

    def __init__(self, task: asyncio.Task, interval_seconds: float) -> None:
        self._task = task
        self.interval_seconds = interval_seconds

    @property
    def running(self) -> bool:
        return not self._task.done()

    def stop(self) -> None:
        """Cancel the loop. An in-flight pass is abandoned, not awaited."""
        if not self._task.done():
            self._task.cancel()
            logger.info("Background sync stopped")


class SyncOrchestrator:
    """Drive incremental indexing from a SessionDataProvider.

    Args:
        repo:              Open Repository instance.
        indexer:           Session indexer used for each previewed session.
        config:            Page/batch/preview limits and the default interval.
        cache_max_entries: Embedding-cache bound applied after each pass (0 = none).
    """

    def __init__(
        self,
        repo: Repository,
        indexer: SessionIndexer,
        config: SyncCfg | None = None,
        cache_max_entries: int = 0,
    ) -> None:
        self._repo = repo
        self._indexer = indexer
        self._config = config or SyncCfg()
        self._cache_max_entries = cache_max_entries
        self._syncing = False
        self._closed = False

    @property
    def syncing(self) -> bool:
        return self._syncing

    def close(self) -> None:
        """Abandon any in-flight pass: it stops at its next await and returns None."""
        self._closed = True

    async def sync(self, provider: SessionDataProvider) -> SyncReport | None:
        """Run one pass. Returns None without doing anything if a pass is in flight."""
        if self._closed:
            return None
        if self._syncing:
            logger.debug("Sync already in progress; skipping")
            return None
        self._syncing = True
        try:
            return await self._run(provider)
        finally:
            self._syncing = False

    async def _run(self, provider: SessionDataProvider) -> SyncReport | None:
        cfg = self._config
        logger.info("Starting sync...")

        try:
            sessions = await provider.list_sessions(limit=cfg.session_page_limit)
        except Exception as exc:
            logger.error("Failed to fetch sessions: %s", exc)
            return None
        if self._closed:
            return self._abandon()

        report = SyncReport(sessions_seen=len(sessions))
        if len(sessions) >= cfg.session_page_limit:
            report.truncated = True
            logger.warning(
                "Fetched %d sessions (limit reached), some sessions may not be indexed",
                len(sessions),
            )

        for start in range(0, len(sessions), cfg.preview_batch_size):
            batch = sessions[start : start + cfg.preview_batch_size]
            try:
                previews = await provider.preview_sessions(
                    [s.key for s in batch],
                    limit=cfg.preview_message_limit,
                    max_chars=cfg.preview_max_chars,
                )
            except Exception as exc:
                logger.error("Preview batch failed: %s", exc)
                report.skipped_batches += 1
                continue
            if self._closed:
                return self._abandon()

            for descriptor in batch:
                messages = previews.get(descriptor.key)
                if not messages:
                    continue
                try:
                    changed = await self._indexer.index_session(
                        descriptor.key, messages, metadata_for(descriptor)
                    )
                except Exception as exc:
                    if self._closed:
                        return self._abandon()
                    logger.error("Failed to index %s: %s", descriptor.key, exc)
                    report.failed += 1
                    continue
                if self._closed:
                    return self._abandon()
                if changed:
                    report.indexed += 1
                else:
                    report.unchanged += 1

        if self._closed:
            return self._abandon()
        try:
            self._repo.set_last_sync()
            report.cache_pruned = self._repo.prune_embedding_cache(self._cache_max_entries)
        except sqlite3.Error as exc:
            logger.error("Failed to record sync completion: %s", exc)
        logger.info(
            "Sync complete: %d sessions indexed/updated, %d unchanged, %d failed",
            report.indexed,
            report.unchanged,
            report.failed,
        )
        return report

    @staticmethod
    def _abandon() -> None:
        logger.info("Index closed; abandoning sync pass")
        return None

    def start(
        self, provider: SessionDataProvider, interval_seconds: float | None = None
    ) -> SyncHandle:
        """Schedule a pass every *interval_seconds* on the running event loop.

        Must be called from within a running loop. The first pass runs after
        one interval; call sync() directly for an immediate pass.
        """
        interval = interval_seconds or self._config.interval_seconds
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")
        task = asyncio.get_running_loop().create_task(self._loop(provider, interval))
        logger.info("Background sync scheduled every %.0fs", interval)
        return SyncHandle(task, interval)

    async def _loop(self, provider: SessionDataProvider, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sync(provider)
            except Exception as exc:
                logger.error("Background sync failed: %s", exc)
