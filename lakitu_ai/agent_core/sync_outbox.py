from __future__ import annotations

"""Sync outbox.

Local writes that must reach the cloud store are queued here and delivered
by a sync worker. Each item carries an idempotency key: queueing the same
key twice returns the existing item, so callers can retry freely.

Delivery attempts follow ``pending -> syncing -> synced``. A failed attempt
puts the item back to ``pending`` until ``max_attempts`` is reached; after
that it stays ``failed`` until ``retry_failed`` resets it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .repos.interfaces import OutboxRepository
from .schemas.domain import OutboxOperation, OutboxStatus, SyncOutboxItem

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 3
SYNCED_RETENTION_MS = 24 * 60 * 60 * 1000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOutbox:
    """Queue local writes for cloud sync."""

    def __init__(self, repo: OutboxRepository, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._repo = repo
        self._max_attempts = max_attempts

    async def add(
        self,
        *,
        idempotency_key: str,
        entity_type: str,
        entity_id: str,
        operation: OutboxOperation,
        payload: Dict[str, Any],
        cloud_path: str,
        priority: int = DEFAULT_PRIORITY,
        session_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> str:
        """
        Queue an item for sync.

        Returns:
            The item id. An item already queued under ``idempotency_key`` keeps its id.
        """
        item = SyncOutboxItem(
            idempotency_key=idempotency_key,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            payload=payload,
            cloud_path=cloud_path,
            priority=priority,
            max_attempts=self._max_attempts,
            session_id=session_id,
            thread_id=thread_id,
        )
        item_id = await self._repo.add(item)
        if item_id != item.id:
            logger.debug("outbox key %s already queued as %s", idempotency_key, item_id)
        return item_id

    async def get(self, item_id: str) -> Optional[SyncOutboxItem]:
        return await self._repo.get(item_id)

    async def pending(self, limit: int = 50, session_id: Optional[str] = None) -> list[SyncOutboxItem]:
        return await self._repo.pending(limit=limit, session_id=session_id)

    async def mark_syncing(self, item_id: str) -> bool:
        """Start a delivery attempt; returns False when the item does not exist."""
        return await self._repo.mark_syncing(item_id, at=_utc_now()) is not None

    async def mark_synced(self, item_id: str, cloud_id: Optional[str] = None) -> None:
        await self._repo.mark_synced(item_id, cloud_id=cloud_id, at=_utc_now())

    async def mark_failed(self, item_id: str, error: str) -> Optional[OutboxStatus]:
        """
        Record a failed delivery attempt.

        Returns:
            ``pending`` while attempts remain, ``failed`` once they are used up,
            None for an unknown item.
        """
        status = await self._repo.mark_failed(item_id, error=error, at=_utc_now())
        if status == OutboxStatus.failed:
            logger.warning("outbox item %s gave up: %s", item_id, error)
        return status

    async def stats(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Item counts per status, plus per entity type."""
        out: Dict[str, Any] = {"total": 0, **{s.value: 0 for s in OutboxStatus}, "by_type": {}}
        for entity_type, status, count in await self._repo.count_by(session_id=session_id):
            out["total"] += count
            out[status] = out.get(status, 0) + count
            out["by_type"][entity_type] = out["by_type"].get(entity_type, 0) + count
        return out

    async def clear_synced(self, older_than_ms: int = SYNCED_RETENTION_MS) -> int:
        """Delete items synced more than ``older_than_ms`` ago."""
        cutoff = _utc_now() - timedelta(milliseconds=older_than_ms)
        deleted = await self._repo.delete_synced_before(cutoff)
        if deleted:
            logger.info("outbox cleanup removed %d synced items", deleted)
        return deleted

    async def retry_failed(self, entity_type: Optional[str] = None) -> int:
        """Give every ``failed`` item a fresh set of attempts."""
        retried = await self._repo.reset_failed(entity_type=entity_type)
        if retried:
            logger.info("outbox requeued %d failed items", retried)
        return retried
