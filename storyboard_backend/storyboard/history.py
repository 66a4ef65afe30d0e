import asyncio
import json
import logging
from typing import List

from pydantic import TypeAdapter, ValidationError

from .kv_storage import KVStorage, HISTORY_KEY
from .models import HistoryEntry
from .settings import HISTORY_CAPACITY

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(List[HistoryEntry])


class HistoryLedger:
    """Bounded newest-first log of generated artifacts, persisted whole on every change."""

    def __init__(self, kv: KVStorage, capacity: int = HISTORY_CAPACITY):
        self.kv = kv
        self.capacity = capacity
        self._entries: List[HistoryEntry] = []
        self._lock = asyncio.Lock()

    async def load(self) -> List[HistoryEntry]:
        raw = await self.kv.get(HISTORY_KEY)
        if not raw:
            self._entries = []
            return self.list()
        try:
            self._entries = _entries_adapter.validate_json(raw)[: self.capacity]
        except ValidationError as e:
            logger.warning(f"Discarding unreadable history: {e}")
            self._entries = []
        logger.info(f"Loaded {len(self._entries)} history entries")
        return self.list()

    async def append(self, entry: HistoryEntry):
        self._entries = [entry, *self._entries][: self.capacity]
        await self._persist()

    async def clear(self):
        self._entries = []
        await self._persist()

    def list(self) -> List[HistoryEntry]:
        return list(self._entries)

    async def _persist(self):
        # one write at a time, each serializing the entries as they are when it runs
        async with self._lock:
            payload = json.dumps([e.model_dump(mode="json") for e in self._entries])
            await self.kv.set(HISTORY_KEY, payload)
