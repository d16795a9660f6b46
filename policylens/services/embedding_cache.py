"""
Persistent embedding cache with time-based expiry

The backing file is a JSON map of key -> {"embedding": [...], "timestamp": epoch_ms},
read once at startup and rewritten after every change. Storage problems never
stop the pipeline: the cache continues in memory for the rest of the process.
"""
import asyncio
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import aiofiles

from policylens.core.config import settings
from policylens.core.errors import CacheIOError

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass
class CacheEntry:
    """A cached embedding and the time it was stored"""
    embedding: List[float]
    timestamp: int  # epoch milliseconds


class EmbeddingCache:
    """Key -> vector store shared by every embedding request in the process"""

    def __init__(
        self,
        cache_path: Optional[str] = settings.embedding_cache_path,
        ttl_days: float = settings.embedding_cache_ttl_days,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            cache_path: JSON file backing the cache, None for memory only
            ttl_days: Age after which entries are treated as absent
            clock: Returns the current time in seconds
        """
        self.cache_path = Path(cache_path) if cache_path else None
        self.ttl_ms = int(ttl_days * MS_PER_DAY)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._persistent = self.cache_path is not None
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def persistent(self) -> bool:
        return self._persistent

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def generate_key(text: str) -> str:
        """Deterministic key for text, insensitive to whitespace differences"""
        normalized = " ".join(text.split())
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._now_ms() - entry.timestamp > self.ttl_ms

    async def initialize(self):
        """Load persisted entries and drop the expired ones"""
        async with self._lock:
            if self._loaded:
                return
            self._loaded = True
            if not self._persistent:
                return

            try:
                self._entries = await self._read_file()
            except CacheIOError as e:
                logger.warning(f"Embedding cache unreadable, continuing in memory only: {e}")
                self._entries = {}
                self._persistent = False
                return

            expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
            logger.info(f"Loaded {len(self._entries)} cached embeddings ({len(expired)} expired)")
            if expired:
                await self._persist()

    async def get(self, key: str) -> Optional[List[float]]:
        """Return the cached vector, None when absent or expired"""
        if not self._loaded:
            await self.initialize()

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            async with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
                    await self._persist()
            return None
        return list(entry.embedding)

    async def set(self, key: str, embedding: Sequence[float]):
        """Store a vector and persist the cache"""
        if not self._loaded:
            await self.initialize()

        async with self._lock:
            self._entries[key] = CacheEntry(embedding=[float(v) for v in embedding], timestamp=self._now_ms())
            await self._persist()

    async def clear(self):
        async with self._lock:
            self._entries.clear()
            await self._persist()

    async def _read_file(self) -> Dict[str, CacheEntry]:
        if not self.cache_path.exists():
            return {}
        try:
            async with aiofiles.open(self.cache_path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise CacheIOError(f"cannot read {self.cache_path}: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise ValueError("cache root is not an object")
            entries = {}
            for key, value in data.items():
                entries[key] = CacheEntry(
                    embedding=[float(v) for v in value["embedding"]],
                    timestamp=int(value["timestamp"]),
                )
            return entries
        except (ValueError, KeyError, TypeError) as e:
            # Corrupt contents: start empty, the next write replaces the file
            logger.warning(f"Embedding cache file {self.cache_path} is corrupt, starting empty: {e}")
            return {}

    async def _persist(self):
        """Rewrite the backing file; fall back to memory only on failure"""
        if not self._persistent:
            return
        try:
            await self._write_file()
        except CacheIOError as e:
            logger.warning(f"Embedding cache write failed, continuing in memory only: {e}")
            self._persistent = False

    async def _write_file(self):
        payload = {
            key: {"embedding": entry.embedding, "timestamp": entry.timestamp}
            for key, entry in self._entries.items()
        }
        temp_path = self.cache_path.with_suffix(self.cache_path.suffix + ".tmp")
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(payload))
            os.replace(temp_path, self.cache_path)
        except OSError as e:
            raise CacheIOError(f"cannot write {self.cache_path}: {e}") from e
