"""
URL Frontier store: the durable set of known URLs and their crawl status.

Every URL is normalized (trimmed, case-folded) before it touches a backend,
so the normalized URL is the unique key of an entry.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Any

import aiosqlite
import redis.asyncio as redis
from redis.exceptions import RedisError

from ..utils.config import FrontierConfig


class StorageError(Exception):
    """Raised when the frontier backend cannot be read or written."""
    pass


def normalize_url(url: str) -> str:
    """Trim and case-fold a URL into its frontier key."""
    return url.strip().lower()


@dataclass
class FrontierEntry:
    """A known URL and whether its content has been indexed."""
    id: int
    url: str
    crawled: bool = False
    failures: int = 0


class FrontierStore:
    """Abstract base class for frontier backends."""

    async def initialize(self):
        """Initialize the backend."""
        raise NotImplementedError

    async def add_url(self, url: str) -> bool:
        """Insert url as uncrawled unless it is already known."""
        raise NotImplementedError

    async def mark_crawled(self, url: str) -> bool:
        """Flag a known url as crawled."""
        raise NotImplementedError

    async def take_uncrawled(self, limit: int,
                             max_failures: Optional[int] = None) -> List[FrontierEntry]:
        """Return up to limit uncrawled entries in insertion order."""
        raise NotImplementedError

    async def all_entries(self) -> List[FrontierEntry]:
        """Return every entry in insertion order."""
        raise NotImplementedError

    async def record_failure(self, url: str) -> int:
        """Increment the failure counter of url and return it."""
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        entries = await self.all_entries()
        crawled = sum(1 for entry in entries if entry.crawled)
        return {
            'total': len(entries),
            'crawled': crawled,
            'uncrawled': len(entries) - crawled
        }

    async def close(self):
        """Close backend connections."""
        raise NotImplementedError


class SqliteFrontierStore(FrontierStore):
    """
    SQLite frontier, one row per URL.

    ``INSERT OR IGNORE`` on the unique url column is the insert-if-absent
    primitive; the lock keeps writes from interleaving on the shared
    connection.
    """

    def __init__(self, path: str = "data/frontier.db"):
        self.path = path
        self.db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Open the database and create the frontier table."""
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)

            self.db = await aiosqlite.connect(self.path)
            await self.db.execute("""
                CREATE TABLE IF NOT EXISTS frontier (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL UNIQUE,
                    crawled INTEGER NOT NULL DEFAULT 0,
                    failures INTEGER NOT NULL DEFAULT 0
                )
            """)
            await self.db.commit()
            self.logger.info(f"SQLite frontier initialized at {self.path}")
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to initialize SQLite frontier: {e}") from e

    def _connection(self) -> aiosqlite.Connection:
        if self.db is None:
            raise StorageError("Frontier not initialized")
        return self.db

    async def add_url(self, url: str) -> bool:
        url = normalize_url(url)
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO frontier (url) VALUES (?)", (url,)
                )
                await db.commit()
                added = cursor.rowcount == 1
                await cursor.close()
            except aiosqlite.Error as e:
                raise StorageError(f"Error adding {url} to frontier: {e}") from e

        if added:
            self.logger.debug(f"Added URL to frontier: {url}")
        return added

    async def mark_crawled(self, url: str) -> bool:
        url = normalize_url(url)
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "UPDATE frontier SET crawled = 1 WHERE url = ?", (url,)
                )
                await db.commit()
                updated = cursor.rowcount == 1
                await cursor.close()
            except aiosqlite.Error as e:
                raise StorageError(f"Error marking {url} as crawled: {e}") from e

        return updated

    async def take_uncrawled(self, limit: int,
                             max_failures: Optional[int] = None) -> List[FrontierEntry]:
        if limit < 1:
            return []

        sql = "SELECT id, url, crawled, failures FROM frontier WHERE crawled = 0"
        params: tuple = ()
        if max_failures is not None:
            sql += " AND failures < ?"
            params = (max_failures,)
        sql += " ORDER BY id LIMIT ?"
        params += (limit,)

        return await self._select(sql, params)

    async def all_entries(self) -> List[FrontierEntry]:
        return await self._select(
            "SELECT id, url, crawled, failures FROM frontier ORDER BY id", ()
        )

    async def _select(self, sql: str, params: tuple) -> List[FrontierEntry]:
        db = self._connection()
        try:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Error reading frontier: {e}") from e

        return [
            FrontierEntry(id=row[0], url=row[1], crawled=bool(row[2]), failures=row[3])
            for row in rows
        ]

    async def record_failure(self, url: str) -> int:
        url = normalize_url(url)
        db = self._connection()
        async with self._lock:
            try:
                await db.execute(
                    "UPDATE frontier SET failures = failures + 1 WHERE url = ?", (url,)
                )
                await db.commit()
                async with db.execute(
                    "SELECT failures FROM frontier WHERE url = ?", (url,)
                ) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise StorageError(f"Error recording failure for {url}: {e}") from e

        return row[0] if row else 0

    async def get_stats(self) -> Dict[str, int]:
        db = self._connection()
        try:
            async with db.execute(
                "SELECT COUNT(*), COALESCE(SUM(crawled), 0) FROM frontier"
            ) as cursor:
                total, crawled = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Error reading frontier stats: {e}") from e

        return {'total': total, 'crawled': crawled, 'uncrawled': total - crawled}

    async def close(self):
        if self.db is not None:
            await self.db.close()
            self.db = None
            self.logger.info("SQLite frontier closed")


def _text(value: Any) -> str:
    return value.decode('utf-8') if isinstance(value, bytes) else str(value)


class RedisFrontierStore(FrontierStore):
    """
    Redis frontier.

    Keys (under ``key_prefix``):
        ids       hash  url -> id, written with HSETNX
        seq       int   id sequence
        pending   zset  uncrawled urls scored by id
        crawled   set   crawled urls
        failures  hash  url -> failed attempts
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "websearch:frontier"):
        self.redis_client = redis_client
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()

        self.ids_key = f"{key_prefix}:ids"
        self.seq_key = f"{key_prefix}:seq"
        self.pending_key = f"{key_prefix}:pending"
        self.crawled_key = f"{key_prefix}:crawled"
        self.failures_key = f"{key_prefix}:failures"

    async def initialize(self):
        """Check the Redis connection."""
        try:
            await self.redis_client.ping()
            count = await self.redis_client.hlen(self.ids_key)
        except RedisError as e:
            raise StorageError(f"Failed to initialize Redis frontier: {e}") from e

        self.logger.info(f"Redis frontier initialized with {count} known URLs")

    async def add_url(self, url: str) -> bool:
        url = normalize_url(url)
        async with self._lock:
            try:
                if await self.redis_client.hexists(self.ids_key, url):
                    return False

                entry_id = await self.redis_client.incr(self.seq_key)
                # HSETNX keeps the insert atomic against other processes
                if not await self.redis_client.hsetnx(self.ids_key, url, entry_id):
                    return False
                await self.redis_client.zadd(self.pending_key, {url: entry_id})
            except RedisError as e:
                raise StorageError(f"Error adding {url} to frontier: {e}") from e

        self.logger.debug(f"Added URL to frontier: {url}")
        return True

    async def mark_crawled(self, url: str) -> bool:
        url = normalize_url(url)
        async with self._lock:
            try:
                if not await self.redis_client.hexists(self.ids_key, url):
                    return False

                async with self.redis_client.pipeline(transaction=True) as pipe:
                    pipe.sadd(self.crawled_key, url)
                    pipe.zrem(self.pending_key, url)
                    await pipe.execute()
            except RedisError as e:
                raise StorageError(f"Error marking {url} as crawled: {e}") from e

        return True

    async def take_uncrawled(self, limit: int,
                             max_failures: Optional[int] = None) -> List[FrontierEntry]:
        entries: List[FrontierEntry] = []
        if limit < 1:
            return entries

        batch = max(limit, 64)
        start = 0
        try:
            while len(entries) < limit:
                chunk = await self.redis_client.zrange(
                    self.pending_key, start, start + batch - 1, withscores=True
                )
                if not chunk:
                    break

                urls = [_text(member) for member, _ in chunk]
                counts = await self.redis_client.hmget(self.failures_key, urls)

                for (url, (_, score)), count in zip(zip(urls, chunk), counts):
                    failures = int(count) if count is not None else 0
                    if max_failures is not None and failures >= max_failures:
                        continue
                    entries.append(FrontierEntry(id=int(score), url=url, failures=failures))
                    if len(entries) >= limit:
                        break

                start += batch
        except RedisError as e:
            raise StorageError(f"Error reading frontier: {e}") from e

        return entries

    async def all_entries(self) -> List[FrontierEntry]:
        try:
            ids = await self.redis_client.hgetall(self.ids_key)
            crawled = await self.redis_client.smembers(self.crawled_key)
            failures = await self.redis_client.hgetall(self.failures_key)
        except RedisError as e:
            raise StorageError(f"Error reading frontier: {e}") from e

        crawled_urls = {_text(url) for url in crawled}
        failure_counts = {_text(url): int(count) for url, count in failures.items()}

        entries = [
            FrontierEntry(
                id=int(entry_id),
                url=_text(url),
                crawled=_text(url) in crawled_urls,
                failures=failure_counts.get(_text(url), 0)
            )
            for url, entry_id in ids.items()
        ]
        entries.sort(key=lambda entry: entry.id)
        return entries

    async def record_failure(self, url: str) -> int:
        url = normalize_url(url)
        async with self._lock:
            try:
                if not await self.redis_client.hexists(self.ids_key, url):
                    return 0
                return int(await self.redis_client.hincrby(self.failures_key, url, 1))
            except RedisError as e:
                raise StorageError(f"Error recording failure for {url}: {e}") from e

    async def get_stats(self) -> Dict[str, int]:
        try:
            total = await self.redis_client.hlen(self.ids_key)
            crawled = await self.redis_client.scard(self.crawled_key)
        except RedisError as e:
            raise StorageError(f"Error reading frontier stats: {e}") from e

        return {'total': total, 'crawled': crawled, 'uncrawled': total - crawled}

    async def close(self):
        await self.redis_client.aclose()
        self.logger.info("Redis frontier closed")


def create_frontier_store(config: FrontierConfig) -> FrontierStore:
    """Build the frontier backend named by the configuration."""
    backend_type = config.type.lower()

    if backend_type == 'sqlite':
        return SqliteFrontierStore(config.sqlite.get('path', 'data/frontier.db'))

    if backend_type == 'redis':
        settings = config.redis
        client = redis.Redis(
            host=settings.get('host', 'localhost'),
            port=settings.get('port', 6379),
            db=settings.get('db', 0),
            password=settings.get('password'),
            decode_responses=False
        )
        return RedisFrontierStore(client, settings.get('key_prefix', 'websearch:frontier'))

    raise StorageError(f"Unknown frontier type: {backend_type}")
