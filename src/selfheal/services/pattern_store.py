"""
Pattern Store for Test Self-Healing System.

Holds the learned state of the healer: per-strategy Pattern counts, the
smoothed success-rate table and the healing history. State is persisted
through a pluggable backend. Flushing re-reads the stored record and
applies only this instance's changes since the last load, so parallel
workers sharing one store do not overwrite each other's counts.
"""

import asyncio
import json
import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.healing_utils import current_millis
from ..core.models import HealingConfiguration, HealingHistoryEntry, Pattern

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_RATE = 0.5
DEFAULT_HISTORY_LIMIT = 1000

Record = Dict[str, Any]
MergeFunction = Callable[[Optional[Record]], Record]


class PersistenceBackend(ABC):
    """Key/value persistence for structured records."""

    def __init__(self):
        self._lock = asyncio.Lock()

    @abstractmethod
    def _read(self, key: str) -> Optional[Record]:
        """Blocking read; returns None if nothing is stored under key."""

    @abstractmethod
    def _write(self, key: str, data: Record) -> None:
        """Blocking write."""

    async def load(self, key: str) -> Optional[Record]:
        """Load the record stored under key, or None if absent."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, key)

    async def save(self, key: str, data: Record) -> None:
        """Replace the record stored under key."""
        loop = asyncio.get_running_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._write, key, data)

    async def update(self, key: str, merge: MergeFunction) -> Record:
        """Read the stored record, merge into it and write the result back.

        Args:
            key: Record key
            merge: Called with the stored record (or None), returns the new record

        Returns:
            The record that was written
        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            return await loop.run_in_executor(None, self._read_merge_write, key, merge)

    def _read_merge_write(self, key: str, merge: MergeFunction) -> Record:
        merged = merge(_discard_corrupt(key, self._read))
        self._write(key, merged)
        return merged


def _discard_corrupt(key: str, read: Callable[[str], Optional[Record]]) -> Optional[Record]:
    """Read a record for merging, treating undecodable contents as absent."""
    try:
        return read(key)
    except ValueError as e:
        logger.warning(f"Stored record '{key}' is corrupt and will be overwritten: {e}")
        return None


class JsonFilePersistence(PersistenceBackend):
    """Stores each record as ``<directory>/<key>.json``."""

    def __init__(self, directory: str = "data"):
        super().__init__()
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read(self, key: str) -> Optional[Record]:
        path = self.path_for(key)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write(self, key: str, data: Record) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file, then swap it in atomically
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class SqlitePersistence(PersistenceBackend):
    """Stores records as JSON text in a single SQLite table."""

    def __init__(self, db_path: str = "data/patterns.db"):
        super().__init__()
        self.db_path = Path(db_path)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)

    def _init_database(self):
        """Create the record table if it does not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS healing_store (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)
        finally:
            conn.close()

    def _read(self, key: str) -> Optional[Record]:
        conn = self._connect()
        try:
            return self._select(conn, key)
        finally:
            conn.close()

    def _write(self, key: str, data: Record) -> None:
        conn = self._connect()
        try:
            self._upsert(conn, key, data)
        finally:
            conn.close()

    def _read_merge_write(self, key: str, merge: MergeFunction) -> Record:
        # Write lock is held from the read until COMMIT
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                merged = merge(_discard_corrupt(key, lambda k: self._select(conn, k)))
                self._upsert(conn, key, merged)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            return merged
        finally:
            conn.close()

    @staticmethod
    def _select(conn: sqlite3.Connection, key: str) -> Optional[Record]:
        row = conn.execute("SELECT data FROM healing_store WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    @staticmethod
    def _upsert(conn: sqlite3.Connection, key: str, data: Record) -> None:
        conn.execute(
            "INSERT INTO healing_store (key, data, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
            (key, json.dumps(data), current_millis())
        )


class PatternStore:
    """Learned patterns, success rates and healing history for one healer."""

    def __init__(
        self,
        backend: Optional[PersistenceBackend] = None,
        key: str = "patterns",
        history_limit: int = DEFAULT_HISTORY_LIMIT
    ):
        self.backend = backend or JsonFilePersistence()
        self.key = key
        self.history_limit = history_limit

        self.patterns: Dict[str, Pattern] = {}
        self.success_rates: Dict[str, float] = {}
        self.history: List[HealingHistoryEntry] = []
        self.last_updated: Optional[int] = None

        # Changes since the last load/flush, replayed onto the stored record
        self._pending_outcomes: Dict[str, List[int]] = {}
        self._pending_rate_hits: Dict[str, int] = {}
        self._pending_history: List[HealingHistoryEntry] = []

    # ---- learned state ----

    def get_pattern(self, name: str) -> Optional[Pattern]:
        return self.patterns.get(name)

    def get_success_rate(self, name: str) -> float:
        """Smoothed success rate for a strategy, 0.5 when unseen."""
        return self.success_rates.get(name, DEFAULT_SUCCESS_RATE)

    def record_outcome(self, name: str, success: bool, description: str = "", implementation: Any = None) -> Pattern:
        """Count one outcome against the strategy's lifetime Pattern."""
        pattern = self.patterns.get(name)
        if pattern is None:
            pattern = Pattern(
                name=name,
                description=description or "",
                implementation=implementation if isinstance(implementation, str) else None
            )
            self.patterns[name] = pattern
        pattern.record(success)

        pending = self._pending_outcomes.setdefault(name, [0, 0])
        pending[0 if success else 1] += 1
        return pattern

    def bump_success_rate(self, name: str) -> float:
        """Pull the smoothed success rate halfway toward 1."""
        rate = (self.get_success_rate(name) + 1) / 2
        self.success_rates[name] = rate
        self._pending_rate_hits[name] = self._pending_rate_hits.get(name, 0) + 1
        return rate

    def append_history(self, entry: HealingHistoryEntry) -> None:
        self.history.append(entry)
        self._pending_history.append(entry)

    def recent_history(self, limit: int = 50) -> List[HealingHistoryEntry]:
        return self.history[-limit:] if limit > 0 else []

    def has_similar_context(self, test_type: str, page_url: str) -> bool:
        """True if any history entry shares both test type and page URL."""
        for entry in self.history:
            ctx = entry.context or {}
            if ctx.get("testType") == test_type and ctx.get("pageUrl") == page_url:
                return True
        return False

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending_outcomes or self._pending_rate_hits or self._pending_history)

    # ---- persistence ----

    async def load(self) -> bool:
        """Load persisted state; returns False when nothing is stored yet."""
        record = await self.backend.load(self.key)
        if record is None:
            logger.info(f"No stored patterns under '{self.key}', starting fresh")
            return False
        self._adopt(record)
        self._clear_pending()
        logger.info(f"Loaded {len(self.patterns)} patterns and {len(self.history)} history entries")
        return True

    async def flush(self) -> Record:
        """Merge pending changes into the stored record and adopt the result."""
        merged = await self.backend.update(self.key, self._merge_into)
        self._adopt(merged)
        self._clear_pending()
        logger.debug(f"Flushed pattern store '{self.key}' with {len(self.patterns)} patterns")
        return merged

    async def reset(self) -> None:
        """Erase all learned state, in memory and in storage."""
        self.patterns.clear()
        self.success_rates.clear()
        self.history.clear()
        self._clear_pending()
        await self.backend.save(self.key, self.to_record())

    def to_record(self) -> Record:
        """Serialize the in-memory state into the persisted record shape."""
        return {
            "patterns": [[name, p.to_dict()] for name, p in self.patterns.items()],
            "successRates": [[name, rate] for name, rate in self.success_rates.items()],
            "healingHistory": [e.to_dict() for e in self.history[-self.history_limit:]],
            "lastUpdated": current_millis(),
        }

    def _merge_into(self, stored: Optional[Record]) -> Record:
        patterns, rates, history = self._parse_record(stored)

        for name, (successes, failures) in self._pending_outcomes.items():
            pattern = patterns.get(name)
            if pattern is None:
                local = self.patterns.get(name)
                pattern = Pattern(
                    name=name,
                    description=local.description if local else "",
                    implementation=local.implementation if local else None
                )
                patterns[name] = pattern
            pattern.success_count += successes
            pattern.total_count += successes + failures
            if pattern.total_count:
                pattern.success_rate = pattern.success_count / pattern.total_count

        # k successes move r to 1 - (1 - r) / 2**k
        for name, hits in self._pending_rate_hits.items():
            rate = rates.get(name, DEFAULT_SUCCESS_RATE)
            rates[name] = 1 - (1 - rate) / (2 ** hits)

        history.extend(self._pending_history)

        return {
            "patterns": [[name, p.to_dict()] for name, p in patterns.items()],
            "successRates": [[name, rate] for name, rate in rates.items()],
            "healingHistory": [e.to_dict() for e in history[-self.history_limit:]],
            "lastUpdated": current_millis(),
        }

    def _adopt(self, record: Record) -> None:
        self.patterns, self.success_rates, self.history = self._parse_record(record)
        self.last_updated = record.get("lastUpdated") if isinstance(record, dict) else None

    def _clear_pending(self) -> None:
        self._pending_outcomes = {}
        self._pending_rate_hits = {}
        self._pending_history = []

    @staticmethod
    def _parse_record(
        record: Optional[Record]
    ) -> Tuple[Dict[str, Pattern], Dict[str, float], List[HealingHistoryEntry]]:
        if not record:
            return {}, {}, []
        if not isinstance(record, dict):
            logger.warning(f"Ignoring malformed pattern record of type {type(record).__name__}")
            return {}, {}, []

        patterns = {}
        for item in record.get("patterns") or []:
            if isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[1], dict):
                patterns[item[0]] = Pattern.from_dict(item[0], item[1])

        rates = {}
        for item in record.get("successRates") or []:
            if isinstance(item, (list, tuple)) and len(item) == 2:
                rates[item[0]] = float(item[1])

        history = [
            HealingHistoryEntry.from_dict(entry)
            for entry in record.get("healingHistory") or []
            if isinstance(entry, dict)
        ]
        return patterns, rates, history


def create_backend(config: HealingConfiguration) -> PersistenceBackend:
    """Build the configured persistence backend.

    JSON records live next to the pattern file; SQLite records share one
    database file.
    """
    path = Path(config.pattern_store_path)
    if config.pattern_store_backend == "sqlite":
        db_path = path if path.suffix in (".db", ".sqlite", ".sqlite3") else path.with_suffix(".db")
        return SqlitePersistence(str(db_path))
    return JsonFilePersistence(str(path.parent))


def create_pattern_store(config: HealingConfiguration) -> PatternStore:
    """Build a PatternStore for the configured backend and path."""
    backend = create_backend(config)
    if isinstance(backend, SqlitePersistence):
        key = "patterns"
    else:
        key = Path(config.pattern_store_path).stem or "patterns"
    return PatternStore(backend, key=key, history_limit=config.history_limit)
