"""Match Store - Persists match pairings with atomic per-pairing updates"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol, Any

import aiosqlite
from loguru import logger

from studybuddy.data.schema import MatchPairing, PairingStatus
from studybuddy.storage.locks import KeyedLocks


class MatchStore(Protocol):
    async def create(self, pairing: MatchPairing) -> str: ...
    async def get(self, pairing_id: str) -> Optional[MatchPairing]: ...
    async def find_active_for(self, user_id: str) -> Optional[MatchPairing]: ...
    async def update(self, pairing_id: str, patch: Dict[str, Any]) -> Optional[MatchPairing]: ...
    async def delete_for_user(self, user_id: str) -> int: ...

    def transaction(self, pairing_id: str) -> AsyncContextManager[Optional[MatchPairing]]:
        """
        Atomic read-modify-write scope for one pairing

        Yields a copy of the pairing (None if unknown). Changes made to the
        copy are written back when the block exits without an exception.
        Concurrent transactions on the same pairing run one after another.
        """
        ...


def _apply_patch(pairing: MatchPairing, patch: Dict[str, Any]) -> None:
    for field, value in patch.items():
        if field in ("pairing_id", "users", "score", "created_at"):
            raise ValueError(f"Pairing field '{field}' is immutable")
        if field == "status":
            value = PairingStatus(value)
        setattr(pairing, field, value)


class InMemoryMatchStore:
    """Process-local match store"""

    def __init__(self):
        self._pairings: Dict[str, MatchPairing] = {}
        self._locks = KeyedLocks()

    async def create(self, pairing: MatchPairing) -> str:
        self._pairings[pairing.pairing_id] = pairing.model_copy(deep=True)
        logger.info(f"Created pairing {pairing.pairing_id} for users {pairing.users} (score={pairing.score:.2f})")
        return pairing.pairing_id

    async def get(self, pairing_id: str) -> Optional[MatchPairing]:
        pairing = self._pairings.get(pairing_id)
        return pairing.model_copy(deep=True) if pairing else None

    async def find_active_for(self, user_id: str) -> Optional[MatchPairing]:
        """Most recently created pairing involving user_id; equal timestamps go to the later insert"""
        candidates = [(i, p) for i, p in enumerate(self._pairings.values()) if p.involves(user_id)]
        if not candidates:
            return None
        _, latest = max(candidates, key=lambda ip: (ip[1].created_at, ip[0]))
        return latest.model_copy(deep=True)

    @asynccontextmanager
    async def transaction(self, pairing_id: str) -> AsyncIterator[Optional[MatchPairing]]:
        async with self._locks(pairing_id):
            stored = self._pairings.get(pairing_id)
            working = stored.model_copy(deep=True) if stored else None
            yield working
            if working is not None and pairing_id in self._pairings:
                self._pairings[pairing_id] = working

    async def update(self, pairing_id: str, patch: Dict[str, Any]) -> Optional[MatchPairing]:
        async with self.transaction(pairing_id) as pairing:
            if pairing is None:
                return None
            _apply_patch(pairing, patch)
        return pairing.model_copy(deep=True)

    async def delete_for_user(self, user_id: str) -> int:
        doomed = [pid for pid, p in self._pairings.items() if p.involves(user_id)]
        for pairing_id in doomed:
            del self._pairings[pairing_id]
        if doomed:
            logger.info(f"Deleted {len(doomed)} pairings for user {user_id}")
        return len(doomed)

    def __len__(self) -> int:
        return len(self._pairings)


CREATE_SQL = """
CREATE TABLE IF NOT EXISTS pairings (
    pairing_id TEXT PRIMARY KEY,
    user_a TEXT NOT NULL,
    user_b TEXT NOT NULL,
    score REAL NOT NULL,
    status TEXT NOT NULL,
    message_counts TEXT NOT NULL,
    last_message_from TEXT,
    created_at TEXT NOT NULL
)"""

_COLUMNS = "pairing_id, user_a, user_b, score, status, message_counts, last_message_from, created_at"


class SQLiteMatchStore:
    """
    SQLite-backed match store (aiosqlite)

    Each transaction opens its own connection and takes the database write
    lock with BEGIN IMMEDIATE, so read-decide-write sequences on a pairing are
    serialized across connections as well as within this process.
    """

    def __init__(self, path: str, timeout: float = 5.0):
        self.path = path
        self.timeout = timeout
        self._locks = KeyedLocks()
        self._schema_ready = False

    def _connect(self):
        return aiosqlite.connect(self.path, timeout=self.timeout, isolation_level=None)

    async def init(self) -> None:
        if self._schema_ready:
            return
        async with self._connect() as db:
            await db.execute(CREATE_SQL)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_pairings_a ON pairings(user_a)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_pairings_b ON pairings(user_b)")
        self._schema_ready = True
        logger.info(f"SQLite match store ready at {self.path}")

    @staticmethod
    def _to_row(pairing: MatchPairing) -> tuple:
        return (
            pairing.pairing_id,
            pairing.users[0],
            pairing.users[1],
            pairing.score,
            pairing.status.value,
            json.dumps(pairing.message_counts),
            pairing.last_message_from,
            pairing.created_at.isoformat(),
        )

    @staticmethod
    def _from_row(row) -> MatchPairing:
        pairing_id, user_a, user_b, score, status, counts, last_from, created_at = row
        return MatchPairing(
            pairing_id=pairing_id,
            users=(user_a, user_b),
            score=score,
            status=PairingStatus(status),
            message_counts=json.loads(counts),
            last_message_from=last_from,
            created_at=datetime.fromisoformat(created_at),
        )

    async def create(self, pairing: MatchPairing) -> str:
        await self.init()
        async with self._connect() as db:
            await db.execute(f"INSERT INTO pairings({_COLUMNS}) VALUES(?,?,?,?,?,?,?,?)", self._to_row(pairing))
        logger.info(f"Created pairing {pairing.pairing_id} for users {pairing.users} (score={pairing.score:.2f})")
        return pairing.pairing_id

    async def get(self, pairing_id: str) -> Optional[MatchPairing]:
        await self.init()
        async with self._connect() as db:
            async with db.execute(f"SELECT {_COLUMNS} FROM pairings WHERE pairing_id=?", (pairing_id,)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def find_active_for(self, user_id: str) -> Optional[MatchPairing]:
        await self.init()
        async with self._connect() as db:
            async with db.execute(
                f"SELECT {_COLUMNS} FROM pairings WHERE user_a=? OR user_b=? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (user_id, user_id),
            ) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    @asynccontextmanager
    async def transaction(self, pairing_id: str) -> AsyncIterator[Optional[MatchPairing]]:
        await self.init()
        async with self._locks(pairing_id):
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    async with db.execute(f"SELECT {_COLUMNS} FROM pairings WHERE pairing_id=?", (pairing_id,)) as cur:
                        row = await cur.fetchone()
                    pairing = self._from_row(row) if row else None

                    yield pairing

                    if pairing is not None:
                        await db.execute(
                            "UPDATE pairings SET status=?, message_counts=?, last_message_from=? WHERE pairing_id=?",
                            (pairing.status.value, json.dumps(pairing.message_counts),
                             pairing.last_message_from, pairing_id),
                        )
                    await db.execute("COMMIT")
                except Exception:
                    await db.execute("ROLLBACK")
                    raise

    async def update(self, pairing_id: str, patch: Dict[str, Any]) -> Optional[MatchPairing]:
        async with self.transaction(pairing_id) as pairing:
            if pairing is None:
                return None
            _apply_patch(pairing, patch)
        return pairing

    async def delete_for_user(self, user_id: str) -> int:
        await self.init()
        async with self._connect() as db:
            cur = await db.execute("DELETE FROM pairings WHERE user_a=? OR user_b=?", (user_id, user_id))
            deleted = cur.rowcount
            await cur.close()
        if deleted:
            logger.info(f"Deleted {deleted} pairings for user {user_id}")
        return deleted
