"""
LockTable — named advisory mutual exclusion.

A lock is a row in the ``locks`` table: acquire() inserts it if absent,
release() deletes it. Both are single conditional statements, so among
concurrent callers exactly one acquire succeeds.

Locks are advisory only. There is no owner, no lease and no expiry: any
caller may release any lock, and a holder that crashes before calling
release() leaks the lock until someone releases it explicitly.
"""

from __future__ import annotations

import logging
from typing import List

from lexbrain.db import Database
from lexbrain.types import _now_iso

logger = logging.getLogger(__name__)


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ValueError("Lock name must be a non-empty string")


class LockTable:
    """Advisory named locks stored in the shared Database."""

    def __init__(self, db: Database):
        self._db = db

    def acquire(self, name: str) -> bool:
        """Take the lock. Returns False if it is already held."""
        _check_name(name)
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO locks (name, acquired_at) VALUES (?, ?)",
                (name, _now_iso()),
            )
            ok = cur.rowcount > 0
            if ok:
                self._db.log_event(conn, "lock", name)
        logger.debug(f"Lock {name!r} {'acquired' if ok else 'busy'}")
        return ok

    def release(self, name: str) -> bool:
        """Drop the lock. Returns False if it was not held.

        Raises:
            ValueError: name is empty.
        """
        _check_name(name)
        with self._db.transaction() as conn:
            cur = conn.execute("DELETE FROM locks WHERE name=?", (name,))
            ok = cur.rowcount > 0
            if ok:
                self._db.log_event(conn, "unlock", name)
        logger.debug(f"Lock {name!r} {'released' if ok else 'was not held'}")
        return ok

    def is_held(self, name: str) -> bool:
        _check_name(name)
        return self._db.query_one(
            "SELECT 1 FROM locks WHERE name=?", (name,)
        ) is not None

    def list_locks(self) -> List[str]:
        """Names of all currently held locks, sorted."""
        rows = self._db.query("SELECT name FROM locks ORDER BY name")
        return [r["name"] for r in rows]
