"""
FactStore — content-addressed, idempotent, TTL-expired facts.

A fact is identified by the digest of (kind, scope, inputs_hash,
payload_hash). Writing the same four components twice is a no-op that
reports ``inserted=False``; the existing row is never modified. Facts with a
TTL are removed by expire() once ``created + ttl < now``; facts without one
are kept forever.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Any, Callable, List, Optional, Sequence, Union

from lexbrain.config import FactConfig
from lexbrain.db import Database
from lexbrain.hashing import canonical_json, fact_id, payload_hash
from lexbrain.types import (
    FACT_KINDS,
    Fact,
    Plain,
    PutResult,
    Scope,
    Sealed,
    _epoch_to_iso,
    payload_from_stored,
)

logger = logging.getLogger(__name__)


class PayloadTooLarge(ValueError):
    """Raised when the encoded payload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Payload is {size} bytes, limit is {limit} bytes")
        self.size = size
        self.limit = limit


class InvalidTtl(ValueError):
    """Raised when ttl_seconds is not an integer within the allowed window."""


class FactStore:
    """Append-only fact table on top of the shared Database."""

    def __init__(
        self,
        db: Database,
        config: Optional[FactConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._db = db
        self._config = config or FactConfig()
        self._clock = clock

    @property
    def config(self) -> FactConfig:
        return self._config

    # -- Validation --------------------------------------------------------

    def _check_ttl(self, ttl_seconds: Any) -> None:
        if ttl_seconds is None:
            return
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
            raise InvalidTtl(f"ttl_seconds must be an integer, got {ttl_seconds!r}")
        lo = self._config.min_ttl_seconds
        hi = self._config.max_ttl_seconds
        if ttl_seconds < lo or ttl_seconds > hi:
            raise InvalidTtl(f"ttl_seconds {ttl_seconds} not in [{lo}, {hi}]")

    # -- Write -------------------------------------------------------------

    def put(
        self,
        kind: str,
        scope: Union[Scope, dict],
        inputs_hash: str,
        payload: Any,
        ttl_seconds: Optional[int] = None,
        confidence: Optional[float] = None,
        actor: Any = None,
        refs: Optional[Sequence[str]] = None,
    ) -> PutResult:
        """Store a fact unless an identical one already exists.

        Args:
            kind: One of FACT_KINDS.
            scope: Scope (or dict with repo, commit, path?, symbol?).
            inputs_hash: Caller-computed digest of the fact's inputs.
            payload: Plain, Sealed, or a raw JSON value (wrapped in Plain).
            ttl_seconds: Optional lifetime; None means the fact never expires.
            confidence: Optional caller confidence score.
            actor: Optional JSON description of the writer.
            refs: Optional related fact ids.

        Returns:
            PutResult with the fact id and whether a new row was created.

        Raises:
            ValueError: Unknown kind or empty repo/commit/inputs_hash.
            EncodingError: Payload or actor is not JSON-encodable.
            PayloadTooLarge: Encoded payload exceeds max_payload_kb.
            InvalidTtl: ttl_seconds outside [min_ttl_seconds, max_ttl_days].
        """
        if kind not in FACT_KINDS:
            raise ValueError(f"Invalid fact kind: {kind!r}")
        if not isinstance(scope, Scope):
            scope = Scope.from_dict(scope)
        if not scope.repo or not scope.commit:
            raise ValueError("scope.repo and scope.commit are required")
        if not inputs_hash:
            raise ValueError("inputs_hash is required")
        if not isinstance(payload, (Plain, Sealed)):
            payload = Plain(payload)

        stored = canonical_json(payload.to_stored())
        size = len(stored.encode("utf-8"))
        if size > self._config.max_payload_bytes:
            raise PayloadTooLarge(size, self._config.max_payload_bytes)
        self._check_ttl(ttl_seconds)

        fid = fact_id(kind, scope, inputs_hash, payload_hash(payload))
        actor_json = canonical_json(actor) if actor is not None else None
        now = self._clock()

        with self._db.transaction() as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO facts
                   (fact_id, kind, repo, "commit", path, symbol, inputs_hash,
                    payload, sealed, confidence, actor, refs,
                    created_at, created_epoch, ttl_seconds)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                (
                    fid, kind, scope.repo, scope.commit, scope.path, scope.symbol,
                    inputs_hash, stored, int(isinstance(payload, Sealed)),
                    confidence, actor_json, json.dumps(list(refs or [])),
                    _epoch_to_iso(now), now, ttl_seconds,
                ),
            )
            inserted = cur.rowcount > 0
            self._db.log_event(conn, "put", fid, {"kind": kind, "inserted": inserted})

        logger.debug(f"Fact {fid[:12]} {'inserted' if inserted else 'already present'}")
        return PutResult(fact_id=fid, inserted=inserted)

    # -- Read --------------------------------------------------------------

    def get(
        self,
        repo: str,
        commit: str,
        kind: str,
        path: Optional[str] = None,
        symbol: Optional[str] = None,
        inputs_hash: Optional[str] = None,
    ) -> List[Fact]:
        """All facts matching every supplied filter, oldest first."""
        conditions = ["repo=?", '"commit"=?', "kind=?"]
        params: list = [repo, commit, kind]
        if path is not None:
            conditions.append("path=?")
            params.append(path)
        if symbol is not None:
            conditions.append("symbol=?")
            params.append(symbol)
        if inputs_hash is not None:
            conditions.append("inputs_hash=?")
            params.append(inputs_hash)
        where = " AND ".join(conditions)
        rows = self._db.query(
            f"SELECT * FROM facts WHERE {where} ORDER BY created_epoch, fact_id",
            params,
        )
        return [self._row_to_fact(r) for r in rows]

    def is_hit(
        self,
        repo: str,
        commit: str,
        kind: str,
        inputs_hash: str,
        path: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> bool:
        """True if a fact for these inputs is already stored."""
        hit = bool(self.get(repo, commit, kind, path=path, symbol=symbol,
                            inputs_hash=inputs_hash))
        logger.debug(f"Cache {'hit' if hit else 'miss'}: {kind} {repo}@{commit}")
        return hit

    def count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS cnt FROM facts")
        return row["cnt"] if row else 0

    # -- Expiry ------------------------------------------------------------

    def expire(self, now: Optional[float] = None) -> int:
        """Delete every fact whose TTL has elapsed. Returns the number removed.

        The boundary is strict: a fact created at t with ttl 60 survives at
        t+60 and is removed at t+61.
        """
        if now is None:
            now = self._clock()
        with self._db.transaction() as conn:
            cur = conn.execute(
                """DELETE FROM facts
                   WHERE ttl_seconds IS NOT NULL
                     AND created_epoch + ttl_seconds < ?""",
                (now,),
            )
            removed = cur.rowcount
            if removed:
                self._db.log_event(conn, "expire", None, {"removed": removed})
        if removed:
            logger.info(f"Expired {removed} fact(s)")
        return removed

    # -- Helpers -----------------------------------------------------------

    @staticmethod
    def _row_to_fact(row: sqlite3.Row) -> Fact:
        """Convert a SQLite Row to Fact."""
        return Fact(
            fact_id=row["fact_id"],
            kind=row["kind"],
            scope=Scope(
                repo=row["repo"], commit=row["commit"],
                path=row["path"], symbol=row["symbol"],
            ),
            inputs_hash=row["inputs_hash"],
            payload=payload_from_stored(row["payload"]),
            created_at=row["created_at"],
            ttl_seconds=row["ttl_seconds"],
            confidence=row["confidence"],
            actor=json.loads(row["actor"]) if row["actor"] is not None else None,
            refs=json.loads(row["refs"]),
        )
