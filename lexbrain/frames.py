"""
FrameIndex — work-session Frames and their reference-point token index.

Frames are stored whole and replaced by id (last write wins). Each Frame's
reference point is tokenized into ``frame_tokens`` in the same transaction
as the Frame row, so the index never disagrees with the stored phrase.

Lookup:
    get_frame()         exact id
    search_reference()  token overlap with stored reference points
    find_by_jira()      exact ticket, most recent first
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from typing import Dict, List, Optional, Set, Tuple

from lexbrain.db import Database
from lexbrain.similarity import DEFAULT_MATCH_THRESHOLD, overlap, tokenize
from lexbrain.types import Frame, StatusSnapshot

logger = logging.getLogger(__name__)

_REQUIRED = ("id", "timestamp", "branch", "reference_point")


class FrameIndex:
    """Frame storage plus reference-point matching."""

    def __init__(self, db: Database, match_threshold: float = DEFAULT_MATCH_THRESHOLD):
        if not 0.0 < match_threshold <= 1.0:
            raise ValueError(f"match_threshold must be in (0, 1], got {match_threshold}")
        self._db = db
        self.match_threshold = match_threshold

    # -- Write -------------------------------------------------------------

    @staticmethod
    def validate(frame: Frame) -> None:
        """Raise ValueError if id, timestamp, branch or reference_point is empty."""
        for name in _REQUIRED:
            value = getattr(frame, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Frame.{name} is required")

    def insert_frame(self, frame: Frame) -> Frame:
        """Store *frame*, replacing any Frame with the same id.

        A stored atlas_frame_id is never replaced or cleared: the returned
        Frame carries the link already on record, if any.

        Raises:
            ValueError: id, timestamp, branch or reference_point is empty.
        """
        self.validate(frame)
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT atlas_frame_id FROM frames WHERE id=?", (frame.id,)
            ).fetchone()
            if row is not None and row["atlas_frame_id"] is not None:
                frame = replace(frame, atlas_frame_id=row["atlas_frame_id"])
            conn.execute(
                """INSERT OR REPLACE INTO frames
                   (id, timestamp, branch, jira, module_scope, reference_point,
                    summary_caption, status_snapshot, keywords, atlas_frame_id)
                   VALUES (?,?,?,?,?,?,?,?,?,?)""",
                (
                    frame.id, frame.timestamp, frame.branch, frame.jira,
                    json.dumps(frame.module_scope), frame.reference_point,
                    frame.summary_caption,
                    json.dumps(frame.status_snapshot.to_dict()),
                    json.dumps(frame.keywords), frame.atlas_frame_id,
                ),
            )
            self._index_tokens(conn, frame.id, frame.reference_point)
            self._db.log_event(conn, "frame", frame.id, {"branch": frame.branch})
        logger.debug(f"Stored frame {frame.id} on {frame.branch}")
        return frame

    def delete_frame(self, frame_id: str) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute("DELETE FROM frames WHERE id=?", (frame_id,))
            conn.execute("DELETE FROM frame_tokens WHERE frame_id=?", (frame_id,))
            deleted = cur.rowcount > 0
            if deleted:
                self._db.log_event(conn, "frame_delete", frame_id)
        return deleted

    def attach_atlas(self, frame_id: str, atlas_frame_id: str) -> bool:
        """Link an Atlas Frame to a Frame that has none yet.

        Returns False if the Frame does not exist or is already linked.
        """
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE frames SET atlas_frame_id=? WHERE id=? AND atlas_frame_id IS NULL",
                (atlas_frame_id, frame_id),
            )
            ok = cur.rowcount > 0
            if ok:
                self._db.log_event(conn, "attach_atlas", frame_id,
                                   {"atlas_frame_id": atlas_frame_id})
        return ok

    def reindex(self) -> int:
        """Rebuild the token index from stored Frames. Returns Frames indexed."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM frame_tokens")
            rows = conn.execute("SELECT id, reference_point FROM frames").fetchall()
            for r in rows:
                self._index_tokens(conn, r["id"], r["reference_point"])
        logger.info(f"Reindexed {len(rows)} frame(s)")
        return len(rows)

    # -- Read --------------------------------------------------------------

    def get_frame(self, frame_id: str) -> Optional[Frame]:
        row = self._db.query_one("SELECT * FROM frames WHERE id=?", (frame_id,))
        return self._row_to_frame(row) if row is not None else None

    def search_reference(self, text: str, limit: int = 10) -> List[Tuple[Frame, float]]:
        """Frames whose reference point shares enough tokens with *text*.

        Score is the fraction of query tokens present in the stored phrase.
        Results below match_threshold are dropped; the rest are ordered by
        score desc, timestamp desc, id.
        """
        query = tokenize(text)
        if not query:
            return []
        placeholders = ",".join("?" * len(query))
        rows = self._db.query(
            f"SELECT frame_id, token FROM frame_tokens WHERE token IN ({placeholders})",
            query,
        )
        matched: Dict[str, Set[str]] = {}
        for r in rows:
            matched.setdefault(r["frame_id"], set()).add(r["token"])

        scored: List[Tuple[Frame, float]] = []
        for fid, tokens in matched.items():
            score = overlap(query, tokens)
            if score < self.match_threshold:
                continue
            frame = self.get_frame(fid)
            if frame is not None:
                scored.append((frame, score))
        scored.sort(key=lambda fs: fs[0].id)
        scored.sort(key=lambda fs: fs[0].timestamp, reverse=True)
        scored.sort(key=lambda fs: fs[1], reverse=True)
        logger.debug(f"Reference search {query}: {len(scored)} match(es)")
        return scored[:limit]

    def find_by_jira(self, jira: str, limit: int = 10) -> List[Frame]:
        """Frames for ticket *jira*, most recent first."""
        return self.list_frames(jira=jira, limit=limit)

    def list_frames(
        self,
        branch: Optional[str] = None,
        jira: Optional[str] = None,
        limit: int = 50,
    ) -> List[Frame]:
        """Frames, most recent first, optionally filtered by branch and ticket."""
        conditions = []
        params: list = []
        if branch is not None:
            conditions.append("branch=?")
            params.append(branch)
        if jira is not None:
            conditions.append("jira=?")
            params.append(jira)
        where = " AND ".join(conditions) if conditions else "1=1"
        rows = self._db.query(
            f"SELECT * FROM frames WHERE {where} ORDER BY timestamp DESC, id LIMIT ?",
            params + [limit],
        )
        return [self._row_to_frame(r) for r in rows]

    def count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS cnt FROM frames")
        return row["cnt"] if row else 0

    # -- Helpers -----------------------------------------------------------

    @staticmethod
    def _index_tokens(conn: sqlite3.Connection, frame_id: str, reference_point: str) -> None:
        conn.execute("DELETE FROM frame_tokens WHERE frame_id=?", (frame_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO frame_tokens (frame_id, token) VALUES (?, ?)",
            [(frame_id, tok) for tok in tokenize(reference_point)],
        )

    @staticmethod
    def _row_to_frame(row: sqlite3.Row) -> Frame:
        """Convert a SQLite Row to Frame."""
        return Frame(
            id=row["id"],
            timestamp=row["timestamp"],
            branch=row["branch"],
            jira=row["jira"],
            module_scope=json.loads(row["module_scope"]),
            reference_point=row["reference_point"],
            summary_caption=row["summary_caption"],
            status_snapshot=StatusSnapshot.from_dict(json.loads(row["status_snapshot"])),
            keywords=json.loads(row["keywords"]),
            atlas_frame_id=row["atlas_frame_id"],
        )
