"""
Atlas Frames — architectural neighborhood snapshots.

An Atlas Frame records the neighborhood of the modules a work session
touched: the modules within ``fold_radius`` hops of the seeds, with their
full policy metadata, and the edges between them, each classified against
the callee's caller rules.

Atlas Frames are immutable: AtlasFrameStore.insert() is a plain INSERT,
AtlasFrameStore.put() an INSERT OR IGNORE, and there is no update path.
Regenerating for the same seeds yields a new id.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Iterable, List, Mapping, Optional, Sequence

from lexbrain.db import Database
from lexbrain.neighborhood import extract_neighborhood
from lexbrain.policy import PolicyGraph
from lexbrain.types import AtlasEdge, AtlasFrame, _generate_id, _now_iso

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generation (pure)
# ---------------------------------------------------------------------------


def classify_edge(policy: PolicyGraph, caller: str, callee: str) -> Optional[bool]:
    """Classify caller -> callee against the callee's caller rules.

    Returns False when the caller is forbidden (forbidden wins over allowed),
    True when it is explicitly allowed, None when the policy is silent.
    """
    meta = policy.get(callee)
    if meta is None:
        return None
    if caller in meta.forbidden_callers:
        return False
    if caller in meta.allowed_callers:
        return True
    return None


def collect_edges(
    graph: Mapping[str, Iterable[str]],
    policy: PolicyGraph,
    module_ids: Iterable[str],
) -> List[AtlasEdge]:
    """Edges between members of *module_ids*, sorted by (from, to).

    Every graph edge with both endpoints inside is kept. Forbidden-caller
    rules between two members are added as well, so a forbidden
    relationship is recorded even when the graph has no such edge.
    """
    members = set(module_ids)
    pairs = {(src, dst) for src in members for dst in graph.get(src, ()) if dst in members}
    for callee in members:
        meta = policy.get(callee)
        if meta is None:
            continue
        pairs.update((caller, callee) for caller in meta.forbidden_callers if caller in members)
    edges = [AtlasEdge(src, dst, classify_edge(policy, src, dst)) for src, dst in pairs]
    edges.sort(key=lambda e: (e.from_module, e.to_module))
    return edges


def generate_atlas_frame(
    seed_modules: Sequence[str],
    graph: Mapping[str, Iterable[str]],
    policy: PolicyGraph,
    fold_radius: int = 1,
    frame_id: str = "",
) -> AtlasFrame:
    """Extract the neighborhood of *seed_modules* and wrap it as an AtlasFrame.

    Raises the same errors as extract_neighborhood().
    """
    hood = extract_neighborhood(seed_modules, graph, policy, fold_radius)
    return AtlasFrame(
        atlas_frame_id=_generate_id("atlas"),
        frame_id=frame_id,
        atlas_timestamp=_now_iso(),
        reference_module=hood.seed_modules[0],
        seed_modules=list(hood.seed_modules),
        fold_radius=hood.fold_radius,
        modules=hood.modules,
        edges=collect_edges(graph, policy, hood.module_ids),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class AtlasFrameStore:
    """Immutable Atlas Frame blobs in the shared Database."""

    def __init__(self, db: Database):
        self._db = db

    def insert(self, atlas: AtlasFrame) -> AtlasFrame:
        """Persist *atlas*. A duplicate id raises sqlite3.IntegrityError."""
        self._write(atlas, "INSERT")
        return atlas

    def put(self, atlas: AtlasFrame) -> bool:
        """Persist *atlas* unless its id is already stored.

        Returns True if a row was written. An existing Atlas Frame with the
        same id is left untouched.
        """
        return self._write(atlas, "INSERT OR IGNORE")

    def _write(self, atlas: AtlasFrame, verb: str) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute(
                f"""{verb} INTO atlas_frames
                   (atlas_frame_id, frame_id, atlas_timestamp, reference_module,
                    fold_radius, atlas_json, created_at)
                   VALUES (?,?,?,?,?,?,?)""",
                (
                    atlas.atlas_frame_id, atlas.frame_id, atlas.atlas_timestamp,
                    atlas.reference_module, atlas.fold_radius,
                    atlas.to_json(), _now_iso(),
                ),
            )
            inserted = cur.rowcount > 0
            if inserted:
                self._db.log_event(conn, "atlas", atlas.atlas_frame_id, {
                    "frame_id": atlas.frame_id,
                    "modules": len(atlas.modules),
                    "fold_radius": atlas.fold_radius,
                })
        if inserted:
            logger.info(
                f"Stored atlas frame {atlas.atlas_frame_id} "
                f"({len(atlas.modules)} modules, radius {atlas.fold_radius})"
            )
        else:
            logger.debug(f"Atlas frame {atlas.atlas_frame_id} already stored")
        return inserted

    def get(self, atlas_frame_id: str) -> Optional[AtlasFrame]:
        row = self._db.query_one(
            "SELECT * FROM atlas_frames WHERE atlas_frame_id=?", (atlas_frame_id,)
        )
        return self._row_to_atlas(row) if row is not None else None

    def get_by_frame(self, frame_id: str) -> Optional[AtlasFrame]:
        """Most recent Atlas Frame generated for *frame_id*."""
        row = self._db.query_one(
            """SELECT * FROM atlas_frames WHERE frame_id=?
               ORDER BY atlas_timestamp DESC, rowid DESC LIMIT 1""",
            (frame_id,),
        )
        return self._row_to_atlas(row) if row is not None else None

    def list(self, frame_id: Optional[str] = None, limit: int = 50) -> List[AtlasFrame]:
        """Atlas Frames, newest first, optionally restricted to one Frame."""
        if frame_id is not None:
            rows = self._db.query(
                """SELECT * FROM atlas_frames WHERE frame_id=?
                   ORDER BY atlas_timestamp DESC, rowid DESC LIMIT ?""",
                (frame_id, limit),
            )
        else:
            rows = self._db.query(
                "SELECT * FROM atlas_frames ORDER BY atlas_timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            )
        atlases = (self._row_to_atlas(r) for r in rows)
        return [a for a in atlases if a is not None]

    @staticmethod
    def _row_to_atlas(row: sqlite3.Row) -> Optional[AtlasFrame]:
        try:
            return AtlasFrame.from_dict(json.loads(row["atlas_json"]))
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(f"Corrupt atlas frame {row['atlas_frame_id']}: {exc}")
            return None
