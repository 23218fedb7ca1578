"""
LexBrain — composition root and call surface.

Opens (or receives) the shared Database and wires every component around
it. Each public method is one operation of the call surface; transports
(CLI, or any server a host application builds) translate their requests
into these calls and their results into responses.

Usage::

    with LexBrain(LexBrainConfig(store=StoreConfig(db_path=":memory:"))) as lb:
        lb.put("note", {"repo": "r", "commit": "c"}, "h1", {"text": "hi"})
        lb.lock("merge-train")
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from lexbrain.atlas import AtlasFrameStore, generate_atlas_frame
from lexbrain.config import LexBrainConfig
from lexbrain.db import Database
from lexbrain.facts import FactStore
from lexbrain.frames import FrameIndex
from lexbrain.locks import LockTable
from lexbrain.neighborhood import UnknownModuleError
from lexbrain.policy import PolicyGraph, load_policy
from lexbrain.recall import RecallResolver
from lexbrain.types import (
    AtlasFrame,
    Fact,
    Frame,
    PutResult,
    RecallResult,
    Scope,
    _generate_id,
    _now_iso,
    payload_from_wire,
)

logger = logging.getLogger(__name__)

PolicySource = Union[PolicyGraph, Mapping[str, Any], str, "os.PathLike[str]", Callable[[], Any]]


def resolve_policy_source(source: PolicySource) -> PolicyGraph:
    """Turn a policy source into a PolicyGraph.

    Accepts a PolicyGraph, a parsed policy document, a path to a JSON file,
    or a zero-argument callable returning any of the first three.

    Raises:
        OSError: Policy file cannot be read.
        PolicyError: Document is not a valid policy.
        TypeError: Unsupported source type.
    """
    if callable(source) and not isinstance(source, PolicyGraph):
        source = source()
    if isinstance(source, PolicyGraph):
        return source
    if isinstance(source, Mapping):
        return PolicyGraph.from_dict(source)
    if isinstance(source, (str, os.PathLike)):
        return load_policy(os.fspath(source))
    raise TypeError(f"Unsupported policy source: {type(source).__name__}")


class LexBrain:
    """Facts, locks, Frames and Atlas Frames over one SQLite database."""

    def __init__(
        self,
        config: Optional[LexBrainConfig] = None,
        db: Optional[Database] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or LexBrainConfig()
        if db is None:
            store = self.config.store
            db = Database(store.db_path, wal_mode=store.wal_mode,
                          busy_timeout_ms=store.busy_timeout_ms)
        self.db = db
        self.facts = FactStore(db, self.config.facts, clock=clock)
        self.locks = LockTable(db)
        self.frames = FrameIndex(db, match_threshold=self.config.recall.match_threshold)
        self.atlases = AtlasFrameStore(db)
        self.resolver = RecallResolver(self.frames, self.atlases)

    # -- Facts -------------------------------------------------------------

    def put(
        self,
        kind: str,
        scope: Union[Scope, Dict[str, Any]],
        inputs_hash: str,
        payload: Any,
        confidence: Optional[float] = None,
        ttl_seconds: Optional[int] = None,
        actor: Any = None,
        refs: Optional[Sequence[str]] = None,
    ) -> PutResult:
        """Store a fact; the raw payload is read according to facts.mode."""
        envelope = payload_from_wire(payload, self.config.facts.mode)
        return self.facts.put(
            kind, scope, inputs_hash, envelope,
            ttl_seconds=ttl_seconds, confidence=confidence,
            actor=actor, refs=refs,
        )

    def get(
        self,
        repo: str,
        commit: str,
        kind: str,
        path: Optional[str] = None,
        symbol: Optional[str] = None,
        inputs_hash: Optional[str] = None,
    ) -> List[Fact]:
        return self.facts.get(repo, commit, kind, path=path, symbol=symbol,
                              inputs_hash=inputs_hash)

    def expire(self, now: Optional[float] = None) -> int:
        return self.facts.expire(now)

    # -- Locks -------------------------------------------------------------

    def lock(self, name: str) -> Dict[str, bool]:
        return {"ok": self.locks.acquire(name)}

    def unlock(self, name: str) -> Dict[str, bool]:
        return {"ok": self.locks.release(name)}

    # -- Atlas Frames ------------------------------------------------------

    def generate_atlas_frame(
        self,
        seed_modules: Sequence[str],
        fold_radius: Optional[int],
        policy_source: PolicySource,
        frame_id: str = "",
        persist: bool = True,
    ) -> AtlasFrame:
        """Build (and by default store) an Atlas Frame around *seed_modules*.

        Policy loading and neighborhood errors propagate to the caller.
        """
        if fold_radius is None:
            fold_radius = self.config.atlas.default_fold_radius
        policy = resolve_policy_source(policy_source)
        atlas = generate_atlas_frame(
            seed_modules, policy.adjacency, policy, fold_radius, frame_id=frame_id,
        )
        if persist:
            self.atlases.insert(atlas)
        return atlas

    def put_atlas_frame(self, atlas: Union[AtlasFrame, Mapping[str, Any]]) -> Dict[str, Any]:
        """Store a caller-built Atlas Frame; an id already stored is kept as is.

        Raises:
            ValueError: frame_id or reference_module is empty.
        """
        if not isinstance(atlas, AtlasFrame):
            atlas = AtlasFrame.from_dict(dict(atlas))
        if not atlas.atlas_frame_id:
            atlas.atlas_frame_id = _generate_id("atlas")
        if not atlas.atlas_timestamp:
            atlas.atlas_timestamp = _now_iso()
        for name in ("frame_id", "reference_module"):
            if not getattr(atlas, name):
                raise ValueError(f"AtlasFrame.{name} is required")
        inserted = self.atlases.put(atlas)
        return {"atlas_frame_id": atlas.atlas_frame_id, "inserted": inserted}

    def get_atlas_frame(
        self,
        atlas_frame_id: Optional[str] = None,
        frame_id: Optional[str] = None,
    ) -> Optional[AtlasFrame]:
        """Atlas Frame by its own id, else the latest one for *frame_id*.

        Returns None when nothing matches.

        Raises:
            ValueError: Neither argument was given.
        """
        if atlas_frame_id:
            return self.atlases.get(atlas_frame_id)
        if frame_id:
            return self.atlases.get_by_frame(frame_id)
        raise ValueError("atlas_frame_id or frame_id is required")

    # -- Frames ------------------------------------------------------------

    def capture_frame(
        self,
        draft: Union[Frame, Mapping[str, Any]],
        policy_source: Optional[PolicySource] = None,
        fold_radius: Optional[int] = None,
    ) -> Frame:
        """Store a Frame, generating and linking its Atlas Frame when possible.

        An unavailable policy source is logged and the Frame is stored
        without an Atlas Frame. Re-capturing a Frame id that is already
        linked keeps the existing Atlas Frame and generates none.

        Raises:
            ValueError: Required Frame fields are missing.
            UnknownModuleError: module_scope names a module the policy lacks.
        """
        if isinstance(draft, Frame):
            frame = Frame.from_dict(draft.to_dict())
        else:
            frame = Frame.from_dict(dict(draft))
        if not frame.id:
            frame.id = _generate_id("frame")
        if not frame.timestamp:
            frame.timestamp = _now_iso()
        FrameIndex.validate(frame)

        stored = self.frames.get_frame(frame.id)
        if stored is not None and stored.atlas_frame_id is not None:
            frame.atlas_frame_id = stored.atlas_frame_id

        policy: Optional[PolicyGraph] = None
        if policy_source is not None:
            try:
                policy = resolve_policy_source(policy_source)
            except (OSError, ValueError) as exc:
                logger.warning(f"Policy unavailable, capturing frame {frame.id} without atlas: {exc}")

        if policy is not None and frame.module_scope and frame.atlas_frame_id is None:
            missing = policy.missing_modules(frame.module_scope)
            if missing:
                raise UnknownModuleError(missing[0])
            atlas = self.generate_atlas_frame(
                frame.module_scope, fold_radius, policy, frame_id=frame.id,
            )
            frame.atlas_frame_id = atlas.atlas_frame_id

        return self.frames.insert_frame(frame)

    def recall(
        self,
        frame_id: Optional[str] = None,
        reference_point: Optional[str] = None,
        jira: Optional[str] = None,
    ) -> RecallResult:
        return self.resolver.recall(frame_id=frame_id, reference_point=reference_point,
                                    jira=jira)

    # -- Lifecycle ---------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        s = self.db.stats()
        s["mode"] = self.config.facts.mode
        s["locks"] = self.locks.list_locks()
        return s

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> LexBrain:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
