"""
Knowledge Data Model — Facts, Frames, Atlas Frames

Defines the records exchanged with the core: content-addressed facts and
their scope, the Plain/Sealed payload envelope, work-session Frames, and the
Atlas Frame neighborhood attached to them.

Facts and Atlas Frames are immutable once written. Frames are replaced
wholesale by id (last write wins), never patched.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

# ---------------------------------------------------------------------------
# Type aliases (Literal unions for validation)
# ---------------------------------------------------------------------------

FactKind = Literal[
    "repo_scan", "dep_graph", "dep_score", "plan", "merge_order",
    "gate_result", "artifact", "note", "frame", "atlas_frame",
]
PayloadMode = Literal["local", "zk"]
EdgeStatus = Literal["allowed", "forbidden", "unspecified"]

# Valid values for runtime checks
FACT_KINDS: frozenset = frozenset({
    "repo_scan", "dep_graph", "dep_score", "plan", "merge_order",
    "gate_result", "artifact", "note", "frame", "atlas_frame",
})
PAYLOAD_MODES: frozenset = frozenset({"local", "zk"})


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _epoch_to_iso(epoch: float) -> str:
    """Convert a POSIX timestamp to an ISO-8601 UTC string."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def _generate_id(prefix: str = "frame") -> str:
    """Generate a unique id with prefix."""
    short = uuid.uuid4().hex[:16]
    return f"{prefix}-{short}"


def _known(cls, d: Dict[str, Any]) -> Dict[str, Any]:
    """Filter a dict down to the dataclass fields of *cls*."""
    known = set(cls.__dataclass_fields__.keys())
    return {k: v for k, v in d.items() if k in known}


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

@dataclass
class Scope:
    """Addressable context a fact applies to."""

    repo: str = ""
    commit: str = ""
    path: Optional[str] = None
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize, omitting absent optional fields.

        Identity hashing goes through this method, so ``path=None`` and a
        missing path must produce the same dict.
        """
        d: Dict[str, Any] = {"repo": self.repo, "commit": self.commit}
        if self.path is not None:
            d["path"] = self.path
        if self.symbol is not None:
            d["symbol"] = self.symbol
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Scope:
        """Deserialize scope from a dictionary."""
        return cls(**_known(cls, d))


# ---------------------------------------------------------------------------
# Payload envelope
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Plain:
    """Cleartext payload: any JSON-serializable value."""

    value: Any = None

    def to_stored(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Sealed:
    """Caller-encrypted payload. The core stores it and never decrypts it."""

    ciphertext: str
    iv: str

    def to_stored(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext, "iv": self.iv}


Payload = Union[Plain, Sealed]


def payload_from_wire(value: Any, mode: PayloadMode = "local") -> Payload:
    """Resolve a raw request payload into a Plain or Sealed envelope.

    In ``"zk"`` mode the payload must be ``{"ciphertext": ..., "iv": ...}``
    with both fields non-empty strings. In ``"local"`` mode everything is
    treated as cleartext.

    Raises:
        ValueError: Unknown mode, or malformed sealed payload in zk mode.
    """
    if isinstance(value, (Plain, Sealed)):
        return value
    if mode not in PAYLOAD_MODES:
        raise ValueError(f"Invalid payload mode: {mode!r}")
    if mode == "local":
        return Plain(value)
    if not isinstance(value, dict):
        raise ValueError("zk mode expects payload to be {ciphertext, iv}")
    ciphertext = value.get("ciphertext")
    iv = value.get("iv")
    if not isinstance(ciphertext, str) or not isinstance(iv, str) or not ciphertext or not iv:
        raise ValueError("zk payload must have non-empty ciphertext and iv fields")
    return Sealed(ciphertext=ciphertext, iv=iv)


def payload_from_stored(text: str) -> Any:
    """Decode a stored payload blob back to its JSON value."""
    return json.loads(text)


# ---------------------------------------------------------------------------
# Fact
# ---------------------------------------------------------------------------

@dataclass
class Fact:
    """Immutable, content-addressed observation."""

    fact_id: str
    kind: str
    scope: Scope
    inputs_hash: str
    payload: Any = None
    created_at: str = field(default_factory=_now_iso)
    ttl_seconds: Optional[int] = None
    confidence: Optional[float] = None
    actor: Any = None
    refs: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate kind; coerce dict scope."""
        if self.kind not in FACT_KINDS:
            raise ValueError(f"Invalid fact kind: {self.kind!r}")
        if isinstance(self.scope, dict):
            self.scope = Scope.from_dict(self.scope)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (JSON-safe)."""
        d = asdict(self)
        d["scope"] = self.scope.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Fact:
        """Deserialize from dict."""
        return cls(**_known(cls, d))


@dataclass(frozen=True)
class PutResult:
    """Outcome of a fact write: identity plus whether a row was created."""

    fact_id: str
    inserted: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"fact_id": self.fact_id, "inserted": self.inserted}


# ---------------------------------------------------------------------------
# Neighborhood / Atlas Frame
# ---------------------------------------------------------------------------

@dataclass
class ModuleData:
    """One module of a neighborhood, with its full policy metadata."""

    id: str
    coords: Optional[Tuple[float, float]] = None
    allowed_callers: List[str] = field(default_factory=list)
    forbidden_callers: List[str] = field(default_factory=list)
    feature_flags: List[str] = field(default_factory=list)
    requires_permissions: List[str] = field(default_factory=list)
    kill_patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["coords"] = list(self.coords) if self.coords is not None else None
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ModuleData:
        data = _known(cls, d)
        if data.get("coords") is not None:
            data["coords"] = tuple(data["coords"])
        return cls(**data)


@dataclass
class NeighborhoodData:
    """Bounded subgraph around a set of seed modules."""

    seed_modules: List[str]
    fold_radius: int
    modules: List[ModuleData] = field(default_factory=list)

    @property
    def module_ids(self) -> List[str]:
        return [m.id for m in self.modules]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed_modules": list(self.seed_modules),
            "fold_radius": self.fold_radius,
            "modules": [m.to_dict() for m in self.modules],
        }


@dataclass(frozen=True)
class AtlasEdge:
    """Directed caller → callee edge, classified against callee policy.

    ``allowed`` is True (explicitly allowed), False (explicitly forbidden)
    or None (the policy says nothing about this caller).
    """

    from_module: str
    to_module: str
    allowed: Optional[bool] = None

    @property
    def status(self) -> EdgeStatus:
        if self.allowed is None:
            return "unspecified"
        return "allowed" if self.allowed else "forbidden"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_module,
            "to": self.to_module,
            "allowed": self.allowed,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> AtlasEdge:
        return cls(from_module=d["from"], to_module=d["to"], allowed=d.get("allowed"))


@dataclass
class AtlasFrame:
    """Immutable architectural neighborhood linked to a Frame."""

    atlas_frame_id: str = field(default_factory=lambda: _generate_id("atlas"))
    frame_id: str = ""
    atlas_timestamp: str = field(default_factory=_now_iso)
    reference_module: str = ""
    seed_modules: List[str] = field(default_factory=list)
    fold_radius: int = 1
    modules: List[ModuleData] = field(default_factory=list)
    edges: List[AtlasEdge] = field(default_factory=list)

    @property
    def module_ids(self) -> List[str]:
        return [m.id for m in self.modules]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "atlas_frame_id": self.atlas_frame_id,
            "frame_id": self.frame_id,
            "atlas_timestamp": self.atlas_timestamp,
            "reference_module": self.reference_module,
            "seed_modules": list(self.seed_modules),
            "fold_radius": self.fold_radius,
            "modules": [m.to_dict() for m in self.modules],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> AtlasFrame:
        data = _known(cls, d)
        data["modules"] = [ModuleData.from_dict(m) for m in d.get("modules", [])]
        data["edges"] = [AtlasEdge.from_dict(e) for e in d.get("edges", [])]
        return cls(**data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)


# ---------------------------------------------------------------------------
# Frame (work-session snapshot)
# ---------------------------------------------------------------------------

@dataclass
class StatusSnapshot:
    """Where the session stood when the Frame was captured."""

    next_action: str = ""
    blockers: List[str] = field(default_factory=list)
    merge_blockers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> StatusSnapshot:
        return cls(**_known(cls, d))


@dataclass
class Frame:
    """
    Snapshot of a work session, recalled later by reference point.

    Rules:
    - module_scope ids use the policy vocabulary verbatim (no aliases).
    - atlas_frame_id is set at most once; None is a valid terminal state.
    """

    id: str = field(default_factory=lambda: _generate_id("frame"))
    timestamp: str = field(default_factory=_now_iso)
    branch: str = ""
    jira: Optional[str] = None
    module_scope: List[str] = field(default_factory=list)
    reference_point: str = ""
    summary_caption: str = ""
    status_snapshot: StatusSnapshot = field(default_factory=StatusSnapshot)
    keywords: List[str] = field(default_factory=list)
    atlas_frame_id: Optional[str] = None

    def __post_init__(self):
        """Coerce dict status snapshot."""
        if isinstance(self.status_snapshot, dict):
            self.status_snapshot = StatusSnapshot.from_dict(self.status_snapshot)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (JSON-safe)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Frame:
        """Deserialize from dict, filtering to known fields."""
        return cls(**_known(cls, d))

    def to_json(self) -> str:
        """Serialize to indented JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


@dataclass
class RecallResult:
    """A recalled Frame plus its Atlas Frame, when one is still stored."""

    frame: Frame
    atlas_frame: Optional[AtlasFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame": self.frame.to_dict(),
            "atlas_frame": self.atlas_frame.to_dict() if self.atlas_frame else None,
        }
