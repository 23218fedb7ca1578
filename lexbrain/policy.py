"""
PolicyGraph — module vocabulary, caller rules and adjacency.

A policy document declares the modules of a codebase and, for each module,
which callers are allowed or forbidden. It is authored outside lexbrain and
supplied per call; the core never watches or caches the file.

Policy document shape::

    {
      "version": "1.0.0",
      "metadata": {...},
      "modules": {
        "ui/user-admin-panel": {
          "coords": [0, 2],
          "allowed_callers": [...],
          "forbidden_callers": [...],
          "feature_flags": [...],
          "requires_permissions": [...],
          "kill_patterns": [...]
        }
      },
      "adjacency": {"ui/user-admin-panel": ["services/user-access-api"]}
    }

When ``adjacency`` is absent, edges are derived from ``allowed_callers``:
every allowed caller X of module M yields an edge X -> M.

Module ids are exact strings; there is no alias or fuzzy resolution.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

_LIST_FIELDS = (
    "allowed_callers", "forbidden_callers", "feature_flags",
    "requires_permissions", "kill_patterns", "owns_paths",
)


class PolicyError(ValueError):
    """Raised when a policy document is structurally invalid."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ModuleMetadata:
    """Policy entry for one module."""

    coords: Optional[Tuple[float, float]] = None
    allowed_callers: List[str] = field(default_factory=list)
    forbidden_callers: List[str] = field(default_factory=list)
    feature_flags: List[str] = field(default_factory=list)
    requires_permissions: List[str] = field(default_factory=list)
    kill_patterns: List[str] = field(default_factory=list)
    description: str = ""
    owns_paths: List[str] = field(default_factory=list)


def _is_pair(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    )


def _parse_module(module_id: str, entry: Any) -> ModuleMetadata:
    if not isinstance(entry, dict):
        raise PolicyError(f"Module {module_id!r}: entry must be an object")
    coords = entry.get("coords")
    if coords is not None:
        if not _is_pair(coords):
            raise PolicyError(f"Module {module_id!r}: coords must be a pair of numbers")
        coords = (coords[0], coords[1])
    lists: Dict[str, List[str]] = {}
    for name in _LIST_FIELDS:
        value = entry.get(name) or []
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise PolicyError(f"Module {module_id!r}: {name} must be a list of strings")
        lists[name] = list(value)
    return ModuleMetadata(
        coords=coords,
        description=str(entry.get("description") or ""),
        **lists,
    )


# ---------------------------------------------------------------------------
# PolicyGraph
# ---------------------------------------------------------------------------


class PolicyGraph:
    """Modules keyed by id plus a directed adjacency over them."""

    def __init__(
        self,
        modules: Mapping[str, ModuleMetadata],
        adjacency: Optional[Mapping[str, Iterable[str]]] = None,
        version: str = "",
    ):
        self.modules: Dict[str, ModuleMetadata] = dict(modules)
        self.version = version
        if adjacency is None:
            self.adjacency = adjacency_from_policy(self)
        else:
            self.adjacency = {k: set(v) for k, v in adjacency.items()}

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> PolicyGraph:
        """Parse a policy document.

        Raises:
            PolicyError: Missing ``modules``, malformed module entries, or a
                malformed ``adjacency`` section.
        """
        if not isinstance(doc, Mapping):
            raise PolicyError("Policy document must be an object")
        raw_modules = doc.get("modules")
        if not isinstance(raw_modules, dict):
            raise PolicyError("Policy document has no 'modules' object")
        modules = {mid: _parse_module(mid, entry) for mid, entry in raw_modules.items()}

        adjacency = doc.get("adjacency")
        if adjacency is not None:
            if not isinstance(adjacency, dict) or not all(
                isinstance(v, list) for v in adjacency.values()
            ):
                raise PolicyError("'adjacency' must map module ids to lists of ids")
        return cls(modules, adjacency=adjacency, version=str(doc.get("version") or ""))

    def __contains__(self, module_id: object) -> bool:
        return module_id in self.modules

    def __len__(self) -> int:
        return len(self.modules)

    def get(self, module_id: str) -> Optional[ModuleMetadata]:
        return self.modules.get(module_id)

    def module_ids(self) -> List[str]:
        """All module ids, sorted."""
        return sorted(self.modules)

    def missing_modules(self, ids: Iterable[str]) -> List[str]:
        """Ids from *ids* that this policy no longer declares (order kept)."""
        return [i for i in ids if i not in self.modules]


def adjacency_from_policy(policy: PolicyGraph) -> Dict[str, Set[str]]:
    """Derive caller -> callee edges from allowed_callers.

    Callers that are not modules of the policy are dropped.
    """
    graph: Dict[str, Set[str]] = {}
    for callee, meta in policy.modules.items():
        for caller in meta.allowed_callers:
            if caller in policy.modules:
                graph.setdefault(caller, set()).add(callee)
    return graph


def load_policy(path: str) -> PolicyGraph:
    """Read a policy JSON file.

    Raises:
        OSError: File cannot be read.
        PolicyError: File is not valid JSON or not a valid policy.
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            doc = json.load(f)
        except json.JSONDecodeError as exc:
            raise PolicyError(f"{path}: invalid JSON: {exc}") from exc
    policy = PolicyGraph.from_dict(doc)
    logger.debug(f"Loaded policy {path}: {len(policy)} modules")
    return policy


def validate_policy(doc: Any) -> List[str]:
    """Return human-readable problems in a policy document (empty = valid)."""
    problems: List[str] = []
    if not isinstance(doc, dict):
        return ["policy: document must be an object"]
    modules = doc.get("modules")
    if not isinstance(modules, dict):
        return ["policy: missing 'modules' object"]
    for mid in sorted(modules):
        entry = modules[mid]
        if not isinstance(entry, dict):
            problems.append(f"{mid}: entry must be an object")
            continue
        if not _is_pair(entry.get("coords")):
            problems.append(f"{mid}: coords must be a pair of numbers")
        for name in ("allowed_callers", "forbidden_callers"):
            callers = entry.get(name) or []
            if not isinstance(callers, list):
                problems.append(f"{mid}: {name} must be a list")
                continue
            for caller in callers:
                if caller not in modules:
                    problems.append(f"{mid}: {name} references unknown module {caller!r}")
    adjacency = doc.get("adjacency")
    if isinstance(adjacency, dict):
        for src in sorted(adjacency):
            targets = adjacency[src]
            if src not in modules:
                problems.append(f"adjacency: unknown module {src!r}")
            if not isinstance(targets, list):
                problems.append(f"adjacency.{src}: must be a list")
    elif adjacency is not None:
        problems.append("adjacency: must be an object")
    return problems
