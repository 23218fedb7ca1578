"""
Neighborhood extraction — bounded BFS over the module adjacency graph.

Starting from one or more seed modules, expand exactly ``fold_radius``
levels along graph edges. Only modules declared by the policy are kept;
neighbors the policy does not know are silently filtered out. Expansion
stops early once a level adds nothing, so any radius at or beyond the graph
diameter returns the same result.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence, Set

from lexbrain.policy import PolicyGraph
from lexbrain.types import ModuleData, NeighborhoodData


class EmptySeedError(ValueError):
    """Raised when no seed modules are given."""


class InvalidRadiusError(ValueError):
    """Raised when fold_radius is negative or not an integer."""


class UnknownModuleError(LookupError):
    """Raised when a module id is not declared by the policy."""

    def __init__(self, module_id: str):
        super().__init__(f"Module {module_id!r} not found in policy")
        self.module_id = module_id


def _module_data(module_id: str, policy: PolicyGraph) -> ModuleData:
    meta = policy.modules[module_id]
    return ModuleData(
        id=module_id,
        coords=meta.coords,
        allowed_callers=list(meta.allowed_callers),
        forbidden_callers=list(meta.forbidden_callers),
        feature_flags=list(meta.feature_flags),
        requires_permissions=list(meta.requires_permissions),
        kill_patterns=list(meta.kill_patterns),
    )


def extract_neighborhood(
    seed_modules: Sequence[str],
    graph: Mapping[str, Iterable[str]],
    policy: PolicyGraph,
    fold_radius: int = 1,
) -> NeighborhoodData:
    """Modules within *fold_radius* hops of the seeds.

    Args:
        seed_modules: Module ids to start from (duplicates are harmless).
        graph: Adjacency mapping, module id -> neighbor ids.
        policy: Policy declaring every admissible module.
        fold_radius: Number of hops to expand (0 = seeds only).

    Returns:
        NeighborhoodData with modules sorted by id.

    Raises:
        EmptySeedError: No seeds.
        InvalidRadiusError: Negative or non-integer radius.
        UnknownModuleError: A seed is not declared by the policy.
    """
    seeds = list(seed_modules)
    if not seeds:
        raise EmptySeedError("seed_modules cannot be empty")
    if isinstance(fold_radius, bool) or not isinstance(fold_radius, int) or fold_radius < 0:
        raise InvalidRadiusError(f"fold_radius must be a non-negative integer, got {fold_radius!r}")
    for module_id in seeds:
        if module_id not in policy:
            raise UnknownModuleError(module_id)

    included: Set[str] = set(seeds)
    frontier: Set[str] = set(seeds)
    for _ in range(fold_radius):
        next_level: Set[str] = set()
        for module_id in frontier:
            for neighbor in graph.get(module_id, ()):
                if neighbor not in included and neighbor in policy:
                    included.add(neighbor)
                    next_level.add(neighbor)
        if not next_level:
            break
        frontier = next_level

    modules: List[ModuleData] = [_module_data(mid, policy) for mid in sorted(included)]
    return NeighborhoodData(seed_modules=seeds, fold_radius=fold_radius, modules=modules)
