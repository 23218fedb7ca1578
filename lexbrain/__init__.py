"""
lexbrain — persistent knowledge store for AI coding assistants.

One SQLite file holds content-addressed facts, advisory locks, work-session
Frames and the Atlas Frames describing the architecture they touched.
"""

__version__ = "0.1.0"

from lexbrain.types import (
    AtlasEdge,
    AtlasFrame,
    Fact,
    Frame,
    ModuleData,
    NeighborhoodData,
    Plain,
    PutResult,
    RecallResult,
    Scope,
    Sealed,
    StatusSnapshot,
)
from lexbrain.hashing import EncodingError, canonical_json, fact_id, hash_value
from lexbrain.config import LexBrainConfig, ValidationError, load_config
from lexbrain.db import Database, SCHEMA_VERSION
from lexbrain.facts import FactStore, InvalidTtl, PayloadTooLarge
from lexbrain.locks import LockTable
from lexbrain.policy import PolicyError, PolicyGraph, load_policy
from lexbrain.neighborhood import (
    EmptySeedError,
    InvalidRadiusError,
    UnknownModuleError,
    extract_neighborhood,
)
from lexbrain.atlas import AtlasFrameStore, generate_atlas_frame
from lexbrain.frames import FrameIndex
from lexbrain.recall import NotFound, RecallResolver
from lexbrain.service import LexBrain

__all__ = [
    "__version__",
    "AtlasEdge",
    "AtlasFrame",
    "Fact",
    "Frame",
    "ModuleData",
    "NeighborhoodData",
    "Plain",
    "PutResult",
    "RecallResult",
    "Scope",
    "Sealed",
    "StatusSnapshot",
    "canonical_json",
    "fact_id",
    "hash_value",
    "LexBrainConfig",
    "load_config",
    "Database",
    "SCHEMA_VERSION",
    "FactStore",
    "LockTable",
    "PolicyGraph",
    "load_policy",
    "extract_neighborhood",
    "AtlasFrameStore",
    "generate_atlas_frame",
    "FrameIndex",
    "RecallResolver",
    "LexBrain",
    # Errors
    "EncodingError",
    "ValidationError",
    "PayloadTooLarge",
    "InvalidTtl",
    "PolicyError",
    "EmptySeedError",
    "InvalidRadiusError",
    "UnknownModuleError",
    "NotFound",
]
