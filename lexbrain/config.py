"""
lexbrain Configuration

Configuration dataclasses for lexbrain: store, fact limits, recall matching,
and atlas defaults. Includes load_config() for reading a JSON config file
with silent fallback to compiled defaults, and apply_env() for LEXBRAIN_*
environment overrides.

Precedence (invariant):
    CLI --flag  >  LEXBRAIN_* env var  >  config file  >  compiled default
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (not isinstance(value, typ) or isinstance(value, bool)):
        types = typ if isinstance(typ, tuple) else (typ,)
        expected = " or ".join(t.__name__ for t in types)
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """SQLite store configuration."""
    db_path: str = ".lexbrain/thoughts.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.db_path:
            errors.append("store.db_path: must not be empty")
        _check_range(errors, "store.busy_timeout_ms",
                     self.busy_timeout_ms, 0, 600_000, int)
        return errors


@dataclass
class FactConfig:
    """Fact write limits and payload confidentiality mode."""
    mode: Literal["local", "zk"] = "local"
    max_payload_kb: int = 256
    max_ttl_days: int = 7
    min_ttl_seconds: int = 60

    @property
    def max_payload_bytes(self) -> int:
        return self.max_payload_kb * 1024

    @property
    def max_ttl_seconds(self) -> int:
        return self.max_ttl_days * 24 * 3600

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.mode not in ("local", "zk"):
            errors.append(f"facts.mode: {self.mode!r} not in ['local', 'zk']")
        _check_range(errors, "facts.max_payload_kb",
                     self.max_payload_kb, 1, 1_048_576, int)
        _check_range(errors, "facts.max_ttl_days",
                     self.max_ttl_days, 1, 3650, int)
        _check_range(errors, "facts.min_ttl_seconds",
                     self.min_ttl_seconds, 1, 86_400, int)
        if not errors and self.min_ttl_seconds > self.max_ttl_seconds:
            errors.append("facts.min_ttl_seconds: exceeds max_ttl_days")
        return errors


@dataclass
class RecallConfig:
    """Reference-point matching configuration."""
    match_threshold: float = 0.5

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "recall.match_threshold",
                     self.match_threshold, 0.01, 1.0, (int, float))
        return errors


@dataclass
class AtlasConfig:
    """Atlas Frame generation defaults."""
    default_fold_radius: int = 1

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "atlas.default_fold_radius",
                     self.default_fold_radius, 0, 100, int)
        return errors


@dataclass
class LexBrainConfig:
    """Top-level lexbrain configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    facts: FactConfig = field(default_factory=FactConfig)
    recall: RecallConfig = field(default_factory=RecallConfig)
    atlas: AtlasConfig = field(default_factory=AtlasConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> LexBrainConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "facts" in d:
            kwargs["facts"] = FactConfig(**d["facts"])
        if "recall" in d:
            kwargs["recall"] = RecallConfig(**d["recall"])
        if "atlas" in d:
            kwargs["atlas"] = AtlasConfig(**d["atlas"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.facts.validate())
        errors.extend(self.recall.validate())
        errors.extend(self.atlas.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> LexBrainConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        LexBrainConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = LexBrainConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = LexBrainConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = LexBrainConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg


# ---------------------------------------------------------------------------
# Environment overrides (never crash on bad export)
# ---------------------------------------------------------------------------


def _env_int(
    environ: Mapping[str, str], name: str, default: int, minimum: int = 1,
) -> int:
    """Parse integer env var with fallback. Never raises on bad input.

    Values below *minimum* fall back to *default*.
    """
    v = environ.get(name)
    if not v:
        return default
    try:
        n = int(v)
    except ValueError:
        return default
    return n if n >= minimum else default


def apply_env(
    cfg: LexBrainConfig, environ: Optional[Mapping[str, str]] = None,
) -> LexBrainConfig:
    """Overlay LEXBRAIN_* environment variables onto *cfg* (in place).

    LEXBRAIN_DB, LEXBRAIN_MODE, LEXBRAIN_MAX_PAYLOAD_KB, LEXBRAIN_TTL_DAYS.
    """
    env = os.environ if environ is None else environ
    cfg.store.db_path = env.get("LEXBRAIN_DB") or cfg.store.db_path
    mode = env.get("LEXBRAIN_MODE")
    if mode in ("local", "zk"):
        cfg.facts.mode = mode
    cfg.facts.max_payload_kb = _env_int(
        env, "LEXBRAIN_MAX_PAYLOAD_KB", cfg.facts.max_payload_kb,
    )
    cfg.facts.max_ttl_days = _env_int(
        env, "LEXBRAIN_TTL_DAYS", cfg.facts.max_ttl_days,
    )
    return cfg
