"""
lexbrain CLI — administrative access to a thought store

Commands:
    lexbrain init    [PATH]                         — scaffold store + .gitignore
    lexbrain put     KIND --repo R --commit C ...   — payload JSON on stdin → fact
    lexbrain get     --repo R --commit C --kind K   — matching facts → stdout
    lexbrain lock    NAME                           — acquire advisory lock
    lexbrain unlock  NAME                           — release advisory lock
    lexbrain gc                                     — delete expired facts
    lexbrain atlas   --policy F --seed M [--radius] — generate an Atlas Frame
    lexbrain atlas-put                              — Atlas Frame JSON on stdin → store
    lexbrain atlas-get [--id A | --frame F]         — stored Atlas Frame → stdout
    lexbrain validate-policy FILE                   — check a policy file
    lexbrain capture [--policy F] [--radius N]      — frame draft JSON on stdin
    lexbrain recall  [--id I | --ref TEXT | --jira T]
    lexbrain stats                                  — store metrics

Environment variables:
    LEXBRAIN_DB              Path to SQLite database (default: .lexbrain/thoughts.db)
    LEXBRAIN_MODE            Payload mode: local|zk (default: local)
    LEXBRAIN_MAX_PAYLOAD_KB  Max encoded payload size (default: 256)
    LEXBRAIN_TTL_DAYS        Max fact TTL in days (default: 7)

Precedence (invariant):
    CLI --flag  >  LEXBRAIN_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (not found, rejected input, lock not acquired)
    2  Internal failure (unexpected exception, I/O error)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from lexbrain.config import apply_env, load_config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Store factory
# ---------------------------------------------------------------------------


def _resolve_config(args: Optional[argparse.Namespace] = None):
    """Config file (--config) overlaid with LEXBRAIN_* env and --db."""
    cfg = load_config(getattr(args, "config", None))
    apply_env(cfg)
    if args and getattr(args, "db", None):
        cfg.store.db_path = args.db
    return cfg


def _open_brain(args: argparse.Namespace):
    """Open a LexBrain. Creates the DB and parent dirs if needed."""
    from lexbrain.service import LexBrain
    return LexBrain(_resolve_config(args))


# ---------------------------------------------------------------------------
# Stderr / stdout helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _fail(msg: str, brain=None) -> None:
    """Report an operational error and exit 1."""
    _warn(msg)
    if brain is not None:
        brain.close()
    sys.exit(1)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _read_stdin_json(what: str) -> Any:
    """Parse JSON from stdin; exit 1 on empty or malformed input."""
    data = sys.stdin.read()
    if not data.strip():
        _fail(f"No {what} on stdin")
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        _fail(f"Invalid {what} JSON on stdin: {exc}")


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize a new thought store directory."""
    from lexbrain.db import Database

    target = Path(args.path).resolve()
    db_path = target / "thoughts.db"

    if db_path.exists():
        # Idempotent: print paths, exit 0 (not error)
        _info(f"Store exists: {target}")
        _info(f"  Database:  {db_path}")
        print(f'export LEXBRAIN_DB="{db_path}"')
        return

    target.mkdir(parents=True, exist_ok=True)
    Database(str(db_path)).close()

    gitignore_path = target / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text("*.db\n*.db-wal\n*.db-shm\n", encoding="utf-8")

    _info(f"Thought store initialized: {target}")
    _info(f"  Database:   {db_path}")
    _info(f"  .gitignore: {gitignore_path}")
    print(f'export LEXBRAIN_DB="{db_path}"')


# ===========================================================================
# Commands: put / get / gc
# ===========================================================================


def cmd_put(args: argparse.Namespace) -> None:
    """Store a fact whose payload is read as JSON from stdin."""
    payload = _read_stdin_json("payload")
    brain = _open_brain(args)
    scope = {"repo": args.repo, "commit": args.commit,
             "path": args.path, "symbol": args.symbol}
    try:
        result = brain.put(args.kind, scope, args.inputs_hash, payload,
                           confidence=args.confidence, ttl_seconds=args.ttl)
    except ValueError as exc:
        _fail(f"Rejected: {exc}", brain)

    if getattr(args, "json", False):
        _print_json(result.to_dict())
    else:
        print(result.fact_id)
        _info("Stored new fact" if result.inserted else "Fact already present")
    brain.close()


def cmd_get(args: argparse.Namespace) -> None:
    """Print facts matching the given scope."""
    brain = _open_brain(args)
    facts = brain.get(args.repo, args.commit, args.kind, path=args.path,
                      symbol=args.symbol, inputs_hash=args.inputs_hash)
    if getattr(args, "json", False):
        _print_json([f.to_dict() for f in facts])
    else:
        for f in facts:
            where = f.scope.path or "-"
            print(f"{f.fact_id[:16]}  {f.kind:12s}  {where}  {f.created_at}")
        _info(f"{len(facts)} fact(s)")
    brain.close()


def cmd_gc(args: argparse.Namespace) -> None:
    """Delete facts whose TTL has elapsed."""
    brain = _open_brain(args)
    removed = brain.expire()
    if getattr(args, "json", False):
        _print_json({"removed": removed})
    else:
        print(f"Expired {removed} fact(s)")
    brain.close()


# ===========================================================================
# Commands: lock / unlock
# ===========================================================================


def cmd_lock(args: argparse.Namespace) -> None:
    """Acquire a named lock; exit 1 when it is already held."""
    brain = _open_brain(args)
    result = brain.lock(args.name)
    brain.close()
    if getattr(args, "json", False):
        _print_json(result)
    if not result["ok"]:
        _fail(f"Lock busy: {args.name}")
    _info(f"Acquired: {args.name}")


def cmd_unlock(args: argparse.Namespace) -> None:
    """Release a named lock; releasing an unheld lock is a no-op."""
    brain = _open_brain(args)
    result = brain.unlock(args.name)
    brain.close()
    if getattr(args, "json", False):
        _print_json(result)
    _info(f"Released: {args.name}" if result["ok"] else f"Not held: {args.name}")


# ===========================================================================
# Commands: atlas / capture / recall
# ===========================================================================


def _print_atlas_summary(atlas) -> None:
    print(f"Atlas:   {atlas.atlas_frame_id}")
    print(f"Seeds:   {', '.join(atlas.seed_modules)}  (radius {atlas.fold_radius})")
    print(f"Modules: {len(atlas.modules)}")
    for m in atlas.modules:
        print(f"  {m.id}")
    print(f"Edges:   {len(atlas.edges)}")
    for e in atlas.edges:
        print(f"  {e.from_module} -> {e.to_module}  [{e.status}]")


def cmd_atlas(args: argparse.Namespace) -> None:
    """Generate (and store) an Atlas Frame for the given seeds."""
    brain = _open_brain(args)
    try:
        atlas = brain.generate_atlas_frame(
            args.seed, args.radius, args.policy,
            frame_id=args.frame_id or "", persist=not args.no_persist,
        )
    except (OSError, ValueError, LookupError) as exc:
        _fail(f"Cannot generate atlas frame: {exc}", brain)

    if getattr(args, "json", False):
        _print_json(atlas.to_dict())
    else:
        _print_atlas_summary(atlas)
    brain.close()


def cmd_atlas_put(args: argparse.Namespace) -> None:
    """Store a caller-built Atlas Frame read as JSON from stdin."""
    doc = _read_stdin_json("atlas frame")
    if not isinstance(doc, dict):
        _fail("Atlas frame must be a JSON object")
    brain = _open_brain(args)
    try:
        result = brain.put_atlas_frame(doc)
    except (ValueError, TypeError, KeyError) as exc:
        _fail(f"Rejected: {exc}", brain)

    if getattr(args, "json", False):
        _print_json(result)
    else:
        print(result["atlas_frame_id"])
        _info("Stored new atlas frame" if result["inserted"] else "Atlas frame already present")
    brain.close()


def cmd_atlas_get(args: argparse.Namespace) -> None:
    """Print an Atlas Frame by its id or by the Frame it belongs to."""
    if not args.id and not args.frame:
        _fail("Give --id or --frame")
    brain = _open_brain(args)
    atlas = brain.get_atlas_frame(atlas_frame_id=args.id, frame_id=args.frame)
    if atlas is None:
        _fail(f"No atlas frame for {args.id or args.frame}", brain)

    if getattr(args, "json", False):
        _print_json(atlas.to_dict())
    else:
        _print_atlas_summary(atlas)
    brain.close()


def cmd_validate_policy(args: argparse.Namespace) -> None:
    """Check a policy file; exit 1 when problems are found."""
    from lexbrain.policy import validate_policy

    try:
        with open(args.file, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except OSError as exc:
        _fail(f"Cannot read policy: {exc}")
    except json.JSONDecodeError as exc:
        _fail(f"{args.file}: invalid JSON: {exc}")

    problems = validate_policy(doc)
    if getattr(args, "json", False):
        _print_json({"file": args.file, "ok": not problems, "problems": problems})
    else:
        for p in problems:
            print(p)
    if problems:
        _fail(f"{len(problems)} problem(s) in {args.file}")
    _info(f"Policy OK: {args.file} ({len(doc.get('modules', {}))} modules)")


def cmd_capture(args: argparse.Namespace) -> None:
    """Store a Frame whose draft is read as JSON from stdin."""
    draft = _read_stdin_json("frame draft")
    if not isinstance(draft, dict):
        _fail("Frame draft must be a JSON object")
    brain = _open_brain(args)
    try:
        frame = brain.capture_frame(draft, policy_source=args.policy,
                                    fold_radius=args.radius)
    except (ValueError, LookupError) as exc:
        _fail(f"Rejected: {exc}", brain)

    if getattr(args, "json", False):
        _print_json(frame.to_dict())
    else:
        print(frame.id)
        if frame.atlas_frame_id:
            _info(f"  Atlas: {frame.atlas_frame_id}")
    brain.close()


def cmd_recall(args: argparse.Namespace) -> None:
    """Recall a Frame by id, reference point, or ticket."""
    brain = _open_brain(args)
    try:
        result = brain.recall(frame_id=args.id, reference_point=args.ref,
                              jira=args.jira)
    except (ValueError, LookupError) as exc:
        _fail(str(exc), brain)

    if getattr(args, "json", False):
        _print_json(result.to_dict())
    else:
        f = result.frame
        print(f"ID:        {f.id}")
        print(f"Timestamp: {f.timestamp}")
        print(f"Branch:    {f.branch}")
        print(f"Jira:      {f.jira or '(none)'}")
        print(f"Reference: {f.reference_point}")
        print(f"Modules:   {', '.join(f.module_scope) if f.module_scope else '(none)'}")
        if f.summary_caption:
            print(f"Summary:   {f.summary_caption}")
        if f.status_snapshot.next_action:
            print(f"Next:      {f.status_snapshot.next_action}")
        if result.atlas_frame is not None:
            print()
            _print_atlas_summary(result.atlas_frame)
    brain.close()


# ===========================================================================
# Command: stats
# ===========================================================================


def cmd_stats(args: argparse.Namespace) -> None:
    """Show thought store statistics."""
    brain = _open_brain(args)
    stats = brain.stats()

    if getattr(args, "json", False):
        stats["status"] = "ok"
        _print_json(stats)
    else:
        print("Thought Store Statistics")
        print("=" * 40)
        print(f"  Database:     {stats['db_path']}")
        print(f"  Mode:         {stats['mode']}")
        print(f"  Facts:        {stats['total_facts']}")
        print(f"  Frames:       {stats['total_frames']}")
        print(f"  Atlas frames: {stats['total_atlas_frames']}")
        print(f"  Locks held:   {stats['total_locks']}")
        for name in stats["locks"]:
            print(f"    {name}")
        print(f"  Audit events: {stats['events_count']}")

    brain.close()


# ===========================================================================
# Entry point
# ===========================================================================


def _add_scope_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--repo", required=True, help="Repository identifier")
    p.add_argument("--commit", required=True, help="Commit identifier")
    p.add_argument("--path", default=None, help="File path within the repository")
    p.add_argument("--symbol", default=None, help="Symbol within the file")


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: lexbrain <command> [args]."""
    global _quiet

    # Shared parent with flags that work on all subcommands.
    # SUPPRESS defaults prevent subparser defaults from overriding
    # values parsed at the main-parser level (argparse parents quirk).
    _db_default = os.environ.get("LEXBRAIN_DB", ".lexbrain/thoughts.db")
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--db", default=argparse.SUPPRESS,
        help=f"Path to SQLite database (default: {_db_default})",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="Path to a JSON config file",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="lexbrain",
        description="lexbrain — content-addressed facts, locks and work-session frames",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- init --------------------------------------------------------------
    p_init = sub.add_parser("init", parents=[_common], help="Initialize a thought store")
    p_init.add_argument(
        "path", nargs="?", default=".lexbrain",
        help="Store directory (default: .lexbrain)",
    )
    p_init.set_defaults(func=cmd_init)

    # -- put ---------------------------------------------------------------
    p_put = sub.add_parser("put", parents=[_common], help="Store a fact (payload JSON on stdin)")
    p_put.add_argument("kind", help="Fact kind (e.g. note, repo_scan, dep_graph)")
    _add_scope_arguments(p_put)
    p_put.add_argument("--inputs-hash", required=True, help="Digest of the fact's inputs")
    p_put.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")
    p_put.add_argument("--confidence", type=float, default=None, help="Confidence score")
    p_put.set_defaults(func=cmd_put)

    # -- get ---------------------------------------------------------------
    p_get = sub.add_parser("get", parents=[_common], help="List facts for a scope")
    _add_scope_arguments(p_get)
    p_get.add_argument("--kind", required=True, help="Fact kind")
    p_get.add_argument("--inputs-hash", default=None, help="Restrict to one inputs hash")
    p_get.set_defaults(func=cmd_get)

    # -- lock / unlock -----------------------------------------------------
    p_lock = sub.add_parser("lock", parents=[_common], help="Acquire an advisory lock")
    p_lock.add_argument("name", help="Lock name")
    p_lock.set_defaults(func=cmd_lock)

    p_unlock = sub.add_parser("unlock", parents=[_common], help="Release an advisory lock")
    p_unlock.add_argument("name", help="Lock name")
    p_unlock.set_defaults(func=cmd_unlock)

    # -- gc ----------------------------------------------------------------
    p_gc = sub.add_parser("gc", parents=[_common], help="Delete expired facts")
    p_gc.set_defaults(func=cmd_gc)

    # -- atlas -------------------------------------------------------------
    p_atlas = sub.add_parser("atlas", parents=[_common], help="Generate an Atlas Frame")
    p_atlas.add_argument("--policy", required=True, help="Policy JSON file")
    p_atlas.add_argument(
        "--seed", action="append", required=True,
        help="Seed module id (repeatable)",
    )
    p_atlas.add_argument("--radius", type=int, default=None, help="Fold radius (default: 1)")
    p_atlas.add_argument("--frame-id", default=None, help="Frame to associate with")
    p_atlas.add_argument("--no-persist", action="store_true", help="Do not store the result")
    p_atlas.set_defaults(func=cmd_atlas)

    p_aput = sub.add_parser("atlas-put", parents=[_common],
                            help="Store an Atlas Frame (JSON on stdin)")
    p_aput.set_defaults(func=cmd_atlas_put)

    p_aget = sub.add_parser("atlas-get", parents=[_common], help="Show a stored Atlas Frame")
    p_aget.add_argument("--id", default=None, help="Atlas frame id")
    p_aget.add_argument("--frame", default=None, help="Frame id (latest atlas frame)")
    p_aget.set_defaults(func=cmd_atlas_get)

    # -- validate-policy ---------------------------------------------------
    p_vp = sub.add_parser("validate-policy", parents=[_common], help="Check a policy JSON file")
    p_vp.add_argument("file", help="Policy JSON file")
    p_vp.set_defaults(func=cmd_validate_policy)

    # -- capture -----------------------------------------------------------
    p_cap = sub.add_parser("capture", parents=[_common], help="Store a Frame (draft JSON on stdin)")
    p_cap.add_argument("--policy", default=None, help="Policy JSON file for the Atlas Frame")
    p_cap.add_argument("--radius", type=int, default=None, help="Fold radius (default: 1)")
    p_cap.set_defaults(func=cmd_capture)

    # -- recall ------------------------------------------------------------
    p_recall = sub.add_parser("recall", parents=[_common], help="Recall a Frame")
    p_recall.add_argument("--id", default=None, help="Exact frame id")
    p_recall.add_argument("--ref", default=None, help="Reference-point phrase")
    p_recall.add_argument("--jira", default=None, help="Ticket id")
    p_recall.set_defaults(func=cmd_recall)

    # -- stats -------------------------------------------------------------
    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args(argv)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. lexbrain get ... | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
