"""
Tests for lexbrain.policy — parsing, adjacency derivation, validation.
"""

import json

import pytest

from lexbrain.policy import (
    ModuleMetadata,
    PolicyError,
    PolicyGraph,
    adjacency_from_policy,
    load_policy,
    validate_policy,
)


DOC = {
    "version": "1.0.0",
    "modules": {
        "ui/admin": {"coords": [0, 2], "feature_flags": ["beta_admin"]},
        "services/access": {
            "coords": [1, 1],
            "allowed_callers": ["ui/admin"],
            "requires_permissions": ["can_manage_users"],
        },
        "db/users": {
            "coords": [2, 0],
            "allowed_callers": ["services/access", "ghost/module"],
            "forbidden_callers": ["ui/admin"],
        },
    },
}


class TestFromDict:
    def test_modules_parsed(self):
        p = PolicyGraph.from_dict(DOC)
        assert p.version == "1.0.0"
        assert p.module_ids() == ["db/users", "services/access", "ui/admin"]
        assert p.get("ui/admin").coords == (0, 2)
        assert p.get("ui/admin").allowed_callers == []
        assert p.get("services/access").requires_permissions == ["can_manage_users"]

    def test_contains_exact_ids(self):
        p = PolicyGraph.from_dict(DOC)
        assert "ui/admin" in p
        assert "UI/Admin" not in p
        assert "admin" not in p

    def test_missing_modules_rejected(self):
        with pytest.raises(PolicyError):
            PolicyGraph.from_dict({"version": "1"})

    def test_non_object_entry_rejected(self):
        with pytest.raises(PolicyError):
            PolicyGraph.from_dict({"modules": {"a": ["not", "an", "object"]}})

    def test_bad_coords_rejected(self):
        with pytest.raises(PolicyError):
            PolicyGraph.from_dict({"modules": {"a": {"coords": [1]}}})

    def test_policy_error_is_value_error(self):
        assert issubclass(PolicyError, ValueError)


class TestAdjacency:
    def test_derived_from_allowed_callers(self):
        p = PolicyGraph.from_dict(DOC)
        assert p.adjacency == {
            "ui/admin": {"services/access"},
            "services/access": {"db/users"},
        }

    def test_unknown_callers_dropped(self):
        p = PolicyGraph.from_dict(DOC)
        assert "ghost/module" not in adjacency_from_policy(p)

    def test_explicit_adjacency_wins(self):
        doc = {**DOC, "adjacency": {"db/users": ["ui/admin"]}}
        p = PolicyGraph.from_dict(doc)
        assert p.adjacency == {"db/users": {"ui/admin"}}

    def test_direct_construction(self):
        p = PolicyGraph({"a": ModuleMetadata(), "b": ModuleMetadata()}, {"a": ["b"]})
        assert p.adjacency == {"a": {"b"}}


class TestMissingModules:
    def test_reports_stale_ids_in_order(self):
        p = PolicyGraph.from_dict(DOC)
        assert p.missing_modules(["x", "ui/admin", "y"]) == ["x", "y"]


class TestLoadPolicy:
    def test_load_file(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps(DOC), encoding="utf-8")
        assert len(load_policy(str(path))) == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_policy(str(tmp_path / "absent.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PolicyError):
            load_policy(str(path))


class TestValidatePolicy:
    def test_valid_doc_has_one_problem(self):
        problems = validate_policy(DOC)
        assert problems == ["db/users: allowed_callers references unknown module 'ghost/module'"]

    def test_missing_modules(self):
        assert validate_policy({}) == ["policy: missing 'modules' object"]

    def test_coords_must_be_pair(self):
        problems = validate_policy({"modules": {"a": {"coords": [1, 2, 3]}, "b": {}}})
        assert "a: coords must be a pair of numbers" in problems
        assert "b: coords must be a pair of numbers" in problems

    def test_clean_doc(self):
        assert validate_policy({"modules": {"a": {"coords": [0, 0]}}}) == []
