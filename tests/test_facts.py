"""
Tests for lexbrain.facts — idempotent put, filtered get, TTL expiry.
"""

import pytest

from lexbrain.config import FactConfig
from lexbrain.db import Database
from lexbrain.facts import FactStore, InvalidTtl, PayloadTooLarge
from lexbrain.hashing import EncodingError
from lexbrain.types import Sealed


class FakeClock:
    def __init__(self, t=1_000_000.0):
        self.t = t

    def __call__(self):
        return self.t


@pytest.fixture
def db():
    d = Database(":memory:")
    yield d
    d.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def facts(db, clock):
    return FactStore(db, clock=clock)


SCOPE = {"repo": "acme/api", "commit": "abc123"}


# ---------------------------------------------------------------------------
# put
# ---------------------------------------------------------------------------


class TestPut:
    def test_first_put_inserts(self, facts):
        r = facts.put("note", SCOPE, "h1", {"text": "hello"})
        assert r.inserted is True
        assert len(r.fact_id) == 64

    def test_second_identical_put_is_noop(self, facts):
        r1 = facts.put("note", SCOPE, "h1", {"text": "hello"})
        r2 = facts.put("note", SCOPE, "h1", {"text": "hello"})
        assert r2.inserted is False
        assert r2.fact_id == r1.fact_id
        assert facts.count() == 1

    def test_key_order_does_not_change_identity(self, facts):
        r1 = facts.put("note", SCOPE, "h1", {"a": 1, "b": 2})
        r2 = facts.put("note", {"commit": "abc123", "repo": "acme/api"}, "h1", {"b": 2, "a": 1})
        assert r1.fact_id == r2.fact_id
        assert r2.inserted is False

    def test_different_payload_is_new_fact(self, facts):
        facts.put("note", SCOPE, "h1", {"text": "a"})
        r = facts.put("note", SCOPE, "h1", {"text": "b"})
        assert r.inserted is True
        assert facts.count() == 2

    def test_existing_row_not_modified(self, facts, db):
        facts.put("note", SCOPE, "h1", 1, confidence=0.9)
        facts.put("note", SCOPE, "h1", 1, confidence=0.1)
        [fact] = facts.get("acme/api", "abc123", "note")
        assert fact.confidence == 0.9

    def test_invalid_kind(self, facts):
        with pytest.raises(ValueError, match="Invalid fact kind"):
            facts.put("gossip", SCOPE, "h1", 1)

    def test_missing_repo(self, facts):
        with pytest.raises(ValueError):
            facts.put("note", {"commit": "c"}, "h1", 1)

    def test_unencodable_payload(self, facts):
        with pytest.raises(EncodingError):
            facts.put("note", SCOPE, "h1", {"s": {1, 2}})

    def test_payload_too_large(self, db):
        store = FactStore(db, FactConfig(max_payload_kb=1))
        with pytest.raises(PayloadTooLarge) as exc:
            store.put("artifact", SCOPE, "h1", "x" * 2000)
        assert exc.value.limit == 1024
        assert store.count() == 0

    def test_payload_at_limit_accepted(self, db):
        store = FactStore(db, FactConfig(max_payload_kb=1))
        # JSON string quotes add two bytes
        assert store.put("artifact", SCOPE, "h1", "x" * 1022).inserted

    def test_put_logs_event(self, facts, db):
        facts.put("note", SCOPE, "h1", 1)
        facts.put("note", SCOPE, "h1", 1)
        events = db.read_events(action="put")
        assert [e["details"]["inserted"] for e in events] == [False, True]

    def test_sealed_payload_stored_opaque(self, facts):
        facts.put("note", SCOPE, "h1", Sealed(ciphertext="Y2lwaGVy", iv="aXY="))
        [fact] = facts.get("acme/api", "abc123", "note")
        assert fact.payload == {"ciphertext": "Y2lwaGVy", "iv": "aXY="}


class TestTtlValidation:
    @pytest.mark.parametrize("ttl", [59, 0, -1, 7 * 86400 + 1])
    def test_out_of_range(self, facts, ttl):
        with pytest.raises(InvalidTtl):
            facts.put("note", SCOPE, "h1", 1, ttl_seconds=ttl)

    @pytest.mark.parametrize("ttl", [60, 3600, 7 * 86400])
    def test_in_range(self, facts, ttl):
        assert facts.put("note", SCOPE, f"h{ttl}", 1, ttl_seconds=ttl).inserted

    def test_bool_rejected(self, facts):
        with pytest.raises(InvalidTtl):
            facts.put("note", SCOPE, "h1", 1, ttl_seconds=True)

    def test_float_rejected(self, facts):
        with pytest.raises(InvalidTtl):
            facts.put("note", SCOPE, "h1", 1, ttl_seconds=90.5)


# ---------------------------------------------------------------------------
# get
# ---------------------------------------------------------------------------


class TestGet:
    def test_no_match_is_empty(self, facts):
        assert facts.get("nope", "nope", "note") == []

    def test_filters_are_conjunctive(self, facts):
        facts.put("note", {**SCOPE, "path": "a.py"}, "h1", 1)
        facts.put("note", {**SCOPE, "path": "b.py"}, "h1", 2)
        facts.put("plan", {**SCOPE, "path": "a.py"}, "h1", 3)
        assert len(facts.get("acme/api", "abc123", "note")) == 2
        [f] = facts.get("acme/api", "abc123", "note", path="a.py")
        assert f.payload == 1
        assert f.scope.path == "a.py"

    def test_symbol_and_inputs_hash(self, facts):
        facts.put("dep_score", {**SCOPE, "symbol": "f"}, "h1", 1)
        facts.put("dep_score", {**SCOPE, "symbol": "f"}, "h2", 2)
        [f] = facts.get("acme/api", "abc123", "dep_score", symbol="f", inputs_hash="h2")
        assert f.payload == 2

    def test_ordered_by_creation(self, facts, clock):
        facts.put("note", SCOPE, "h1", "first")
        clock.t += 5
        facts.put("note", SCOPE, "h1", "second")
        assert [f.payload for f in facts.get("acme/api", "abc123", "note")] == ["first", "second"]

    def test_roundtrip_fields(self, facts):
        facts.put("gate_result", SCOPE, "h1", {"ok": True}, ttl_seconds=120,
                  confidence=0.5, actor={"agent": "ci"}, refs=["f1"])
        [f] = facts.get("acme/api", "abc123", "gate_result")
        assert f.ttl_seconds == 120
        assert f.actor == {"agent": "ci"}
        assert f.refs == ["f1"]
        assert f.scope.path is None

    def test_is_hit(self, facts):
        assert not facts.is_hit("acme/api", "abc123", "repo_scan", "h1")
        facts.put("repo_scan", SCOPE, "h1", [])
        assert facts.is_hit("acme/api", "abc123", "repo_scan", "h1")


# ---------------------------------------------------------------------------
# expire
# ---------------------------------------------------------------------------


class TestExpire:
    def test_ttl_boundary(self, facts, clock):
        t = clock.t
        facts.put("note", SCOPE, "h1", 1, ttl_seconds=60)
        assert facts.expire(now=t + 59) == 0
        assert facts.expire(now=t + 60) == 0
        assert len(facts.get("acme/api", "abc123", "note")) == 1
        assert facts.expire(now=t + 61) == 1
        assert facts.get("acme/api", "abc123", "note") == []

    def test_no_ttl_is_immortal(self, facts, clock):
        facts.put("note", SCOPE, "h1", 1)
        assert facts.expire(now=clock.t + 10 ** 9) == 0
        assert facts.count() == 1

    def test_idempotent(self, facts, clock):
        facts.put("note", SCOPE, "h1", 1, ttl_seconds=60)
        assert facts.expire(now=clock.t + 100) == 1
        assert facts.expire(now=clock.t + 100) == 0

    def test_defaults_to_clock(self, facts, clock):
        facts.put("note", SCOPE, "h1", 1, ttl_seconds=60)
        clock.t += 61
        assert facts.expire() == 1

    def test_expired_fact_can_be_rewritten(self, facts, clock):
        facts.put("note", SCOPE, "h1", 1, ttl_seconds=60)
        facts.expire(now=clock.t + 61)
        assert facts.put("note", SCOPE, "h1", 1, ttl_seconds=60).inserted
