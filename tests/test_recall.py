"""
Tests for lexbrain.recall — priority resolution and atlas attachment.
"""

import logging

import pytest

from lexbrain.atlas import AtlasFrameStore
from lexbrain.db import Database
from lexbrain.frames import FrameIndex
from lexbrain.recall import NotFound, RecallResolver
from lexbrain.types import AtlasFrame, Frame


@pytest.fixture
def db():
    d = Database(":memory:")
    yield d
    d.close()


@pytest.fixture
def frames(db):
    return FrameIndex(db)


@pytest.fixture
def atlases(db):
    return AtlasFrameStore(db)


@pytest.fixture
def resolver(frames, atlases):
    return RecallResolver(frames, atlases)


def frame(fid, ref, ts, jira=None, atlas=None):
    return Frame(id=fid, timestamp=ts, branch="main", reference_point=ref,
                 jira=jira, atlas_frame_id=atlas)


class TestStrategies:
    def test_by_id(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth timeout", "2025-01-01T00:00:00+00:00"))
        assert resolver.recall(frame_id="f1").frame.id == "f1"

    def test_by_reference(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth timeout", "2025-01-01T00:00:00+00:00"))
        frames.insert_frame(frame("f2", "billing export", "2025-01-02T00:00:00+00:00"))
        assert resolver.recall(reference_point="Auth Timeout!").frame.id == "f1"

    def test_by_jira_returns_latest(self, resolver, frames):
        frames.insert_frame(frame("old", "a", "2025-01-01T00:00:00+00:00", jira="T-9"))
        frames.insert_frame(frame("new", "b", "2025-04-01T00:00:00+00:00", jira="T-9"))
        assert resolver.recall(jira="T-9").frame.id == "new"

    def test_frame_id_takes_priority(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth timeout", "2025-01-01T00:00:00+00:00", jira="T-1"))
        frames.insert_frame(frame("f2", "billing export", "2025-01-02T00:00:00+00:00", jira="T-2"))
        result = resolver.recall(frame_id="f1", reference_point="billing export", jira="T-2")
        assert result.frame.id == "f1"

    def test_reference_takes_priority_over_jira(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth timeout", "2025-01-01T00:00:00+00:00", jira="T-1"))
        frames.insert_frame(frame("f2", "billing export", "2025-01-02T00:00:00+00:00", jira="T-2"))
        assert resolver.recall(reference_point="auth timeout", jira="T-2").frame.id == "f1"

    def test_no_fall_through_on_miss(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth timeout", "2025-01-01T00:00:00+00:00", jira="T-1"))
        with pytest.raises(NotFound):
            resolver.recall(frame_id="missing", jira="T-1")


class TestErrors:
    def test_no_query(self, resolver):
        with pytest.raises(ValueError):
            resolver.recall()

    def test_not_found_carries_query(self, resolver):
        with pytest.raises(NotFound) as exc:
            resolver.recall(jira="T-404")
        assert exc.value.query == {"jira": "T-404"}
        assert isinstance(exc.value, LookupError)


class TestAtlasAttachment:
    def test_atlas_returned(self, resolver, frames, atlases):
        atlas = atlases.insert(AtlasFrame(frame_id="f1", reference_module="ui/admin"))
        frames.insert_frame(frame("f1", "auth", "2025-01-01T00:00:00+00:00",
                                  atlas=atlas.atlas_frame_id))
        result = resolver.recall(frame_id="f1")
        assert result.atlas_frame.atlas_frame_id == atlas.atlas_frame_id

    def test_no_atlas(self, resolver, frames):
        frames.insert_frame(frame("f1", "auth", "2025-01-01T00:00:00+00:00"))
        assert resolver.recall(frame_id="f1").atlas_frame is None

    def test_dangling_atlas_warns(self, resolver, frames, caplog):
        frames.insert_frame(frame("f1", "auth", "2025-01-01T00:00:00+00:00",
                                  atlas="atlas-gone"))
        with caplog.at_level(logging.WARNING, logger="lexbrain.recall"):
            result = resolver.recall(frame_id="f1")
        assert result.atlas_frame is None
        assert "atlas-gone" in caplog.text
