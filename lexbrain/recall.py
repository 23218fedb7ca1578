"""
RecallResolver — find a Frame and its Atlas Frame.

Exactly one strategy runs per call, chosen by the highest-priority field
supplied:

    1. frame_id         exact id
    2. reference_point  best token-overlap match
    3. jira             most recent Frame for the ticket

A miss on the chosen strategy is a miss; lower-priority fields are not
consulted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from lexbrain.atlas import AtlasFrameStore
from lexbrain.frames import FrameIndex
from lexbrain.types import Frame, RecallResult

logger = logging.getLogger(__name__)


class NotFound(LookupError):
    """Raised when recall finds no Frame for the query."""

    def __init__(self, query: Dict[str, Any]):
        shown = ", ".join(f"{k}={v!r}" for k, v in query.items())
        super().__init__(f"No frame found for {shown}")
        self.query = query


class RecallResolver:
    """Resolves recall queries against a FrameIndex and an AtlasFrameStore."""

    def __init__(self, frames: FrameIndex, atlases: AtlasFrameStore):
        self._frames = frames
        self._atlases = atlases

    def recall(
        self,
        frame_id: Optional[str] = None,
        reference_point: Optional[str] = None,
        jira: Optional[str] = None,
    ) -> RecallResult:
        """Recall one Frame.

        Raises:
            ValueError: No query field supplied.
            NotFound: The chosen strategy matched nothing.
        """
        frame: Optional[Frame]
        if frame_id:
            query: Dict[str, Any] = {"frame_id": frame_id}
            frame = self._frames.get_frame(frame_id)
        elif reference_point:
            query = {"reference_point": reference_point}
            matches = self._frames.search_reference(reference_point, limit=1)
            frame = matches[0][0] if matches else None
        elif jira:
            query = {"jira": jira}
            recent = self._frames.find_by_jira(jira, limit=1)
            frame = recent[0] if recent else None
        else:
            raise ValueError("recall needs one of frame_id, reference_point or jira")

        logger.debug(f"Recall by {next(iter(query))}: {'hit' if frame else 'miss'}")
        if frame is None:
            raise NotFound(query)

        atlas = None
        if frame.atlas_frame_id:
            atlas = self._atlases.get(frame.atlas_frame_id)
            if atlas is None:
                logger.warning(
                    f"Frame {frame.id} references missing atlas frame "
                    f"{frame.atlas_frame_id}"
                )
        return RecallResult(frame=frame, atlas_frame=atlas)
