from __future__ import annotations

"""
Recording status state machine.

Design intent:
- Be the only writer of recording status/score/result.
- Guard every background write with the expected source state and generation
  so late or stale evaluation results cannot overwrite admin actions.
"""

import logging
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional

from backend.internal_core.contracts import Recording, RecordingStatus
from backend.internal_core.recording_store import InMemoryRecordingStore

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from (background pipeline only)
PIPELINE_TRANSITIONS: Dict[RecordingStatus, frozenset[str]] = {
    "under_review": frozenset({"pending"}),
    "scored": frozenset({"under_review"}),
    "closed": frozenset({"pending", "under_review"}),
}

FALLBACK_SCORABLE: frozenset[str] = frozenset({"pending", "under_review", "closed"})


def error_result(kind: str, message: str, **extra: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {"error": f"{kind}: {message}"}
    result.update(extra)
    return result


class RecordingLifecycle:
    def __init__(self, store: InMemoryRecordingStore):
        self._store = store

    @property
    def store(self) -> InMemoryRecordingStore:
        return self._store

    def create_pending(
        self,
        identity: str,
        media_reference: str,
        media_files: Collection[str] = (),
    ) -> Recording:
        recording = self._store.create_recording(identity, media_reference, media_files)
        logger.info(
            "recording_created recording_id=%s identity=%s", recording.id, recording.identity
        )
        return recording

    def generation_of(self, recording_id: str) -> int:
        return self._store.generation_of(recording_id)

    def _transition(
        self,
        recording_id: str,
        to_status: RecordingStatus,
        generation: Optional[int],
        **fields: Any,
    ) -> Optional[Recording]:
        updated = self._store.apply_update(
            recording_id,
            allowed_from=PIPELINE_TRANSITIONS[to_status],
            expected_generation=generation,
            status=to_status,
            **fields,
        )
        if updated is not None:
            logger.info("recording_transition recording_id=%s to=%s", recording_id, to_status)
        return updated

    def close_conversion_failed(
        self, recording_id: str, original_reference: Path, message: str
    ) -> Optional[Recording]:
        return self._transition(
            recording_id,
            "closed",
            None,
            media_reference=str(original_reference),
            score=None,
            result=error_result("conversion_failed", message),
        )

    def mark_under_review(
        self, recording_id: str, generation: int, task_id: str
    ) -> Optional[Recording]:
        return self._transition(
            recording_id, "under_review", generation, result={"task_id": task_id}
        )

    def mark_scored(
        self, recording_id: str, generation: int, score: int, payload: Dict[str, Any]
    ) -> Optional[Recording]:
        if not 0 <= int(score) <= 100:
            raise ValueError(f"score out of range: {score}")
        return self._transition(
            recording_id, "scored", generation, score=int(score), result=payload
        )

    def mark_closed(
        self, recording_id: str, generation: int, result: Dict[str, Any]
    ) -> Optional[Recording]:
        return self._transition(recording_id, "closed", generation, score=None, result=result)

    def apply_fallback_score(self, recording_id: str, score: int) -> Optional[Recording]:
        if not 0 <= int(score) <= 100:
            raise ValueError(f"score out of range: {score}")
        updated = self._store.apply_update(
            recording_id,
            allowed_from=FALLBACK_SCORABLE,
            status="scored",
            score=int(score),
            result={"source": "fallback"},
        )
        if updated is not None:
            logger.info(
                "recording_fallback_scored recording_id=%s score=%s", recording_id, score
            )
        return updated

    def reset_all(self) -> List[Recording]:
        recordings = self._store.reset_all()
        logger.info("recordings_reset count=%s", len(recordings))
        return recordings

    def purge_all(self) -> int:
        removed = self._store.destroy_all()
        logger.info("recordings_purged count=%s", removed)
        return removed
