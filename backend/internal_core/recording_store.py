from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Collection, Dict, List, Optional

from .contracts import PortalStatus, Recording, RecordingStatus
from .errors import DuplicateSubmissionError, NotFoundError, PortalClosedError

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = {"status", "score", "result", "media_reference"}


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("media_cleanup_failed path=%s error=%s", path, exc)


class InMemoryRecordingStore:
    """Process-wide recording roster plus the portal flag.

    Every read-modify-write runs under one lock; readers get detached
    `Recording` snapshots.
    """

    def __init__(self, media_dir: Path):
        self._media_dir = media_dir
        self._lock = RLock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._portal_open = True

    @property
    def media_dir(self) -> Path:
        return self._media_dir

    def _snapshot(self, record: Dict[str, Any]) -> Recording:
        return Recording(
            id=record["id"],
            identity=record["identity"],
            media_reference=record["media_reference"],
            status=record["status"],
            score=record["score"],
            result=copy.deepcopy(record["result"]),
            created_at=record["created_at"],
        )

    # -- portal flag --

    def get_portal_status(self) -> PortalStatus:
        with self._lock:
            return PortalStatus(is_open=self._portal_open)

    def set_portal_open(self, is_open: bool) -> PortalStatus:
        with self._lock:
            self._portal_open = bool(is_open)
            return PortalStatus(is_open=self._portal_open)

    # -- recordings --

    def create_recording(
        self,
        identity: str,
        media_reference: str,
        media_files: Collection[str] = (),
        *,
        require_open: bool = True,
    ) -> Recording:
        with self._lock:
            if require_open and not self._portal_open:
                raise PortalClosedError("Audition portal is closed")
            for record in self._records.values():
                if record["identity"] == identity:
                    raise DuplicateSubmissionError("User already has a recording submitted")

            recording_id = uuid.uuid4().hex
            record = {
                "id": recording_id,
                "identity": identity,
                "media_reference": media_reference,
                "status": "pending",
                "score": None,
                "result": None,
                "created_at": datetime.now(timezone.utc),
                "generation": 0,
                "media_files": set(media_files),
            }
            self._records[recording_id] = record
            return self._snapshot(record)

    def get_recording(self, recording_id: str) -> Recording:
        with self._lock:
            record = self._records.get(recording_id)
            if record is None:
                raise NotFoundError(f"Unknown recording_id: {recording_id}")
            return self._snapshot(record)

    def generation_of(self, recording_id: str) -> int:
        with self._lock:
            record = self._records.get(recording_id)
            if record is None:
                raise NotFoundError(f"Unknown recording_id: {recording_id}")
            return int(record["generation"])

    def find_by_identity(self, identity: str) -> Optional[Recording]:
        with self._lock:
            for record in self._records.values():
                if record["identity"] == identity:
                    return self._snapshot(record)
        return None

    def list_recordings(self) -> List[Recording]:
        with self._lock:
            records = sorted(
                self._records.values(), key=lambda r: r["created_at"], reverse=True
            )
            return [self._snapshot(r) for r in records]

    def register_media_file(self, recording_id: str, path: str) -> None:
        with self._lock:
            record = self._records.get(recording_id)
            if record is None:
                raise NotFoundError(f"Unknown recording_id: {recording_id}")
            record["media_files"].add(path)

    def media_files(self, recording_id: str) -> List[str]:
        with self._lock:
            record = self._records.get(recording_id)
            if record is None:
                raise NotFoundError(f"Unknown recording_id: {recording_id}")
            return sorted(record["media_files"])

    def apply_update(
        self,
        recording_id: str,
        *,
        allowed_from: Optional[Collection[RecordingStatus]] = None,
        expected_generation: Optional[int] = None,
        **fields: Any,
    ) -> Optional[Recording]:
        """Merge `fields` into one record atomically.

        Returns None without touching the record when it is gone, when its
        generation no longer matches, or when its status is not in
        `allowed_from`.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Immutable or unknown recording fields: {sorted(unknown)}")

        with self._lock:
            record = self._records.get(recording_id)
            if record is None:
                logger.info("update_skipped reason=missing recording_id=%s", recording_id)
                return None
            if expected_generation is not None and record["generation"] != expected_generation:
                logger.info(
                    "update_skipped reason=stale_generation recording_id=%s expected=%s current=%s",
                    recording_id,
                    expected_generation,
                    record["generation"],
                )
                return None
            if allowed_from is not None and record["status"] not in allowed_from:
                logger.info(
                    "update_skipped reason=illegal_transition recording_id=%s from=%s to=%s",
                    recording_id,
                    record["status"],
                    fields.get("status", record["status"]),
                )
                return None
            record.update(copy.deepcopy(fields))
            return self._snapshot(record)

    def reset_all(self) -> List[Recording]:
        with self._lock:
            for record in self._records.values():
                record["status"] = "pending"
                record["score"] = None
                record["result"] = None
                record["generation"] += 1
            return [self._snapshot(r) for r in self._records.values()]

    def destroy_recording(self, recording_id: str) -> None:
        with self._lock:
            record = self._records.pop(recording_id, None)
        if record is None:
            return
        self._cleanup_media(record)

    def destroy_all(self) -> int:
        with self._lock:
            records = list(self._records.values())
            self._records.clear()
        for record in records:
            self._cleanup_media(record)
        return len(records)

    def _cleanup_media(self, record: Dict[str, Any]) -> None:
        paths = set(record.get("media_files") or set())
        if record.get("media_reference"):
            paths.add(record["media_reference"])
        media_root = self._media_dir.resolve()
        for p in paths:
            path = Path(p)
            try:
                if media_root not in path.resolve().parents:
                    continue
            except OSError:
                continue
            _safe_unlink(path)
