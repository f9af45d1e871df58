from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from backend.evaluation.pipeline import EvaluationPipeline, Launcher, spawn_daemon_thread
from backend.evaluation.scorer_client import PollPolicy, RetryPolicy, ScorerClient
from backend.internal_core.audio_utils import MediaNormalizer
from backend.internal_core.config import PortalConfig
from backend.internal_core.contracts import PortalStatus, Recording, User
from backend.internal_core.errors import (
    ConversionError,
    DuplicateSubmissionError,
    PortalClosedError,
    ValidationError,
)
from backend.internal_core.recording_store import InMemoryRecordingStore
from backend.internal_core.user_registry import InMemoryUserRegistry
from backend.portal.controller import FallbackScorer, PortalController
from backend.portal.lifecycle import RecordingLifecycle

logger = logging.getLogger(__name__)


class AuditionPortal:
    """Operations exposed to the HTTP layer."""

    def __init__(
        self,
        store: InMemoryRecordingStore,
        users: InMemoryUserRegistry,
        normalizer: MediaNormalizer,
        pipeline: Optional[EvaluationPipeline] = None,
        fallback_scorer: Optional[Callable[[], int]] = None,
        rescore_on_restart: bool = True,
    ):
        self._store = store
        self._users = users
        self._normalizer = normalizer
        self._lifecycle = RecordingLifecycle(store)
        self._controller = PortalController(self._lifecycle, fallback_scorer)
        self._pipeline = pipeline
        self._rescore_on_restart = rescore_on_restart

    @property
    def lifecycle(self) -> RecordingLifecycle:
        return self._lifecycle

    @property
    def media_dir(self) -> Path:
        return self._normalizer.media_dir

    def attach_pipeline(self, pipeline: Optional[EvaluationPipeline]) -> None:
        self._pipeline = pipeline

    # -- identities --

    def login(self, email: str) -> User:
        return self._users.login(email)

    def status_for(self, identity: str) -> Optional[Recording]:
        identity = str(identity or "").strip()
        if not identity:
            raise ValidationError("Email is required")
        return self._store.find_by_identity(identity)

    # -- submissions --

    def submit(self, identity: str, raw_audio: bytes, filename: Optional[str] = None) -> Recording:
        identity = str(identity or "").strip()
        if not identity or not raw_audio:
            raise ValidationError("Email and audio file are required")
        if not self._store.get_portal_status().is_open:
            raise PortalClosedError("Audition portal is closed")
        if self._store.find_by_identity(identity) is not None:
            raise DuplicateSubmissionError("User already has a recording submitted")

        original = self._normalizer.store_original(raw_audio, filename)
        canonical: Optional[Path] = None
        conversion_error: Optional[ConversionError] = None
        try:
            canonical = self._normalizer.normalize(original).canonical_path
        except ConversionError as exc:
            logger.warning("submission_conversion_failed identity=%s error=%s", identity, exc)
            conversion_error = exc

        media_files = {str(original)}
        if canonical is not None:
            media_files.add(str(canonical))
        media_reference = canonical if canonical is not None else original
        try:
            recording = self._lifecycle.create_pending(identity, str(media_reference), media_files)
        except ValidationError:
            # Lost an admission race; drop the artifacts written for this attempt.
            for p in media_files:
                Path(p).unlink(missing_ok=True)
            raise

        if conversion_error is not None:
            closed = self._lifecycle.close_conversion_failed(
                recording.id, original, str(conversion_error)
            )
            return closed if closed is not None else self._store.get_recording(recording.id)

        if self._pipeline is not None and canonical is not None:
            self._pipeline.enqueue(recording.id, 0, canonical)
        return recording

    def get(self, recording_id: str) -> Recording:
        return self._store.get_recording(recording_id)

    def list_all(self) -> List[Recording]:
        return self._store.list_recordings()

    def leaderboard(self) -> List[Recording]:
        scored = [r for r in self._store.list_recordings() if r.status == "scored" and r.score is not None]
        return sorted(scored, key=lambda r: (-int(r.score or 0), r.created_at))

    # -- admin --

    def get_portal_status(self) -> PortalStatus:
        return self._controller.status()

    def open_portal(self) -> PortalStatus:
        return self._controller.open()

    def close_portal(self) -> None:
        self._controller.close()

    def restart_portal(self, mode: str) -> None:
        reset = self._controller.restart(mode)
        pipeline = self._pipeline
        if not self._rescore_on_restart or pipeline is None:
            return
        for recording in reset:
            self._rescore(pipeline, recording)

    def _rescore(self, pipeline: EvaluationPipeline, recording: Recording) -> None:
        source = Path(recording.media_reference)
        if not source.exists():
            logger.warning("rescore_skipped reason=missing_media recording_id=%s", recording.id)
            return
        generation = self._lifecycle.generation_of(recording.id)
        try:
            canonical = self._normalizer.normalize(source).canonical_path
        except ConversionError as exc:
            self._lifecycle.close_conversion_failed(recording.id, source, str(exc))
            return
        if str(canonical) != recording.media_reference:
            self._store.register_media_file(recording.id, str(canonical))
        pipeline.enqueue(recording.id, generation, canonical)


def build_portal(
    cfg: PortalConfig,
    *,
    media_dir: Optional[Path] = None,
    session: Optional[Any] = None,
    sleep: Callable[[float], None] = time.sleep,
    launcher: Launcher = spawn_daemon_thread,
) -> AuditionPortal:
    resolved_media_dir = media_dir if media_dir is not None else cfg.media_dir_path()
    store = InMemoryRecordingStore(resolved_media_dir)
    portal = AuditionPortal(
        store=store,
        users=InMemoryUserRegistry(cfg.AUDITION_ADMIN_EMAIL),
        normalizer=MediaNormalizer(resolved_media_dir),
        fallback_scorer=FallbackScorer(cfg.AUDITION_FALLBACK_SEED),
        rescore_on_restart=cfg.AUDITION_RESCORE_ON_RESTART,
    )
    if cfg.scorer_enabled:
        client = ScorerClient(
            cfg.AUDITION_SCORER_URL,
            session=session,
            timeout_sec=cfg.AUDITION_SCORER_TIMEOUT_SEC,
            retry_policy=RetryPolicy(
                max_attempts=cfg.AUDITION_UPLOAD_MAX_ATTEMPTS,
                base_delay_sec=cfg.AUDITION_UPLOAD_BASE_DELAY_SEC,
            ),
            poll_policy=PollPolicy(
                max_attempts=cfg.AUDITION_POLL_MAX_ATTEMPTS,
                interval_sec=cfg.AUDITION_POLL_INTERVAL_SEC,
            ),
            sleep=sleep,
        )
        portal.attach_pipeline(EvaluationPipeline(portal.lifecycle, client, launcher))
    else:
        logger.info("scorer_disabled reason=no_AUDITION_SCORER_URL")
    return portal
