from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import numpy as np

from backend.evaluation.score_extractor import normalize_raw_score
from backend.internal_core.contracts import PortalStatus, Recording, RestartMode
from backend.internal_core.errors import ValidationError
from backend.portal.lifecycle import RecordingLifecycle

logger = logging.getLogger(__name__)

RESTART_MODES: tuple[RestartMode, ...] = ("soft", "hard")


class FallbackScorer:
    """Local score used when a portal closes before the scorer produced one."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            raw = float(self._rng.random())
        return normalize_raw_score(raw)


class PortalController:
    def __init__(
        self,
        lifecycle: RecordingLifecycle,
        fallback_scorer: Optional[Callable[[], int]] = None,
    ):
        self._lifecycle = lifecycle
        self._fallback_scorer = fallback_scorer or FallbackScorer()
        self._admin_lock = threading.Lock()

    def status(self) -> PortalStatus:
        return self._lifecycle.store.get_portal_status()

    def open(self) -> PortalStatus:
        with self._admin_lock:
            status = self._lifecycle.store.set_portal_open(True)
        logger.info("portal_opened")
        return status

    def close(self) -> int:
        """Close admissions and fallback-score every unscored recording."""
        with self._admin_lock:
            self._lifecycle.store.set_portal_open(False)
            scored = 0
            for recording in self._lifecycle.store.list_recordings():
                if recording.score is not None:
                    continue
                if self._lifecycle.apply_fallback_score(recording.id, self._fallback_scorer()):
                    scored += 1
        logger.info("portal_closed fallback_scored=%s", scored)
        return scored

    def restart(self, mode: str) -> List[Recording]:
        normalized = str(mode or "").strip().lower()
        if normalized not in RESTART_MODES:
            raise ValidationError(f"Unsupported restart mode: {mode!r}. Use 'soft' or 'hard'.")

        with self._admin_lock:
            if normalized == "hard":
                self._lifecycle.purge_all()
                reset: List[Recording] = []
            else:
                reset = self._lifecycle.reset_all()
            self._lifecycle.store.set_portal_open(True)
        logger.info("portal_restarted mode=%s recordings=%s", normalized, len(reset))
        return reset
