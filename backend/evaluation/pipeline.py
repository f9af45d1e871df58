from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from backend.evaluation.score_extractor import extract_score
from backend.evaluation.scorer_client import ScorerClient
from backend.internal_core.contracts import EvaluationOutcome, Recording
from backend.internal_core.errors import EvaluationTimeout, UploadError
from backend.portal.lifecycle import RecordingLifecycle, error_result

logger = logging.getLogger(__name__)

Launcher = Callable[..., None]


class _EvaluationAbandoned(Exception):
    """The recording was reset, scored or deleted before polling started."""


def spawn_daemon_thread(target: Callable[..., Any], *args: Any) -> None:
    worker = threading.Thread(target=target, args=args, daemon=True)
    worker.start()


def run_inline(target: Callable[..., Any], *args: Any) -> None:
    target(*args)


class EvaluationPipeline:
    """Drives one recording from `pending` to a terminal status via the scorer."""

    def __init__(
        self,
        lifecycle: RecordingLifecycle,
        client: ScorerClient,
        launcher: Launcher = spawn_daemon_thread,
    ):
        self._lifecycle = lifecycle
        self._client = client
        self._launcher = launcher

    def enqueue(self, recording_id: str, generation: int, canonical_path: Path) -> None:
        self._launcher(self.run, recording_id, generation, canonical_path)

    def run(self, recording_id: str, generation: int, canonical_path: Path) -> Optional[Recording]:
        def _on_uploaded(task_id: str) -> None:
            if self._lifecycle.mark_under_review(recording_id, generation, task_id) is None:
                raise _EvaluationAbandoned(task_id)

        try:
            outcome = self._client.submit_and_await(Path(canonical_path), on_uploaded=_on_uploaded)
        except _EvaluationAbandoned as exc:
            logger.info("evaluation_abandoned recording_id=%s task_id=%s", recording_id, exc)
            return None
        except UploadError as exc:
            logger.warning("evaluation_upload_failed recording_id=%s error=%s", recording_id, exc)
            return self._lifecycle.mark_closed(
                recording_id,
                generation,
                error_result("upload_failed", str(exc), attempts=exc.attempts),
            )
        except EvaluationTimeout as exc:
            logger.warning("evaluation_timeout recording_id=%s error=%s", recording_id, exc)
            return self._lifecycle.mark_closed(
                recording_id,
                generation,
                error_result(
                    "evaluation_timeout",
                    str(exc),
                    attempts=exc.attempts,
                    last_poll_error=exc.last_error,
                ),
            )
        except Exception as exc:
            logger.exception("evaluation_crashed recording_id=%s", recording_id)
            return self._lifecycle.mark_closed(
                recording_id, generation, error_result("unexpected_error", str(exc))
            )
        return self._finish(recording_id, generation, outcome)

    def _finish(
        self, recording_id: str, generation: int, outcome: EvaluationOutcome
    ) -> Optional[Recording]:
        # Only a completed task may produce a score; "failed" keeps the raw payload.
        if outcome.status != "completed":
            return self._lifecycle.mark_closed(recording_id, generation, outcome.payload)

        score = extract_score(outcome.payload)
        if score is None:
            logger.warning("evaluation_without_score recording_id=%s", recording_id)
            return self._lifecycle.mark_closed(
                recording_id,
                generation,
                error_result("no_score_in_result", "completed task had no usable final_score", raw=outcome.payload),
            )
        return self._lifecycle.mark_scored(recording_id, generation, score, outcome.payload)
