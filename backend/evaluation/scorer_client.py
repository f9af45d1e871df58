from __future__ import annotations

"""
HTTP client for the remote audition scorer.

Design intent:
- Upload canonical audio once per recording, retrying with a linear backoff.
- Poll the returned task until a terminal status or the attempt budget runs out.
- Keep "is this terminal" and "is this merely not ready" as swappable policy.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from backend.internal_core.contracts import EvaluationOutcome
from backend.internal_core.errors import EvaluationTimeout, PollError, UploadError

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/evaluate/upload"
RESULTS_PATH = "/evaluate/results/{task_id}"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_sec: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_sec * attempt


@dataclass(frozen=True)
class PollPolicy:
    max_attempts: int = 120
    interval_sec: float = 2.0
    terminal_statuses: frozenset[str] = field(
        default_factory=lambda: frozenset({"completed", "failed"})
    )
    not_ready_markers: tuple[str, ...] = ("evaluation not completed",)

    def is_terminal(self, body: dict[str, Any]) -> bool:
        return str(body.get("status", "")).strip().lower() in self.terminal_statuses

    def is_not_ready(self, status_code: int, text: str) -> bool:
        if not 400 <= status_code < 500:
            return False
        lowered = (text or "").lower()
        return any(marker in lowered for marker in self.not_ready_markers)


def _response_text(response: Any) -> str:
    try:
        return str(response.text or "")
    except Exception:
        return ""


def _short_body(response: Any, limit: int = 200) -> str:
    return _response_text(response).replace("\n", " ").strip()[:limit]


class ScorerClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[Any] = None,
        timeout_sec: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        poll_policy: Optional[PollPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not str(base_url or "").strip():
            raise ValueError("Scorer base_url is required")
        self.base_url = str(base_url).rstrip("/")
        self._session = session if session is not None else requests.Session()
        self._timeout_sec = timeout_sec
        self.retry_policy = retry_policy or RetryPolicy()
        self.poll_policy = poll_policy or PollPolicy()
        self._sleep = sleep

    # -- upload phase --

    def _upload_once(self, audio_path: Path) -> str:
        with open(audio_path, "rb") as fh:
            response = self._session.post(
                f"{self.base_url}{UPLOAD_PATH}",
                files={"file": (audio_path.name, fh, "audio/wav")},
                timeout=self._timeout_sec,
            )
        if not 200 <= response.status_code < 300:
            raise UploadError(
                f"upload rejected status={response.status_code} body={_short_body(response)}",
                attempts=1,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise UploadError(f"upload response is not JSON: {exc}", attempts=1) from exc
        task_id = body.get("task_id") if isinstance(body, dict) else None
        if not isinstance(task_id, str) or not task_id.strip():
            raise UploadError("upload response missing task_id", attempts=1)
        return task_id.strip()

    def upload(self, audio_path: Path) -> str:
        policy = self.retry_policy
        last_error = "no attempt made"
        for attempt in range(1, policy.max_attempts + 1):
            try:
                task_id = self._upload_once(audio_path)
                logger.info("scorer_upload_ok attempt=%s task_id=%s", attempt, task_id)
                return task_id
            except (requests.RequestException, UploadError) as exc:
                last_error = str(exc)
                logger.warning(
                    "scorer_upload_failed attempt=%s/%s error=%s",
                    attempt,
                    policy.max_attempts,
                    last_error,
                )
            if attempt < policy.max_attempts:
                self._sleep(policy.delay_for(attempt))
        raise UploadError(
            f"upload failed after {policy.max_attempts} attempts: {last_error}",
            attempts=policy.max_attempts,
        )

    # -- poll phase --

    def _poll_once(self, task_id: str) -> Optional[dict[str, Any]]:
        """One status request. Returns the body when terminal, None while pending."""
        response = self._session.get(
            f"{self.base_url}{RESULTS_PATH.format(task_id=task_id)}",
            timeout=self._timeout_sec,
        )
        if not 200 <= response.status_code < 300:
            if self.poll_policy.is_not_ready(response.status_code, _response_text(response)):
                return None
            raise PollError(
                f"poll rejected status={response.status_code} body={_short_body(response)}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise PollError(f"poll response is not JSON: {exc}", response.status_code) from exc
        if not isinstance(body, dict):
            raise PollError("poll response is not an object", response.status_code)
        if self.poll_policy.is_terminal(body):
            return body
        return None

    def poll(self, task_id: str) -> EvaluationOutcome:
        policy = self.poll_policy
        errors: list[str] = []
        for attempt in range(1, policy.max_attempts + 1):
            try:
                body = self._poll_once(task_id)
            except (requests.RequestException, PollError) as exc:
                errors.append(str(exc))
                logger.warning(
                    "scorer_poll_error task_id=%s attempt=%s error=%s", task_id, attempt, exc
                )
                body = None
            if body is not None:
                status = str(body.get("status", "")).strip().lower()
                logger.info(
                    "scorer_poll_terminal task_id=%s status=%s attempt=%s",
                    task_id,
                    status,
                    attempt,
                )
                return EvaluationOutcome(
                    task_id=task_id,
                    status=status,
                    payload=body,
                    poll_attempts=attempt,
                    poll_errors=errors,
                )
            if attempt < policy.max_attempts:
                self._sleep(policy.interval_sec)

        last_error = errors[-1] if errors else None
        raise EvaluationTimeout(
            f"no terminal status for task {task_id} after {policy.max_attempts} polls",
            attempts=policy.max_attempts,
            last_error=last_error,
        )

    def submit_and_await(
        self,
        audio_path: Path,
        on_uploaded: Optional[Callable[[str], None]] = None,
    ) -> EvaluationOutcome:
        task_id = self.upload(audio_path)
        if on_uploaded is not None:
            on_uploaded(task_id)
        return self.poll(task_id)
