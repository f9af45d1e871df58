import json
from pathlib import Path

import pytest
import requests

from backend.evaluation.scorer_client import PollPolicy, RetryPolicy, ScorerClient
from backend.internal_core.errors import EvaluationTimeout, UploadError


class FakeResponse:
    def __init__(self, status_code: int, body: object = None, text: str | None = None):
        self.status_code = status_code
        self._body = body
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


class FakeSession:
    """Replays scripted responses; the last item repeats once the script runs out."""

    def __init__(self, uploads: list, polls: list | None = None):
        self.uploads = list(uploads)
        self.polls = list(polls or [])
        self.post_urls: list[str] = []
        self.get_urls: list[str] = []

    @staticmethod
    def _next(script: list):
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, files=None, timeout=None):
        self.post_urls.append(url)
        assert "file" in files
        return self._next(self.uploads)

    def get(self, url, timeout=None):
        self.get_urls.append(url)
        return self._next(self.polls)


def _audio(tmp_path: Path) -> Path:
    path = tmp_path / "take.wav"
    path.write_bytes(b"RIFF0000WAVE")
    return path


def _client(session: FakeSession, sleeps: list[float], **kwargs) -> ScorerClient:
    return ScorerClient(
        "http://scorer.local/",
        session=session,
        retry_policy=kwargs.pop("retry_policy", RetryPolicy(max_attempts=3, base_delay_sec=1.5)),
        poll_policy=kwargs.pop("poll_policy", PollPolicy(max_attempts=5, interval_sec=2.0)),
        sleep=sleeps.append,
    )


def test_upload_returns_task_id_on_first_success(tmp_path) -> None:
    session = FakeSession(uploads=[FakeResponse(200, {"task_id": "task-1"})])
    sleeps: list[float] = []
    assert _client(session, sleeps).upload(_audio(tmp_path)) == "task-1"
    assert session.post_urls == ["http://scorer.local/evaluate/upload"]
    assert sleeps == []


def test_upload_retries_with_linear_backoff_then_succeeds(tmp_path) -> None:
    session = FakeSession(
        uploads=[
            requests.ConnectionError("connection refused"),
            FakeResponse(503, text="busy"),
            FakeResponse(201, {"task_id": "task-3"}),
        ]
    )
    sleeps: list[float] = []
    assert _client(session, sleeps).upload(_audio(tmp_path)) == "task-3"
    assert sleeps == [1.5, 3.0]


def test_upload_missing_task_id_does_not_extend_budget(tmp_path) -> None:
    session = FakeSession(uploads=[FakeResponse(200, {"message": "accepted"})])
    sleeps: list[float] = []
    with pytest.raises(UploadError) as excinfo:
        _client(session, sleeps).upload(_audio(tmp_path))
    assert excinfo.value.attempts == 3
    assert len(session.post_urls) == 3
    assert "task_id" in str(excinfo.value)


def test_upload_malformed_body_counts_as_failure(tmp_path) -> None:
    session = FakeSession(uploads=[FakeResponse(200, text="<html>oops</html>")])
    with pytest.raises(UploadError):
        _client(session, []).upload(_audio(tmp_path))
    assert len(session.post_urls) == 3


def test_poll_ends_on_completed_after_in_progress_and_not_ready(tmp_path) -> None:
    completed = {"status": "completed", "results": [{"final_score": 0.7}]}
    session = FakeSession(
        uploads=[FakeResponse(200, {"task_id": "t"})],
        polls=[
            FakeResponse(400, {"detail": "Evaluation not completed yet"}),
            FakeResponse(200, {"status": "queued"}),
            FakeResponse(200, {"status": "processing", "results": []}),
            FakeResponse(200, completed),
        ],
    )
    sleeps: list[float] = []
    outcome = _client(session, sleeps).poll("t")
    assert outcome.status == "completed"
    assert outcome.payload == completed
    assert outcome.poll_attempts == 4
    assert outcome.poll_errors == []
    assert sleeps == [2.0, 2.0, 2.0]
    assert session.get_urls[0] == "http://scorer.local/evaluate/results/t"


def test_poll_failed_status_is_terminal() -> None:
    session = FakeSession(uploads=[], polls=[FakeResponse(200, {"status": "failed", "error": "bad audio"})])
    outcome = _client(session, []).poll("t")
    assert outcome.status == "failed"
    assert outcome.payload["error"] == "bad audio"


def test_poll_errors_do_not_abort_polling() -> None:
    session = FakeSession(
        uploads=[],
        polls=[
            FakeResponse(500, text="internal error"),
            requests.Timeout("read timed out"),
            FakeResponse(404, text="no such task"),
            FakeResponse(200, {"status": "completed", "results": []}),
        ],
    )
    outcome = _client(session, []).poll("t")
    assert outcome.status == "completed"
    assert len(outcome.poll_errors) == 3
    assert "status=500" in outcome.poll_errors[0]


def test_poll_timeout_carries_last_error() -> None:
    session = FakeSession(
        uploads=[],
        polls=[FakeResponse(200, {"status": "processing"}), FakeResponse(502, text="bad gateway")],
    )
    sleeps: list[float] = []
    client = _client(session, sleeps, poll_policy=PollPolicy(max_attempts=4, interval_sec=0.5))
    with pytest.raises(EvaluationTimeout) as excinfo:
        client.poll("t")
    assert excinfo.value.attempts == 4
    assert "status=502" in (excinfo.value.last_error or "")
    assert len(session.get_urls) == 4
    assert sleeps == [0.5, 0.5, 0.5]


def test_poll_timeout_without_errors_has_no_last_error() -> None:
    session = FakeSession(uploads=[], polls=[FakeResponse(400, text="evaluation not completed")])
    with pytest.raises(EvaluationTimeout) as excinfo:
        _client(session, [], poll_policy=PollPolicy(max_attempts=2, interval_sec=0.0)).poll("t")
    assert excinfo.value.last_error is None


def test_not_ready_marker_deep_in_long_body_is_not_an_error() -> None:
    long_body = "x" * 500 + " Evaluation not completed"
    session = FakeSession(
        uploads=[],
        polls=[
            FakeResponse(400, text=long_body),
            FakeResponse(200, {"status": "completed", "results": []}),
        ],
    )
    outcome = _client(session, []).poll("t")
    assert outcome.status == "completed"
    assert outcome.poll_errors == []


def test_custom_poll_policy_markers() -> None:
    policy = PollPolicy(terminal_statuses=frozenset({"done"}), not_ready_markers=("warming up",))
    assert policy.is_terminal({"status": "DONE"})
    assert not policy.is_terminal({"status": "completed"})
    assert policy.is_not_ready(409, "model warming up")
    assert not policy.is_not_ready(500, "model warming up")


def test_submit_and_await_notifies_before_polling(tmp_path) -> None:
    events: list[str] = []

    class RecordingSession(FakeSession):
        def get(self, url, timeout=None):
            events.append("poll")
            return super().get(url, timeout=timeout)

    session = RecordingSession(
        uploads=[FakeResponse(200, {"task_id": "abc"})],
        polls=[FakeResponse(200, {"status": "completed", "results": [{"final_score": 0.5}]})],
    )
    outcome = _client(session, []).submit_and_await(
        _audio(tmp_path), on_uploaded=lambda task_id: events.append(f"uploaded:{task_id}")
    )
    assert events == ["uploaded:abc", "poll"]
    assert outcome.task_id == "abc"


def test_client_requires_base_url() -> None:
    with pytest.raises(ValueError):
        ScorerClient("  ")
