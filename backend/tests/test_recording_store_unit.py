import threading
import time

import pytest

from backend.internal_core.errors import DuplicateSubmissionError, NotFoundError, PortalClosedError
from backend.internal_core.recording_store import InMemoryRecordingStore


def test_create_recording_starts_pending_and_unscored(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", str(tmp_path / "a.wav"))
    assert rec.status == "pending"
    assert rec.score is None
    assert rec.result is None
    assert store.get_recording(rec.id) == rec
    assert store.generation_of(rec.id) == 0


def test_create_recording_rejects_duplicate_identity(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    store.create_recording("a@example.com", "x")
    with pytest.raises(DuplicateSubmissionError):
        store.create_recording("a@example.com", "y")
    assert len(store.list_recordings()) == 1


def test_create_recording_rejects_when_portal_closed(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    store.set_portal_open(False)
    with pytest.raises(PortalClosedError):
        store.create_recording("a@example.com", "x")
    assert store.list_recordings() == []


def test_concurrent_creates_for_one_identity_admit_exactly_one(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    outcomes: list[str] = []
    barrier = threading.Barrier(8)

    def _worker() -> None:
        barrier.wait()
        try:
            store.create_recording("same@example.com", "x")
            outcomes.append("ok")
        except DuplicateSubmissionError:
            outcomes.append("dup")

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 7


def test_get_unknown_recording_raises_not_found(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    with pytest.raises(NotFoundError):
        store.get_recording("missing")


def test_apply_update_merges_only_named_fields(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    updated = store.apply_update(rec.id, status="under_review", result={"task_id": "t"})
    assert updated is not None
    assert updated.status == "under_review"
    assert updated.media_reference == "ref"
    assert updated.identity == "a@example.com"
    assert updated.created_at == rec.created_at


def test_apply_update_rejects_immutable_fields(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    with pytest.raises(ValueError):
        store.apply_update(rec.id, identity="b@example.com")


def test_apply_update_skips_missing_stale_and_illegal(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    assert store.apply_update("missing", status="closed") is None
    assert store.apply_update(rec.id, expected_generation=5, status="closed") is None
    assert store.apply_update(rec.id, allowed_from={"under_review"}, status="scored", score=10) is None
    assert store.get_recording(rec.id).status == "pending"


def test_snapshots_are_detached_from_store(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    store.apply_update(rec.id, result={"task_id": "t"})
    snap = store.get_recording(rec.id)
    assert snap.result is not None
    snap.result["task_id"] = "mutated"
    assert store.get_recording(rec.id).result == {"task_id": "t"}


def test_list_recordings_newest_first(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    first = store.create_recording("a@example.com", "a")
    time.sleep(0.002)
    second = store.create_recording("b@example.com", "b")
    assert [r.id for r in store.list_recordings()] == [second.id, first.id]


def test_reset_all_bumps_generation_and_clears_scores(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    store.apply_update(rec.id, status="scored", score=70, result={"ok": True})
    reset = store.reset_all()
    assert [(r.status, r.score, r.result) for r in reset] == [("pending", None, None)]
    assert store.generation_of(rec.id) == 1
    assert store.get_recording(rec.id).media_reference == "ref"


def test_destroy_all_deletes_media_inside_media_dir_only(tmp_path) -> None:
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    inside = media_dir / "a_upload.webm"
    inside.write_bytes(b"x")
    canonical = media_dir / "a_canonical.wav"
    canonical.write_bytes(b"y")
    outside = tmp_path / "keep.wav"
    outside.write_bytes(b"z")

    store = InMemoryRecordingStore(media_dir)
    store.create_recording("a@example.com", str(canonical), {str(inside), str(outside)})
    assert store.destroy_all() == 1
    assert store.list_recordings() == []
    assert not inside.exists()
    assert not canonical.exists()
    assert outside.exists()


def test_portal_flag_defaults_open(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    assert store.get_portal_status().is_open is True
    assert store.set_portal_open(False).is_open is False
    assert store.get_portal_status().is_open is False


def test_nested_result_payloads_are_detached(tmp_path) -> None:
    store = InMemoryRecordingStore(tmp_path)
    rec = store.create_recording("a@example.com", "ref")
    payload = {"status": "completed", "results": [{"final_score": 0.9}]}
    store.apply_update(rec.id, result=payload)
    payload["results"].append({"final_score": 0.1})

    snap = store.get_recording(rec.id)
    assert snap.result is not None
    snap.result["results"][0]["final_score"] = 0.0
    snap.result["results"].clear()

    assert store.get_recording(rec.id).result == {
        "status": "completed",
        "results": [{"final_score": 0.9}],
    }
