import pytest

from backend.evaluation.score_extractor import best_raw_score, extract_score, normalize_raw_score


def _payload(*scores: object) -> dict:
    return {"status": "completed", "results": [{"final_score": s} for s in scores]}


def test_extract_score_takes_best_fraction_and_scales() -> None:
    assert extract_score(_payload(0.2, 0.95, 0.6)) == 95


def test_extract_score_keeps_percentages_unscaled() -> None:
    assert extract_score(_payload(40, 82)) == 82


def test_extract_score_rounds_halves_up() -> None:
    assert extract_score(_payload(0.125)) == 13
    assert extract_score(_payload(12, 82.5)) == 83


def test_extract_score_without_items_is_none() -> None:
    assert extract_score(_payload()) is None
    assert extract_score({"status": "completed"}) is None
    assert extract_score(None) is None


def test_extract_score_is_idempotent() -> None:
    payload = _payload(0.33, 0.81)
    assert extract_score(payload) == extract_score(payload) == 81


def test_extract_score_skips_unusable_items() -> None:
    payload = {
        "results": [
            {"final_score": "0.9"},
            {"final_score": True},
            {"other": 1},
            "not-an-item",
            {"final_score": 0.42},
        ]
    }
    assert extract_score(payload) == 42


def test_best_raw_score_is_max_of_raw_values() -> None:
    assert best_raw_score([{"final_score": 0.5}, {"final_score": 3}]) == 3.0
    assert best_raw_score([]) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.0, 0),
        (0.125, 13),
        (0.5, 50),
        (0.814, 81),
        (1, 100),
        (1.4, 1),
        (82.5, 83),
        (82.6, 83),
        (150, 100),
        (-0.3, 0),
    ],
)
def test_normalize_raw_score_unit_heuristic(raw: float, expected: int) -> None:
    assert normalize_raw_score(raw) == expected
