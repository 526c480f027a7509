import pytest
from pydantic import ValidationError

from conftest import make_task
from geo import haversine_km, is_valid_coordinate
from models import BulkResult, ProofPayload, TaskStatus, can_transition
from selection import Selection


# --- Status ---

def test_status_moves_forward_only():
    assert can_transition(TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
    assert can_transition(TaskStatus.ASSIGNED, TaskStatus.PICKED_UP)
    assert can_transition(TaskStatus.PICKED_UP, TaskStatus.DELIVERED)
    assert can_transition(TaskStatus.PICKED_UP, TaskStatus.PICKED_UP)
    assert not can_transition(TaskStatus.PICKED_UP, TaskStatus.IN_PROGRESS)
    assert not can_transition(TaskStatus.DELIVERED, TaskStatus.PICKED_UP)


def test_tasks_are_immutable():
    task = make_task("a")
    with pytest.raises(ValidationError):
        task.status = TaskStatus.DELIVERED


# --- Proof ---

@pytest.mark.parametrize("raw,expected", [("12,5", 12.5), (" 3.25 ", 3.25), ("", None), (None, None), (7, 7.0)])
def test_proof_weight_parsing(raw, expected):
    assert ProofPayload(weight=raw).weight == expected


@pytest.mark.parametrize("raw", ["heavy", "-1", -2.0])
def test_proof_weight_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        ProofPayload(weight=raw)


def test_bulk_result_summary():
    result = BulkResult(succeeded_ids=["a", "b"], failed_ids=["c"])
    assert result.attempted == 3
    assert not result.all_succeeded
    assert result.summary() == "2 of 3 confirmed"


# --- Geo ---

def test_one_degree_on_equator():
    assert haversine_km(0, 0, 0, 1) == pytest.approx(111.195, abs=0.01)


def test_haversine_is_symmetric_and_zero_on_self():
    a, b = (44.8125, 20.4612), (45.2671, 19.8335)
    assert haversine_km(*a, *b) == pytest.approx(haversine_km(*b, *a))
    assert haversine_km(*a, *a) == 0.0
    assert 65 < haversine_km(*a, *b) < 80  # Belgrade - Novi Sad


def test_coordinate_validation():
    assert is_valid_coordinate(44.8, 20.4)
    assert is_valid_coordinate("44.8", "20.4")
    assert not is_valid_coordinate(None, 20.4)
    assert not is_valid_coordinate(float("nan"), 20.4)
    assert not is_valid_coordinate(44.8, float("inf"))
    assert not is_valid_coordinate(44.8, 181)


# --- Selection ---

def test_selection_toggle_and_toggle_all():
    sel = Selection()
    assert sel.toggle("a") is True
    assert sel.toggle("a") is False

    sel.toggle("x")
    sel.toggle_all(["a", "b"])
    assert sel.ids() == ["x", "a", "b"]
    sel.toggle_all(["a", "b"])
    assert sel.ids() == ["x"]
    assert not sel.all_selected([])


def test_selection_retain_and_clear():
    sel = Selection(["a", "b", "c"])
    sel.retain(["c", "a", "z"])
    assert sel.ids() == ["a", "c"]
    sel.clear()
    assert len(sel) == 0
