import threading

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from crime_dashboard.exceptions import RecordNotFoundError, StorageError, UndoUnavailableError
from crime_dashboard.read_service.processors import target_processor
from crime_dashboard.read_service.processors.aggregator import UnitTotals, compute_deltas
from crime_dashboard.read_service.processors.target_processor import targets_by_unit
from crime_dashboard.reference import CATEGORIES, TARGET_UNITS
from crime_dashboard.write_service.consumers.target_editor import TargetEditor, UndoBuffer


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def editor(engine, tables):
    ed = TargetEditor(engine, tables, UndoBuffer(ttl_seconds=3600))
    ed.ensure_targets_exist(2025, 1)
    return ed


def _values(editor, unit):
    return {r["crime_type"]: r["target_value"] for r in editor.list_targets(2025, 1) if r["unit"] == unit}


def _id_of(editor, unit, crime_type):
    return next(r["id"] for r in editor.list_targets(2025, 1)
                if r["unit"] == unit and r["crime_type"] == crime_type)


def test_seed_creates_every_unit_category_once(editor):
    rows = editor.list_targets(2025, 1)
    assert len(rows) == len(TARGET_UNITS) * len(CATEGORIES)
    assert all(r["target_value"] == 0 for r in rows)
    assert editor.ensure_targets_exist(2025, 1) == 0


def test_seed_keeps_existing_values(editor):
    editor.update_target(_id_of(editor, "AISP 10", "roubo de rua"), 40)
    editor.ensure_targets_exist(2025, 1)
    assert _values(editor, "AISP 10")["roubo de rua"] == 40


def test_targets_ordered_by_category_then_unit(editor):
    rows = editor.list_targets(2025, 1)
    first = rows[:len(TARGET_UNITS)]
    assert {r["crime_type"] for r in first} == {"letalidade violenta"}
    assert [r["unit"] for r in first] == TARGET_UNITS


def test_update_target(editor):
    target_id = _id_of(editor, "AISP 37", "roubo de carga")
    row = editor.update_target(target_id, 12)
    assert row["target_value"] == 12
    assert _values(editor, "AISP 37")["roubo de carga"] == 12


@pytest.mark.parametrize("value", [-1, 1.5, "10", True])
def test_update_rejects_invalid_values(editor, value):
    with pytest.raises(ValueError):
        editor.update_target(_id_of(editor, "AISP 37", "roubo de carga"), value)


def test_update_unknown_id(editor):
    with pytest.raises(RecordNotFoundError):
        editor.update_target(99999, 1)


def test_upsert_inserts_then_updates(editor):
    row = {"unit": "AISP 10", "risp": "RISP 5", "year": 2025, "semester": 2,
           "crime_type": "roubo de rua", "target_value": 7}
    editor.upsert_targets([row])
    editor.upsert_targets([dict(row, target_value=9)])

    rows = editor.list_targets(2025, 2)
    assert [(r["unit"], r["target_value"]) for r in rows] == [("AISP 10", 9)]


def test_delta_against_target(editor):
    editor.update_target(_id_of(editor, "AISP 10", "roubo de rua"), 100)
    targets = targets_by_unit(editor.list_targets(2025, 1))

    totals = UnitTotals("AISP 10")
    totals.counts["roubo_de_rua"] = 130
    delta = next(d for d in compute_deltas(totals, targets["AISP 10"]) if d.category.key == "roubo_de_rua")

    assert (delta.actual, delta.target, delta.delta) == (130, 100, 30)
    assert delta.over_target


def test_bulk_zero_then_undo_restores_aisp_28(editor):
    for i, category in enumerate(CATEGORIES, 1):
        editor.update_target(_id_of(editor, "AISP 28", category.target_name), i * 10)
    editor.update_target(_id_of(editor, "AISP 33", "roubo de rua"), 5)
    before = _values(editor, "AISP 28")

    assert editor.clear_targets_by_unit("AISP 28", 2025, 1) == len(CATEGORIES)
    assert set(_values(editor, "AISP 28").values()) == {0}
    assert _values(editor, "AISP 33")["roubo de rua"] == 5
    assert editor.can_undo("AISP 28")

    assert editor.undo_clear_targets("AISP 28") == len(CATEGORIES)
    assert _values(editor, "AISP 28") == before
    assert not editor.can_undo("AISP 28")
    assert "AISP 28" not in editor.undo_buffer


def test_undo_without_snapshot(editor):
    with pytest.raises(UndoUnavailableError):
        editor.undo_clear_targets("AISP 28")


def test_clear_unit_without_targets(editor):
    with pytest.raises(RecordNotFoundError):
        editor.clear_targets_by_unit("AISP 99", 2025, 1)


def test_expired_snapshot_cannot_be_restored(engine, tables):
    clock = FakeClock()
    editor = TargetEditor(engine, tables, UndoBuffer(ttl_seconds=60, clock=clock))
    editor.ensure_targets_exist(2025, 1)
    editor.clear_targets_by_unit("AISP 43", 2025, 1)

    clock.now = 61
    assert not editor.can_undo("AISP 43")
    with pytest.raises(UndoUnavailableError):
        editor.undo_clear_targets("AISP 43")


def test_undo_buffer_evicts_oldest():
    clock = FakeClock()
    buffer = UndoBuffer(ttl_seconds=None, max_entries=2, clock=clock)
    for unit in ("AISP 10", "AISP 28", "AISP 33"):
        clock.now += 1
        buffer.put(unit, [{"unit": unit}])

    assert "AISP 10" not in buffer
    assert len(buffer) == 2
    assert buffer.get("AISP 33") == [{"unit": "AISP 33"}]


def test_undo_buffer_returns_copies():
    buffer = UndoBuffer()
    rows = [{"target_value": 5}]
    buffer.put("AISP 10", rows)
    rows[0]["target_value"] = 0
    buffer.get("AISP 10")[0]["target_value"] = 1
    assert buffer.get("AISP 10") == [{"target_value": 5}]


def test_undo_buffer_reads_clock_under_lock():
    held = []

    def clock():
        held.append(buffer._lock.locked())
        return 0.0

    buffer = UndoBuffer(ttl_seconds=60, clock=clock)
    buffer.put("AISP 10", [{"unit": "AISP 10"}])
    buffer.put("AISP 28", [{"unit": "AISP 28"}])
    assert "AISP 10" in buffer
    assert buffer.get("AISP 28") == [{"unit": "AISP 28"}]
    assert len(buffer) == 2

    assert held and all(held)


def test_undo_buffer_concurrent_put_and_prune():
    clock = FakeClock()
    buffer = UndoBuffer(ttl_seconds=5, max_entries=8, clock=clock)
    errors = []

    def churn(worker):
        try:
            for i in range(300):
                clock.now += 1
                unit = f"AISP {worker}-{i % 12}"
                buffer.put(unit, [{"unit": unit}])
                if unit in buffer:
                    buffer.get(unit)
                buffer.pop(unit)
        except RuntimeError as e:
            errors.append(e)

    threads = [threading.Thread(target=churn, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(buffer) <= 8


# ------------------------------
# fetch retry
# ------------------------------
def _null_id_error():
    return OperationalError("SELECT", {}, Exception('null value in column "id" violates not-null constraint'))


def test_fetch_retries_null_id_error(mocker, editor, engine):
    sleep = mocker.patch.object(target_processor.time, "sleep")
    conn = engine.connect()
    mocker.patch.object(engine, "connect", side_effect=[_null_id_error(), _null_id_error(), conn])

    rows = editor.list_targets(2025, 1)

    assert len(rows) == len(TARGET_UNITS) * len(CATEGORIES)
    assert sleep.call_count == 2
    sleep.assert_called_with(1)


def test_fetch_gives_up_after_three_attempts(mocker, editor, engine):
    sleep = mocker.patch.object(target_processor.time, "sleep")
    mocker.patch.object(engine, "connect", side_effect=[_null_id_error()] * 3)

    with pytest.raises(StorageError) as exc:
        editor.list_targets(2025, 1)
    assert exc.value.step == "fetch targets"
    assert sleep.call_count == 2


def test_fetch_other_errors_not_retried(mocker, editor, engine):
    sleep = mocker.patch.object(target_processor.time, "sleep")
    error = OperationalError("SELECT", {}, Exception("connection refused"))
    mocker.patch.object(engine, "connect", side_effect=error)

    with pytest.raises(StorageError):
        editor.list_targets(2025, 1)
    sleep.assert_not_called()
