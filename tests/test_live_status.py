from datetime import datetime, timedelta

from app.live_status import LiveStatusAggregator, planned_seconds
from app.sheet_state import DeadTimeRecord, PhaseDefinition, SheetState, Stage, WorkLog

NOW = datetime(2026, 3, 2, 10, 0, 0)


def _work(op, start, end=None, stage=Stage.PRODUCTION, log_id=1, phase_id="B", qty=0):
    return WorkLog(id=log_id, operator_id=op, sheet_id=1, phase_id=phase_id, stage=stage,
                   start_time=start, end_time=end, quantity_done=qty)


def _dead(op, start, end=None, rec_id=1, code=40):
    return DeadTimeRecord(id=rec_id, operator_id=op, code=code, description="MACHINE BREAKDOWN",
                          start_time=start, end_time=end)


def _sheet(logs=()):
    return SheetState(
        id=1, order_number="ORD1", sheet_number="01", product_id="P-100", quantity=100,
        phases=(PhaseDefinition("A", 1, 0, 1), PhaseDefinition("B", 2, 60, 2)),
        logs=logs,
    )


def _raw(open_logs=(), open_dead=(), last_logs=None, last_dead=None, sheets=None):
    return {
        "openLogs": list(open_logs),
        "openDeadTimes": list(open_dead),
        "lastClosedLogs": last_logs or {},
        "lastClosedDeadTimes": last_dead or {},
        "sheets": sheets or {},
    }


def test_planned_seconds_by_stage():
    sheet = _sheet(logs=[_work("OP-9", NOW, NOW, phase_id="A", qty=40)])
    assert planned_seconds(sheet, _work("OP-1", NOW)) == 80
    assert planned_seconds(sheet, _work("OP-1", NOW, stage=Stage.SETUP)) == 140
    assert planned_seconds(None, _work("OP-1", NOW)) is None


def test_active_entry_with_overrun():
    started = NOW - timedelta(seconds=100)
    sheet = _sheet(logs=[_work("OP-9", NOW, NOW, phase_id="A", qty=40, log_id=5)])
    raw = _raw(open_logs=[_work("OP-1", started)], sheets={1: sheet})
    status = LiveStatusAggregator(store=None).from_raw(raw, NOW)
    entry = status.active[0]
    assert entry.running_seconds == 100
    assert entry.planned_seconds == 80
    assert entry.is_overrun
    assert entry.to_dict()["stage"] == "production"


def test_unknown_sheet_is_never_overrun():
    raw = _raw(open_logs=[_work("OP-1", NOW - timedelta(hours=3))])
    entry = LiveStatusAggregator(store=None).from_raw(raw, NOW).active[0]
    assert entry.planned_seconds is None
    assert entry.is_overrun is False


def test_dead_time_takes_precedence_over_work():
    raw = _raw(
        open_logs=[_work("OP-1", NOW - timedelta(seconds=50))],
        open_dead=[_dead("OP-1", NOW - timedelta(seconds=20))],
    )
    status = LiveStatusAggregator(store=None).from_raw(raw, NOW)
    assert status.active == []
    assert status.dead_time[0].running_seconds == 20
    assert status.bucket_of("OP-1") == "deadTime"


def test_idle_uses_latest_closed_activity():
    raw = _raw(
        last_logs={"OP-1": _work("OP-1", NOW - timedelta(hours=1), NOW - timedelta(minutes=30))},
        last_dead={"OP-1": _dead("OP-1", NOW - timedelta(minutes=20), NOW - timedelta(minutes=10))},
    )
    entry = LiveStatusAggregator(store=None).from_raw(raw, NOW).idle[0]
    assert entry.last_kind == "deadTime"
    assert entry.idle_seconds == 600


def test_roster_operator_without_history():
    status = LiveStatusAggregator(store=None, roster=["OP-3"]).from_raw(_raw(), NOW)
    entry = status.idle[0]
    assert entry.operator_id == "OP-3"
    assert entry.idle_seconds is None
    assert entry.to_dict()["lastActivity"] is None


def test_every_operator_in_exactly_one_bucket_sorted():
    raw = _raw(
        open_logs=[_work("OP-2", NOW - timedelta(seconds=5))],
        open_dead=[_dead("OP-1", NOW - timedelta(seconds=5))],
        last_logs={"OP-2": _work("OP-2", NOW - timedelta(hours=2), NOW - timedelta(hours=1), log_id=9)},
    )
    status = LiveStatusAggregator(store=None, roster=["OP-4", "OP-3"]).from_raw(raw, NOW)
    buckets = [e.operator_id for e in status.active + status.dead_time + status.idle]
    assert sorted(buckets) == ["OP-1", "OP-2", "OP-3", "OP-4"]
    assert [e.operator_id for e in status.idle] == ["OP-3", "OP-4"]


def test_multiple_open_logs_keeps_latest():
    raw = _raw(open_logs=[
        _work("OP-1", NOW - timedelta(seconds=300), log_id=1),
        _work("OP-1", NOW - timedelta(seconds=30), log_id=2),
    ])
    entry = LiveStatusAggregator(store=None).from_raw(raw, NOW).active[0]
    assert entry.record.id == 2


def test_status_from_store(make_machine, make_tracker, store, plain_sheets, clock):
    make_machine("OP-1").start_production(plain_sheets[0].id, "10")
    make_tracker("OP-2").start(20)
    worker = make_machine("OP-3")
    worker.start_production(plain_sheets[1].id, "10")
    clock.advance(45)
    worker.finish_production(5)
    clock.advance(15)

    status = LiveStatusAggregator(store, clock=clock).status()
    assert status.bucket_of("OP-1") == "active"
    assert status.bucket_of("OP-2") == "deadTime"
    assert status.bucket_of("OP-3") == "idle"
    assert status.idle[0].idle_seconds == 15
    assert status.active[0].planned_seconds == 50
    data = status.to_dict()
    assert set(data) == {"active", "deadTime", "idle", "generatedAt"}


def test_production_plan_uses_quantity_fixed_at_start():
    record = WorkLog(id=3, operator_id="OP-1", sheet_id=1, phase_id="B", stage=Stage.PRODUCTION,
                     start_time=NOW, total_quantity=10)
    sheet = _sheet(logs=[_work("OP-9", NOW, NOW, phase_id="A", qty=40)])
    assert planned_seconds(sheet, record) == 20


def test_planned_time_ignores_later_upstream_progress(make_machine, store, sheet, clock):
    cutter = make_machine("OP-1")
    cutter.start_production(sheet.id, "10")
    cutter.finish_production(40)

    welder = make_machine("OP-2")
    welder.start_setup(sheet.id, "20")
    clock.advance(60)
    welder.start_production(sheet.id, "20")

    cutter.start_production(sheet.id, "10")
    cutter.finish_production(60)

    entry = LiveStatusAggregator(store, clock=clock).status().active[0]
    assert entry.operator_id == "OP-2"
    assert entry.record.total_quantity == 40
    assert entry.planned_seconds == 80
