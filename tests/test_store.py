import pytest

from app.sheet_state import Stage
from shopfloor.errors import ConflictError, NotFoundError, TransientError, ValidationError
from shopfloor.models import Base
from shopfloor.utils import parse_day


def test_sheet_snapshot_is_frozen(store, sheet):
    store.save_product({
        "id": "P-100",
        "name": "Bracket v2",
        "phases": [{"phaseId": "10", "position": 1, "setupTime": 5, "productionTimePerPiece": 9}],
    })
    fresh = store.get_sheet(sheet.id)
    assert [p.phase_id for p in fresh.phases] == ["10", "20"]
    assert fresh.phase("10").production_time_per_piece == 1
    assert len(store.get_product("P-100")["phases"]) == 1


def test_get_sheet_by_qr_and_id(store, sheet):
    assert store.get_sheet("ORD1/01").id == sheet.id
    assert store.get_sheet(str(sheet.id)).id == sheet.id
    assert store.get_sheet(sheet.id).qr_value == "ORD1/01"
    assert store.get_sheet("ORD1/99") is None


def test_duplicate_sheet_rejected(store, sheet):
    with pytest.raises(ValidationError):
        store.create_sheets("ORD1", [{"sheetNumber": "01", "productId": "P-100", "quantity": 5}])


def test_sheet_requires_known_product_and_positive_quantity(store):
    with pytest.raises(ValidationError):
        store.create_sheets("ORD5", [{"sheetNumber": "01", "productId": "NOPE", "quantity": 5}])
    with pytest.raises(ValidationError):
        store.create_sheets("ORD5", [{"sheetNumber": "01", "productId": "P-100", "quantity": 0}])


def test_sheet_with_own_phases(store):
    created = store.create_sheets("ORD6", [{
        "sheetNumber": "01",
        "productId": "CUSTOM",
        "quantity": 3,
        "phases": [{"phaseId": "20"}, {"phaseId": "10"}],
    }])[0]
    assert [(p.phase_id, p.position) for p in created.phases] == [("20", 1), ("10", 2)]


def test_duplicate_phase_positions_rejected(store):
    with pytest.raises(ValidationError):
        store.save_product({
            "id": "P-BAD",
            "phases": [{"phaseId": "10", "position": 1}, {"phaseId": "20", "position": 1}],
        })


def test_update_sheet_until_locked(store, sheet, clock):
    updated = store.update_sheet(sheet.id, quantity=120)
    assert updated.quantity == 120
    store.start_session("OP-1", sheet.id, "10", Stage.PRODUCTION, clock())
    with pytest.raises(ValidationError):
        store.update_sheet(sheet.id, quantity=80)


def test_update_unknown_sheet(store):
    with pytest.raises(NotFoundError):
        store.update_sheet(999, quantity=1)


def test_one_open_record_per_operator(store, sheet, clock):
    store.start_session("OP-1", sheet.id, "10", Stage.PRODUCTION, clock())
    with pytest.raises(ConflictError):
        store.start_session("OP-1", sheet.id, "10", Stage.PRODUCTION, clock())
    with pytest.raises(ConflictError):
        store.start_dead_time("OP-1", 10, "MATERIAL SHORTAGE", start_time=clock())


def test_start_session_on_foreign_phase(store, sheet, clock):
    with pytest.raises(ValidationError):
        store.start_session("OP-1", sheet.id, "2", Stage.PRODUCTION, clock())


def test_double_finish_does_not_double_count(store, sheet, clock):
    record = store.start_session("OP-1", sheet.id, "10", Stage.PRODUCTION, clock(), total_quantity=100)
    clock.advance(60)
    store.finish_session(record.id, clock(), 40, 60)
    clock.advance(60)
    again = store.finish_session(record.id, clock(), 40, 120)
    assert again.production_time == 60
    assert store.get_sheet(sheet.id).done_by_phase()["10"] == 40


def test_prestage_logs_since_last_production(store, sheet, clock):
    setup = store.start_session("OP-1", sheet.id, "20", Stage.SETUP, clock())
    clock.advance(60)
    store.finish_session(setup.id, clock(), 0, 60)
    assert [l.id for l in store.prestage_logs("OP-1", sheet.id, "20")] == [setup.id]

    prod = store.start_session("OP-1", sheet.id, "20", Stage.PRODUCTION, clock(), setup_seconds=60)
    store.finish_session(prod.id, clock(), 1, 0)
    assert store.prestage_logs("OP-1", sheet.id, "20") == []
    assert store.prestage_logs("OP-2", sheet.id, "20") == []


def test_daily_logs(store, sheet, clock):
    record = store.start_session("OP-1", sheet.id, "10", Stage.PRODUCTION, clock())
    clock.advance(120)
    store.finish_session(record.id, clock(), 10, 120)
    frame = store.daily_logs(parse_day("2026-03-02"))
    assert list(frame["operator_id"]) == ["OP-1"]
    assert store.daily_logs(parse_day("2026-03-03")).empty


def test_database_failure_is_transient(store, engine):
    Base.metadata.drop_all(engine)
    with pytest.raises(TransientError):
        store.get_open_session("OP-1")


def test_phase_catalog(store, catalog):
    assert catalog.name("10") == "Cutting"
    assert catalog.name("99") == "Phase 99"
    assert catalog.requires_find("2")
    assert not catalog.requires_find("10")
    assert [c.code for c in catalog.dead_codes()][:3] == [10, 20, 30]
    assert len(catalog.dead_codes()) == 18
