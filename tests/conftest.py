from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.session_machine import SessionStateMachine
from app.dead_time import DeadTimeTracker
from shopfloor.catalog import PhaseCatalog
from shopfloor.store import ShopFloorStore
from state import OperatorContext


class FakeClock:
    """Relógio controlado pelo teste (UTC sem tzinfo, igual ao banco)."""

    def __init__(self, start=datetime(2026, 3, 2, 8, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def stage_changed(self, operator_id, event, record, **extra):
        self.events.append((operator_id, event, record))

    def dead_time_changed(self, operator_id, event, record):
        self.events.append((operator_id, event, record))


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    s = ShopFloorStore(engine)
    s.save_phases([
        {"id": "2", "name": "Bending"},
        {"id": "10", "name": "Cutting"},
        {"id": "20", "name": "Welding"},
    ])
    # A sem setup, B com setup 60 s e 2 s/peça
    s.save_product({
        "id": "P-100",
        "name": "Bracket",
        "phases": [
            {"phaseId": "10", "position": 1, "setupTime": 0, "productionTimePerPiece": 1},
            {"phaseId": "20", "position": 2, "setupTime": 60, "productionTimePerPiece": 2},
        ],
    })
    # sem setup em nenhuma fase
    s.save_product({
        "id": "P-200",
        "name": "Plate",
        "phases": [
            {"phaseId": "10", "position": 1, "productionTimePerPiece": 1},
            {"phaseId": "20", "position": 2, "productionTimePerPiece": 1},
        ],
    })
    # fase 2 exige busca de material
    s.save_product({
        "id": "P-300",
        "name": "Frame",
        "phases": [
            {"phaseId": "2", "position": 1, "setupTime": 30, "productionTimePerPiece": 3},
            {"phaseId": "10", "position": 2, "productionTimePerPiece": 1},
        ],
    })
    return s


@pytest.fixture
def catalog(store):
    return PhaseCatalog(store, find_material_phases={"2", "30"})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sheet(store):
    return store.create_sheets("ORD1", [{"sheetNumber": "01", "productId": "P-100", "quantity": 100}])[0]


@pytest.fixture
def plain_sheets(store):
    return store.create_sheets("ORD2", [
        {"sheetNumber": "01", "productId": "P-200", "quantity": 50},
        {"sheetNumber": "02", "productId": "P-200", "quantity": 20},
    ])


@pytest.fixture
def find_sheet(store):
    return store.create_sheets("ORD3", [{"sheetNumber": "01", "productId": "P-300", "quantity": 10}])[0]


@pytest.fixture
def make_machine(store, catalog, clock):
    def _make(operator_id="OP-1", notifier=None, context=None):
        return SessionStateMachine(context or OperatorContext(operator_id), store, catalog,
                                   notifier=notifier, clock=clock)
    return _make


@pytest.fixture
def make_tracker(store, catalog, clock):
    def _make(operator_id="OP-1", notifier=None, context=None):
        return DeadTimeTracker(context or OperatorContext(operator_id), store, catalog,
                               notifier=notifier, clock=clock)
    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()
