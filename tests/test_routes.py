import pytest
from flask import Flask

from app.supervisor import PhaseSupervisor
from shopfloor.routes import configurar_rotas


@pytest.fixture
def supervisor(store, catalog, clock):
    return PhaseSupervisor(store, catalog, clock=clock)


@pytest.fixture
def client(store, supervisor):
    app = Flask(__name__)
    app.url_map.strict_slashes = False
    configurar_rotas(app, supervisor, store)
    return app.test_client()


def test_ping(client):
    assert client.get("/ping").get_json() == {"status": "ok"}


def test_catalog_and_sheet_creation(client):
    resp = client.post("/phases", json=[{"id": "10", "name": "Cutting"}, {"id": "20", "name": "Welding"}])
    assert [p["id"] for p in resp.get_json()] == ["10", "20"]

    resp = client.post("/products", json={
        "id": "P-9",
        "name": "Hinge",
        "phases": [{"phaseId": "10"}, {"phaseId": "20", "setupTime": 15}],
    })
    assert resp.status_code == 200
    assert client.get("/products/P-9").get_json()["phases"][1]["setupTime"] == 15

    resp = client.post("/production_sheets", json={
        "orderNumber": "ORD9",
        "sheets": [{"sheetNumber": "01", "productId": "P-9", "quantity": 12}],
    })
    assert resp.status_code == 201
    created = resp.get_json()[0]
    assert created["qrValue"] == "ORD9/01"
    assert created["remaining"] == {"10": 12, "20": 0}

    resp = client.get("/production_sheet_by_qr/ORD9/01")
    assert resp.get_json()["id"] == created["id"]

    resp = client.put(f"/production_sheets/{created['id']}", json={"quantity": 20})
    assert resp.get_json()["quantity"] == 20


def test_unknown_sheet_is_404(client):
    resp = client.get("/production_sheet_by_qr/NOPE/1")
    assert resp.status_code == 404
    assert resp.get_json()["kind"] == "NotFoundError"


def test_operator_flow(client, plain_sheets, clock):
    sheet = plain_sheets[0]
    resp = client.post("/operators/OP-1/scan", json={"qr": sheet.qr_value})
    body = resp.get_json()
    assert body["session"]["state"] == "IDLE"
    assert body["actions"]["10"] == ["start_production"]
    assert body["phaseNames"] == {"10": "Cutting", "20": "Welding"}

    resp = client.post("/operators/OP-1/start", json={"sheetId": sheet.id, "phaseId": "10", "stage": "production"})
    assert resp.status_code == 200
    assert resp.get_json()["session"]["state"] == "PRODUCING"

    resp = client.post("/operators/OP-1/start", json={"sheetId": plain_sheets[1].id, "phaseId": "10"})
    assert resp.status_code == 409
    assert resp.get_json()["openRecord"]["sheetId"] == sheet.id

    clock.advance(90)
    assert client.get("/operators/OP-1/session").get_json()["elapsedSeconds"] == 90

    resp = client.post("/operators/OP-1/finish", json={"quantity": 500})
    assert resp.status_code == 400

    resp = client.post("/operators/OP-1/finish", json={"quantity": 20})
    assert resp.get_json()["record"]["quantityDone"] == 20
    assert resp.get_json()["session"]["state"] == "IDLE"


def test_start_with_resolution(client, plain_sheets, clock):
    first, second = plain_sheets
    client.post("/operators/OP-1/start", json={"sheetId": first.id, "phaseId": "10"})
    clock.advance(10)
    resp = client.post("/operators/OP-1/start", json={
        "sheetId": second.id,
        "phaseId": "10",
        "resolution": {"kind": "partial", "quantity": 10},
    })
    assert resp.get_json()["record"]["sheetId"] == second.id

    resp = client.post("/operators/OP-1/start", json={
        "sheetId": first.id, "phaseId": "10", "resolution": {"kind": "abort"},
    })
    assert resp.get_json()["aborted"] is True


def test_invalid_stage(client, plain_sheets):
    resp = client.post("/operators/OP-1/start", json={"sheetId": plain_sheets[0].id, "phaseId": "10", "stage": "paint"})
    assert resp.status_code == 400


def test_dead_time_routes(client, sheet, clock):
    codes = client.get("/dead_time/codes").get_json()
    assert {"code": 70, "label": "QUALITY PROBLEMS", "requirement": "product-or-sheet-required"} in codes

    resp = client.post("/operators/OP-5/dead_time/start", json={"code": 70})
    assert resp.status_code == 400

    resp = client.post("/operators/OP-5/dead_time/start", json={"code": 70, "qr": sheet.qr_value})
    assert resp.status_code == 201
    assert resp.get_json()["productId"] == "P-100"
    assert client.get("/operators/OP-5/dead_time").get_json()["state"] == "OPEN"

    clock.advance(40)
    live = client.get("/api/live/status").get_json()
    assert live["deadTime"][0]["runningSeconds"] == 40

    resp = client.post("/operators/OP-5/dead_time/finish")
    assert resp.get_json()["endTime"] is not None
    assert client.post("/operators/OP-5/dead_time/finish").status_code == 400


def test_close_exhausted_route(client, plain_sheets):
    client.post("/operators/OP-1/start", json={"sheetId": plain_sheets[0].id, "phaseId": "10"})
    assert client.post("/operators/OP-1/close_exhausted").status_code == 400


def test_daily_report(client, plain_sheets, clock):
    client.post("/operators/OP-1/start", json={"sheetId": plain_sheets[0].id, "phaseId": "10"})
    clock.advance(60)
    client.post("/operators/OP-1/finish", json={})

    resp = client.get("/phase_logs/daily/2026-03-02.csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    text = resp.get_data(as_text=True)
    assert text.startswith("\ufeff\"Operator Username\";")
    assert "daily_report_2026-03-02.csv" in resp.headers["Content-Disposition"]

    assert client.get("/phase_logs/daily/02-03-2026.csv").status_code == 400


def test_listing_products_and_orders(client, sheet, plain_sheets):
    produtos = client.get("/products").get_json()
    assert [p["id"] for p in produtos] == ["P-100", "P-200", "P-300"]
    assert produtos[0]["phases"][1]["setupTime"] == 60

    pedidos = {o["orderNumber"]: o for o in client.get("/orders").get_json()}
    assert pedidos["ORD1"]["sheetCount"] == 1
    assert pedidos["ORD2"]["sheetCount"] == 2

    folhas = client.get("/orders/ORD2/sheets").get_json()
    assert [f["qrValue"] for f in folhas] == ["ORD2/01", "ORD2/02"]
    assert folhas[1]["remaining"] == {"10": 20, "20": 0}

    resp = client.get("/orders/NOPE/sheets")
    assert resp.status_code == 404
    assert resp.get_json()["kind"] == "NotFoundError"


def test_session_stays_blocked_after_refresh(client, plain_sheets):
    first, second = plain_sheets
    client.post("/operators/OP-1/start", json={"sheetId": first.id, "phaseId": "10"})
    client.post("/operators/OP-1/scan", json={"qr": second.qr_value})

    assert client.get("/operators/OP-1/session").get_json()["blockedSheetId"] == first.id
    resp = client.post("/operators/OP-1/start", json={
        "sheetId": second.id, "phaseId": "10", "resolution": {"kind": "full"},
    })
    assert resp.status_code == 409
    assert resp.get_json()["reason"] == "wrong-sheet"
