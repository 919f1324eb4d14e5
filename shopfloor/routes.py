# shopfloor/routes.py
from flask import Response, jsonify, request

from app.sheet_state import SheetState, Stage, remaining
from app.session_machine import parse_resolution
from shopfloor.errors import NotFoundError, ShopFloorError, ValidationError
from shopfloor.reports import daily_report_csv
from shopfloor.utils import parse_day


def _body() -> dict:
    dados = request.get_json(silent=True)
    if dados is None:
        return {}
    if not isinstance(dados, dict):
        raise ValidationError("JSON object expected.")
    return dados


def _sheet_payload(sheet: SheetState) -> dict:
    d = sheet.to_dict(with_logs=False)
    d["remaining"] = {p.phase_id: remaining(sheet, p.phase_id) for p in sheet.phases}
    return d


def configurar_rotas(app, supervisor, store):
    catalog = supervisor.catalog

    @app.errorhandler(ShopFloorError)
    def handle_shopfloor_error(e):
        if e.http_status >= 500:
            print(f"[HTTP] {request.method} {request.path}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.route("/ping")
    def ping():
        return jsonify({"status": "ok"}), 200

    # ---------- CATÁLOGO ----------
    @app.route("/phases", methods=["GET", "POST"])
    def phases():
        if request.method == "POST":
            dados = request.get_json(silent=True)
            if not isinstance(dados, list):
                raise ValidationError("A list of phases is expected.")
            return jsonify(store.save_phases(dados)), 200
        return jsonify(store.list_phases()), 200

    @app.route("/products", methods=["GET", "POST"])
    def products():
        if request.method == "POST":
            return jsonify(store.save_product(_body())), 200
        return jsonify(store.list_products()), 200

    @app.route("/products/<product_id>")
    def product(product_id):
        produto = store.get_product(product_id)
        if produto is None:
            raise NotFoundError(f"Product {product_id} not found.", productId=product_id)
        return jsonify(produto), 200

    # ---------- FOLHAS DE PRODUÇÃO ----------
    @app.route("/production_sheets", methods=["POST"])
    def create_sheets():
        dados = _body()
        sheets = store.create_sheets(dados.get("orderNumber"), dados.get("sheets"))
        return jsonify([_sheet_payload(s) for s in sheets]), 201

    @app.route("/production_sheets/<int:sheet_id>", methods=["PUT"])
    def update_sheet(sheet_id):
        dados = _body()
        sheet = store.update_sheet(sheet_id, quantity=dados.get("quantity"), phases=dados.get("phases"))
        return jsonify(_sheet_payload(sheet)), 200

    @app.route("/orders")
    def orders():
        return jsonify(store.list_orders()), 200

    @app.route("/orders/<path:order_number>/sheets")
    def order_sheets(order_number):
        return jsonify([_sheet_payload(s) for s in store.sheets_by_order(order_number)]), 200

    @app.route("/production_sheet_by_qr/<path:qr>")
    def sheet_by_qr(qr):
        sheet = store.get_sheet(qr)
        if sheet is None:
            raise NotFoundError(f"Production sheet {qr} not found.", qrValue=qr)
        return jsonify(_sheet_payload(sheet)), 200

    # ---------- SESSÃO DO OPERADOR ----------
    @app.route("/operators/<op>/session")
    def operator_session(op):
        return jsonify(supervisor.machine_for(op).rehydrate().to_dict()), 200

    @app.route("/operators/<op>/scan", methods=["POST"])
    def operator_scan(op):
        dados = _body()
        ref = dados.get("qr") or dados.get("sheetId")
        if ref in (None, ""):
            raise ValidationError("qr or sheetId is required.")
        machine = supervisor.machine_for(op)
        sheet, snap = machine.load_sheet(ref if isinstance(ref, str) else int(ref))
        return jsonify({
            "sheet": _sheet_payload(sheet),
            "phaseNames": {p.phase_id: catalog.name(p.phase_id) for p in sheet.phases},
            "session": snap.to_dict(),
            "actions": machine.available_actions(sheet),
        }), 200

    @app.route("/operators/<op>/start", methods=["POST"])
    def operator_start(op):
        dados = _body()
        if dados.get("sheetId") in (None, "") or not dados.get("phaseId"):
            raise ValidationError("sheetId and phaseId are required.")
        try:
            sheet_id = int(dados["sheetId"])
        except (TypeError, ValueError):
            raise ValidationError("Invalid sheetId.", sheetId=dados.get("sheetId"))
        try:
            stage = Stage(dados.get("stage") or Stage.PRODUCTION.value)
        except ValueError:
            raise ValidationError(f"Invalid stage: {dados.get('stage')}", stage=dados.get("stage"))
        machine = supervisor.machine_for(op)
        record = machine.start(sheet_id, str(dados["phaseId"]), stage,
                               parse_resolution(dados.get("resolution")))
        return jsonify({
            "record": record.to_dict() if record else None,
            "aborted": record is None,
            "session": machine.snapshot().to_dict(),
        }), 200

    @app.route("/operators/<op>/finish", methods=["POST"])
    def operator_finish(op):
        dados = _body()
        machine = supervisor.machine_for(op)
        record = machine.finish(quantity=dados.get("quantity"), then_setup=bool(dados.get("thenSetup")))
        return jsonify({"record": record.to_dict(), "session": machine.snapshot().to_dict()}), 200

    @app.route("/operators/<op>/close_exhausted", methods=["POST"])
    def operator_close_exhausted(op):
        machine = supervisor.machine_for(op)
        record = machine.close_exhausted()
        return jsonify({"record": record.to_dict(), "session": machine.snapshot().to_dict()}), 200

    # ---------- TEMPO MORTO ----------
    @app.route("/dead_time/codes")
    def dead_time_codes():
        return jsonify([c.to_dict() for c in catalog.dead_codes()]), 200

    @app.route("/operators/<op>/dead_time")
    def operator_dead_time(op):
        tracker = supervisor.dead_time_for(op)
        record = tracker.rehydrate()
        return jsonify({
            "state": tracker.state.name,
            "record": record.to_dict() if record else None,
        }), 200

    @app.route("/operators/<op>/dead_time/start", methods=["POST"])
    def operator_dead_time_start(op):
        dados = _body()
        sheet = None
        ref = dados.get("qr") or dados.get("sheetId")
        if ref not in (None, ""):
            sheet = store.get_sheet(ref if isinstance(ref, str) else int(ref))
            if sheet is None:
                raise NotFoundError(f"Production sheet {ref} not found.", sheetRef=str(ref))
        record = supervisor.dead_time_for(op).start(
            dados.get("code"),
            manual_product_id=dados.get("productId"),
            sheet=sheet,
            description=dados.get("description"),
        )
        return jsonify(record.to_dict()), 201

    @app.route("/operators/<op>/dead_time/finish", methods=["POST"])
    def operator_dead_time_finish(op):
        return jsonify(supervisor.dead_time_for(op).finish().to_dict()), 200

    # ---------- PAINEL / RELATÓRIO ----------
    @app.route("/api/live/status")
    def live_status():
        return jsonify(supervisor.live_status().to_dict()), 200

    @app.route("/phase_logs/daily/<day>.csv")
    def daily_report(day):
        dia = parse_day(day)
        conteudo = daily_report_csv(store.daily_logs(dia))
        return Response(
            conteudo,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename=daily_report_{dia.isoformat()}.csv"},
        )
