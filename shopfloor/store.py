# shopfloor/store.py
from contextlib import contextmanager
from datetime import datetime, timedelta

import pandas as pd
from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.sheet_state import DeadTimeRecord, PhaseDefinition, SheetState, Stage, WorkLog
from shopfloor.errors import ConflictError, NotFoundError, ShopFloorError, TransientError, ValidationError
from shopfloor.models import (
    DeadTimeLog,
    Order,
    Phase,
    PhaseLog,
    Product,
    ProductPhase,
    ProductionSheet,
    SheetPhase,
    init_db,
)


def _to_work_log(row: PhaseLog) -> WorkLog:
    return WorkLog(
        id=row.id,
        operator_id=row.operator_id,
        sheet_id=row.sheet_id,
        phase_id=row.phase_id,
        stage=Stage(row.stage),
        start_time=row.start_time,
        end_time=row.end_time,
        quantity_done=int(row.quantity_done or 0),
        total_quantity=int(row.total_quantity or 0),
        find_material_time=row.find_material_time,
        setup_time=row.setup_time,
        production_time=row.production_time,
        order_number=row.order_number,
        sheet_number=row.sheet_number,
        product_id=row.product_id,
        position=int(row.position or 0),
    )


def _to_dead_time(row: DeadTimeLog) -> DeadTimeRecord:
    return DeadTimeRecord(
        id=row.id,
        operator_id=row.operator_id,
        code=row.code,
        description=row.description,
        start_time=row.start_time,
        end_time=row.end_time,
        product_id=row.product_id,
        sheet_id=row.sheet_id,
        order_number=row.order_number,
        sheet_number=row.sheet_number,
    )


def _to_sheet(row: ProductionSheet, logs) -> SheetState:
    return SheetState(
        id=row.id,
        order_number=row.order_number,
        sheet_number=row.sheet_number,
        product_id=row.product_id,
        quantity=int(row.quantity),
        qr_value=row.qr_value,
        phases=tuple(
            PhaseDefinition(
                phase_id=p.phase_id,
                position=p.position,
                setup_time=p.setup_time or 0,
                production_time_per_piece=p.production_time_per_piece or 0,
            )
            for p in row.phases
        ),
        logs=tuple(_to_work_log(l) for l in logs),
    )


def _to_product(row: Product) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "phases": [
            PhaseDefinition(p.phase_id, p.position, p.setup_time, p.production_time_per_piece).to_dict()
            for p in row.phases
        ],
    }


def _parse_phases(phases) -> list:
    """Normaliza a lista de fases vinda do front/PDF: posição única e tempos >= 0."""
    parsed = []
    for i, p in enumerate(phases or []):
        phase_id = str(p.get("phaseId") or "").strip()
        if not phase_id:
            raise ValidationError("Every phase needs a phaseId.")
        try:
            position = int(p.get("position") if p.get("position") not in (None, "") else i + 1)
            setup_time = float(p.get("setupTime") or 0)
            per_piece = float(p.get("productionTimePerPiece") or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid numbers for phase {phase_id}.", phaseId=phase_id)
        if setup_time < 0 or per_piece < 0:
            raise ValidationError(f"Negative times for phase {phase_id}.", phaseId=phase_id)
        parsed.append((phase_id, position, setup_time, per_piece))

    positions = [p[1] for p in parsed]
    if len(positions) != len(set(positions)):
        raise ValidationError("Phase positions must be unique.")
    ids = [p[0] for p in parsed]
    if len(ids) != len(set(ids)):
        raise ValidationError("A phase may appear only once per product.")
    return parsed


def _parse_quantity(value) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        qty = -1
    if qty <= 0:
        raise ValidationError("Quantity must be a positive integer.", quantity=value)
    return qty


class ShopFloorStore:
    """
    Armazenamento de folhas, fases, registros de trabalho e tempo morto.

    Cada operação abre a própria sessão. Erros do SQLAlchemy viram
    TransientError (a ação pode ser repetida); a exclusividade de registro
    aberto por operador é conferida aqui, na escrita.
    """

    def __init__(self, engine):
        init_db(engine)
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def _session(self):
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except ShopFloorError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            print(f"[DB] ERRO: {e}")
            raise TransientError("Database unavailable, try again.") from e
        finally:
            session.close()

    # ---------- CATÁLOGO ----------
    def list_phases(self) -> list:
        with self._session() as session:
            rows = session.query(Phase).order_by(Phase.id).all()
            return [{"id": r.id, "name": r.name} for r in rows]

    def save_phases(self, phases) -> list:
        with self._session() as session:
            session.query(Phase).delete()
            for p in phases:
                phase_id = str(p.get("id") or "").strip()
                if not phase_id:
                    raise ValidationError("Every phase needs an id.")
                session.add(Phase(id=phase_id, name=(p.get("name") or phase_id).strip()))
        return self.list_phases()

    def save_product(self, product) -> dict:
        product_id = str(product.get("id") or "").strip()
        if not product_id:
            raise ValidationError("Product id is required.")
        parsed = _parse_phases(product.get("phases"))

        with self._session() as session:
            row = session.get(Product, product_id)
            if row is None:
                row = Product(id=product_id, name=product.get("name") or product_id)
                session.add(row)
            else:
                row.name = product.get("name") or row.name
                row.phases.clear()
                session.flush()
            for phase_id, position, setup_time, per_piece in parsed:
                row.phases.append(ProductPhase(
                    phase_id=phase_id,
                    position=position,
                    setup_time=setup_time,
                    production_time_per_piece=per_piece,
                ))
        return self.get_product(product_id)

    def get_product(self, product_id):
        with self._session() as session:
            row = session.get(Product, product_id)
            return _to_product(row) if row else None

    def list_products(self) -> list:
        with self._session() as session:
            return [_to_product(r) for r in session.query(Product).order_by(Product.id).all()]

    # ---------- FOLHAS ----------
    def _load_sheet(self, session, row):
        logs = (
            session.query(PhaseLog)
            .filter(PhaseLog.sheet_id == row.id)
            .order_by(PhaseLog.start_time, PhaseLog.id)
            .all()
        )
        return _to_sheet(row, logs)

    def get_sheet(self, sheet_ref):
        """Busca por id numérico ou pelo valor lido do QR. Retorna None se não existir."""
        with self._session() as session:
            row = None
            if isinstance(sheet_ref, str):
                row = session.query(ProductionSheet).filter_by(qr_value=sheet_ref.strip()).first()
                if row is None and sheet_ref.strip().isdigit():
                    row = session.get(ProductionSheet, int(sheet_ref))
            elif sheet_ref is not None:
                row = session.get(ProductionSheet, int(sheet_ref))
            if row is None:
                return None
            return self._load_sheet(session, row)

    def create_sheets(self, order_number, sheets) -> list:
        order_number = str(order_number or "").strip()
        if not order_number:
            raise ValidationError("Order number is required.")
        if not sheets:
            raise ValidationError("At least one sheet is required.")

        created_ids = []
        with self._session() as session:
            if session.get(Order, order_number) is None:
                session.add(Order(order_number=order_number))

            for s in sheets:
                sheet_number = str(s.get("sheetNumber") or "").strip()
                product_id = str(s.get("productId") or "").strip()
                if not sheet_number or not product_id:
                    raise ValidationError("sheetNumber and productId are required.")
                qty = _parse_quantity(s.get("quantity"))

                if s.get("phases"):
                    parsed = _parse_phases(s["phases"])
                else:
                    template = session.get(Product, product_id)
                    if template is None or not template.phases:
                        raise ValidationError(f"Product {product_id} has no phase definition.", productId=product_id)
                    parsed = [
                        (p.phase_id, p.position, p.setup_time or 0, p.production_time_per_piece or 0)
                        for p in template.phases
                    ]

                row = ProductionSheet(
                    order_number=order_number,
                    sheet_number=sheet_number,
                    product_id=product_id,
                    quantity=qty,
                    qr_value=f"{order_number}/{sheet_number}",
                )
                # cópia congelada: editar o produto depois não muda esta folha
                for phase_id, position, setup_time, per_piece in parsed:
                    row.phases.append(SheetPhase(
                        phase_id=phase_id,
                        position=position,
                        setup_time=setup_time,
                        production_time_per_piece=per_piece,
                    ))
                session.add(row)
                try:
                    session.flush()
                except IntegrityError:
                    raise ValidationError(
                        f"Sheet {order_number}/{sheet_number} already exists.",
                        orderNumber=order_number, sheetNumber=sheet_number,
                    )
                created_ids.append(row.id)

        return [self.get_sheet(i) for i in created_ids]

    def list_orders(self) -> list:
        """Pedidos com a contagem de folhas, mais recentes primeiro."""
        with self._session() as session:
            rows = (
                session.query(Order, func.count(ProductionSheet.id))
                .outerjoin(ProductionSheet, ProductionSheet.order_number == Order.order_number)
                .group_by(Order.order_number, Order.created_at)
                .order_by(Order.created_at.desc(), Order.order_number)
                .all()
            )
            return [
                {"orderNumber": o.order_number, "createdAt": o.created_at.isoformat(), "sheetCount": int(n)}
                for o, n in rows
            ]

    def sheets_by_order(self, order_number) -> list:
        order_number = str(order_number or "").strip()
        with self._session() as session:
            if session.get(Order, order_number) is None:
                raise NotFoundError(f"Order {order_number} not found.", orderNumber=order_number)
            rows = (
                session.query(ProductionSheet)
                .filter(ProductionSheet.order_number == order_number)
                .order_by(ProductionSheet.sheet_number, ProductionSheet.id)
                .all()
            )
            return [self._load_sheet(session, r) for r in rows]

    def update_sheet(self, sheet_id, quantity=None, phases=None) -> SheetState:
        with self._session() as session:
            row = session.get(ProductionSheet, int(sheet_id))
            if row is None:
                raise NotFoundError(f"Sheet {sheet_id} not found.", sheetId=sheet_id)
            has_logs = session.query(PhaseLog.id).filter(PhaseLog.sheet_id == row.id).first() is not None
            if has_logs:
                raise ValidationError("Sheet has logged work and can no longer be changed.", sheetId=row.id)

            if quantity is not None:
                row.quantity = _parse_quantity(quantity)
            if phases is not None:
                parsed = _parse_phases(phases)
                row.phases.clear()
                session.flush()
                for phase_id, position, setup_time, per_piece in parsed:
                    row.phases.append(SheetPhase(
                        phase_id=phase_id,
                        position=position,
                        setup_time=setup_time,
                        production_time_per_piece=per_piece,
                    ))
        return self.get_sheet(int(sheet_id))

    # ---------- REGISTROS DE TRABALHO ----------
    def _open_work(self, session, operator_id):
        return (
            session.query(PhaseLog)
            .filter(PhaseLog.operator_id == operator_id, PhaseLog.end_time.is_(None))
            .order_by(PhaseLog.start_time.desc(), PhaseLog.id.desc())
            .first()
        )

    def _open_dead(self, session, operator_id):
        return (
            session.query(DeadTimeLog)
            .filter(DeadTimeLog.operator_id == operator_id, DeadTimeLog.end_time.is_(None))
            .order_by(DeadTimeLog.start_time.desc(), DeadTimeLog.id.desc())
            .first()
        )

    def _check_no_open_record(self, session, operator_id):
        open_work = self._open_work(session, operator_id)
        if open_work is not None:
            raise ConflictError(
                "Operator already has an open work session.",
                open_record=_to_work_log(open_work),
                reason="open-session",
            )
        open_dead = self._open_dead(session, operator_id)
        if open_dead is not None:
            raise ConflictError(
                "Operator already has an open dead-time.",
                open_record=_to_dead_time(open_dead),
                reason="open-dead-time",
            )

    def start_session(self, operator_id, sheet_id, phase_id, stage, start_time,
                      find_seconds=None, setup_seconds=None, total_quantity=None) -> WorkLog:
        stage = Stage(stage)
        with self._session() as session:
            sheet = session.get(ProductionSheet, int(sheet_id))
            if sheet is None:
                raise NotFoundError(f"Sheet {sheet_id} not found.", sheetId=sheet_id)
            phase = next((p for p in sheet.phases if p.phase_id == phase_id), None)
            if phase is None:
                raise ValidationError(f"Phase {phase_id} is not part of sheet {sheet.qr_value}.", phaseId=phase_id)

            self._check_no_open_record(session, operator_id)

            row = PhaseLog(
                operator_id=operator_id,
                sheet_id=sheet.id,
                order_number=sheet.order_number,
                sheet_number=sheet.sheet_number,
                product_id=sheet.product_id,
                phase_id=phase_id,
                position=phase.position,
                stage=stage.value,
                start_time=start_time,
                quantity_done=0,
                total_quantity=int(total_quantity or 0),
                find_material_time=find_seconds,
                setup_time=setup_seconds,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError("Operator already has an open work session.", reason="open-session")
            return _to_work_log(row)

    def finish_session(self, record_id, end_time, quantity_done, elapsed_seconds) -> WorkLog:
        """
        Fecha o registro. Chamar de novo num registro já fechado devolve o
        registro como está, sem somar quantidade outra vez.
        """
        with self._session() as session:
            row = session.get(PhaseLog, int(record_id))
            if row is None:
                raise NotFoundError(f"Work log {record_id} not found.", recordId=record_id)
            if row.end_time is not None:
                return _to_work_log(row)

            row.end_time = end_time
            if row.stage == Stage.FIND.value:
                row.find_material_time = float(elapsed_seconds)
            elif row.stage == Stage.SETUP.value:
                row.setup_time = float(elapsed_seconds)
            else:
                row.production_time = float(elapsed_seconds)
                row.quantity_done = int(quantity_done or 0)
            session.flush()
            return _to_work_log(row)

    def get_open_session(self, operator_id):
        with self._session() as session:
            row = self._open_work(session, operator_id)
            return _to_work_log(row) if row else None

    def prestage_logs(self, operator_id, sheet_id, phase_id) -> list:
        """Busca/setup fechados do operador nesta fase desde a última produção dele nela."""
        with self._session() as session:
            base = session.query(PhaseLog).filter(
                PhaseLog.operator_id == operator_id,
                PhaseLog.sheet_id == int(sheet_id),
                PhaseLog.phase_id == phase_id,
            )
            last_production = (
                base.filter(PhaseLog.stage == Stage.PRODUCTION.value)
                .order_by(PhaseLog.start_time.desc(), PhaseLog.id.desc())
                .first()
            )
            query = base.filter(
                PhaseLog.stage.in_([Stage.FIND.value, Stage.SETUP.value]),
                PhaseLog.end_time.isnot(None),
            )
            if last_production is not None:
                query = query.filter(PhaseLog.id > last_production.id)
            return [_to_work_log(r) for r in query.order_by(PhaseLog.start_time, PhaseLog.id).all()]

    # ---------- TEMPO MORTO ----------
    def start_dead_time(self, operator_id, code, description, refs=None, start_time=None) -> DeadTimeRecord:
        refs = refs or {}
        with self._session() as session:
            self._check_no_open_record(session, operator_id)
            row = DeadTimeLog(
                operator_id=operator_id,
                code=int(code),
                description=description,
                product_id=refs.get("productId"),
                sheet_id=refs.get("sheetId"),
                order_number=refs.get("orderNumber"),
                sheet_number=refs.get("sheetNumber"),
                start_time=start_time,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError("Operator already has an open dead-time.", reason="open-dead-time")
            return _to_dead_time(row)

    def finish_dead_time(self, record_id, end_time) -> DeadTimeRecord:
        with self._session() as session:
            row = session.get(DeadTimeLog, int(record_id))
            if row is None:
                raise NotFoundError(f"Dead-time {record_id} not found.", recordId=record_id)
            if row.end_time is None:
                row.end_time = end_time
                session.flush()
            return _to_dead_time(row)

    def get_open_dead_time(self, operator_id):
        with self._session() as session:
            row = self._open_dead(session, operator_id)
            return _to_dead_time(row) if row else None

    # ---------- PAINEL AO VIVO ----------
    def _last_closed(self, session, model):
        sub = (
            session.query(model.operator_id, func.max(model.end_time).label("last_end"))
            .filter(model.end_time.isnot(None))
            .group_by(model.operator_id)
            .subquery()
        )
        rows = (
            session.query(model)
            .join(sub, and_(model.operator_id == sub.c.operator_id, model.end_time == sub.c.last_end))
            .order_by(model.id)
            .all()
        )
        # empate no end_time: fica o de maior id
        return {r.operator_id: r for r in rows}

    def poll_live_status(self) -> dict:
        """Registros crus para o painel: abertos, último fechado por operador e as folhas envolvidas."""
        with self._session() as session:
            open_logs = (
                session.query(PhaseLog)
                .filter(PhaseLog.end_time.is_(None))
                .order_by(PhaseLog.start_time, PhaseLog.id)
                .all()
            )
            open_dead = (
                session.query(DeadTimeLog)
                .filter(DeadTimeLog.end_time.is_(None))
                .order_by(DeadTimeLog.start_time, DeadTimeLog.id)
                .all()
            )
            last_logs = self._last_closed(session, PhaseLog)
            last_dead = self._last_closed(session, DeadTimeLog)

            sheets = {}
            for log in open_logs:
                if log.sheet_id not in sheets:
                    row = session.get(ProductionSheet, log.sheet_id)
                    if row is not None:
                        sheets[log.sheet_id] = self._load_sheet(session, row)

            return {
                "openLogs": [_to_work_log(r) for r in open_logs],
                "openDeadTimes": [_to_dead_time(r) for r in open_dead],
                "lastClosedLogs": {op: _to_work_log(r) for op, r in last_logs.items()},
                "lastClosedDeadTimes": {op: _to_dead_time(r) for op, r in last_dead.items()},
                "sheets": sheets,
            }

    # ---------- RELATÓRIO ----------
    def daily_logs(self, day) -> pd.DataFrame:
        inicio = datetime(day.year, day.month, day.day)
        fim = inicio + timedelta(days=1)
        tabela = PhaseLog.__table__
        stmt = (
            select(tabela)
            .where(tabela.c.start_time >= inicio, tabela.c.start_time < fim)
            .order_by(tabela.c.start_time, tabela.c.id)
        )
        try:
            with self.engine.connect() as conn:
                return pd.read_sql(stmt, conn)
        except SQLAlchemyError as e:
            print(f"[DB] Erro ao ler registros do dia {day}: {e}")
            raise TransientError("Database unavailable, try again.") from e
