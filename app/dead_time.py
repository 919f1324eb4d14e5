# app/dead_time.py
from __future__ import annotations

from typing import Optional

from app.sheet_state import DeadTimeRecord, SheetState
from shopfloor.catalog import Requirement
from shopfloor.errors import ConflictError, ValidationError
from shopfloor.utils import utcnow
from state import DeadTimeState, OperatorContext


class DeadTimeTracker:
    """
    Tempo morto (parada não produtiva). Só dois estados: IDLE e OPEN.
    Divide com a SessionStateMachine a regra de um único registro aberto
    por operador.
    """

    def __init__(self, context: OperatorContext, store, catalog, notifier=None, clock=utcnow):
        self.context = context
        self.store = store
        self.catalog = catalog
        self.notifier = notifier
        self.clock = clock

    @property
    def operator_id(self) -> str:
        return self.context.operator_id

    @property
    def state(self) -> DeadTimeState:
        return self.context.dead_state

    def rehydrate(self) -> Optional[DeadTimeRecord]:
        with self.context.lock:
            record = self.store.get_open_dead_time(self.operator_id)
            if record is not None:
                self.context.open_dead(record)
            else:
                self.context.close_dead()
            return record

    def build_refs(self, code, manual_product_id: Optional[str] = None,
                   sheet: Optional[SheetState] = None) -> dict:
        """
        Valida o nível de exigência do código e monta as referências.
        Produto digitado tem prioridade sobre o produto da folha escaneada.
        """
        meta = self.catalog.dead_code(code)
        manual = (manual_product_id or "").strip()

        if meta.requirement is Requirement.MANUAL_PRODUCT and not manual:
            raise ValidationError(f"Code {meta.code} requires a manual product id.", code=meta.code)
        if meta.requirement is Requirement.PRODUCT_OR_SHEET and not manual and sheet is None:
            raise ValidationError(f"Code {meta.code} requires a product id or a scanned sheet.", code=meta.code)

        refs = {}
        if manual:
            refs["productId"] = manual
        elif sheet is not None:
            refs["productId"] = sheet.product_id
        if sheet is not None:
            refs["sheetId"] = sheet.id
            refs["orderNumber"] = sheet.order_number
            refs["sheetNumber"] = sheet.sheet_number
        return refs

    def start(self, code, manual_product_id: Optional[str] = None,
              sheet: Optional[SheetState] = None, description: Optional[str] = None) -> DeadTimeRecord:
        with self.context.lock:
            meta = self.catalog.dead_code(code)
            refs = self.build_refs(meta.code, manual_product_id, sheet)

            current = self.store.get_open_dead_time(self.operator_id)
            if current is not None:
                self.context.open_dead(current)
                raise ConflictError("You already have an active dead-time.",
                                    open_record=current, reason="open-dead-time")
            work = self.store.get_open_session(self.operator_id)
            if work is not None:
                raise ConflictError("Finish the running phase before starting dead-time.",
                                    open_record=work, reason="open-session")

            record = self.store.start_dead_time(
                self.operator_id, meta.code, description or meta.label, refs, start_time=self.clock(),
            )
            self.context.open_dead(record)
            print(f"[DEADTIME] {self.operator_id} iniciou código {meta.code} ({meta.label}).")
            self._notify("dead_started", record)
            return record

    def finish(self) -> DeadTimeRecord:
        with self.context.lock:
            current = self.store.get_open_dead_time(self.operator_id)
            if current is None:
                self.context.close_dead()
                raise ValidationError("No dead-time is running.")
            closed = self.store.finish_dead_time(current.id, self.clock())
            self.context.close_dead()
            print(f"[DEADTIME] {self.operator_id} finalizou código {closed.code}.")
            self._notify("dead_finished", closed)
            return closed

    def _notify(self, event: str, record: DeadTimeRecord):
        if self.notifier is None:
            return
        try:
            self.notifier.dead_time_changed(self.operator_id, event, record)
        except Exception as e:
            print(f"[DEADTIME] Falha ao notificar painel ao vivo ({event}): {e}")
