# app/session_machine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from app.sheet_state import SheetState, Stage, WorkLog, elapsed_seconds, remaining
from shopfloor.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.utils import format_duration, utcnow
from state import OperatorContext, SessionSnapshot, SessionState


# ───────────────────────────────────────────────
# Diálogo "fase anterior ainda aberta": finalizar tudo / parcial / abortar
@dataclass(frozen=True)
class FullFinish:
    pass


@dataclass(frozen=True)
class PartialFinish:
    quantity: int


@dataclass(frozen=True)
class Abort:
    pass


Resolution = Union[FullFinish, PartialFinish, Abort]


def parse_resolution(data) -> Optional[Resolution]:
    """{"kind": "full"} | {"kind": "partial", "quantity": 5} | {"kind": "abort"} -> variante."""
    if not data:
        return None
    if isinstance(data, str):
        data = {"kind": data}
    if not isinstance(data, dict):
        raise ValidationError(f"Unknown resolution: {data}")
    kind = str(data.get("kind") or "").lower()
    if kind == "full":
        return FullFinish()
    if kind == "abort":
        return Abort()
    if kind == "partial":
        return PartialFinish(_parse_int(data.get("quantity")))
    raise ValidationError(f"Unknown resolution: {kind or data}")


def _parse_int(value) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError("Invalid quantity.", quantity=value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid quantity.", quantity=value)


# transições encadeadas permitidas sem passar pelo diálogo
CHAINED = {
    (Stage.FIND, Stage.SETUP),
    (Stage.SETUP, Stage.PRODUCTION),
}


class SessionStateMachine:
    """
    Máquina de estados de um operador: IDLE -> FINDING -> SETTING_UP -> PRODUCING.

    Nada muda no contexto local antes do banco confirmar: se abrir ou fechar
    um registro falhar, o estado anterior fica como estava e a ação pode ser
    repetida. Notificações do painel são best-effort.
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
    def state(self) -> SessionState:
        return self.context.state

    # ---------- REIDRATAÇÃO ----------
    def rehydrate(self, scanned_sheet: Optional[SheetState] = None) -> SessionSnapshot:
        """
        Reconstrói o estado a partir do banco, nunca da memória local.
        Registro aberto em outra folha que não a escaneada bloqueia o operador.
        """
        with self.context.lock:
            record = self.store.get_open_session(self.operator_id)
            dead = self.store.get_open_dead_time(self.operator_id)

            target = scanned_sheet
            if target is None and record is not None:
                target = self.store.get_sheet(record.sheet_id)
            pending = self._load_pending(target) if target is not None else None

            if record is not None:
                self.context.enter(record)
            else:
                self.context.leave()
            if dead is not None:
                self.context.open_dead(dead)
            else:
                self.context.close_dead()

            if scanned_sheet is not None and record is not None and record.sheet_id != scanned_sheet.id:
                self.context.blocked_sheet_id = record.sheet_id
                print(f"[SESSION] {self.operator_id} tem registro aberto na folha {record.sheet_id}; bloqueado.")
            elif scanned_sheet is not None or record is None or self.context.blocked_sheet_id != record.sheet_id:
                # sem leitura nova o bloqueio continua até escanear a folha certa
                self.context.blocked_sheet_id = None

            if pending is not None:
                self._apply_pending(target.id, pending)

            return self.context.snapshot(self.clock())

    def _apply_pending(self, sheet_id, pending: dict):
        self.context.reset_pending(sheet_id)
        for (phase_id, stage), seconds in pending.items():
            self.context.add_pending(sheet_id, phase_id, stage, seconds)

    def _load_pending(self, sheet: SheetState) -> dict:
        pending = {}
        for phase in sheet.phases:
            for log in self.store.prestage_logs(self.operator_id, sheet.id, phase.phase_id):
                seconds = log.find_material_time if log.stage is Stage.FIND else log.setup_time
                key = (phase.phase_id, log.stage)
                pending[key] = pending.get(key, 0) + int(seconds or 0)
        return pending

    def load_sheet(self, sheet_ref):
        """Leitura do QR: folha fresca + estado reidratado do operador."""
        sheet = self.store.get_sheet(sheet_ref)
        if sheet is None:
            raise NotFoundError(f"Production sheet {sheet_ref} not found.", sheetRef=str(sheet_ref))
        return sheet, self.rehydrate(sheet)

    def snapshot(self) -> SessionSnapshot:
        return self.context.snapshot(self.clock())

    # ---------- AÇÕES DISPONÍVEIS ----------
    def available_actions(self, sheet: SheetState) -> dict:
        """Por fase, as transições válidas agora (o que a interface deve oferecer)."""
        with self.context.lock:
            actions = {p.phase_id: [] for p in sheet.phases}
            if self.context.blocked_sheet_id is not None or self.context.dead_record is not None:
                return actions

            record = self.context.record
            for phase in sheet.phases:
                ids = actions[phase.phase_id]
                rem = remaining(sheet, phase.phase_id)
                mine = record is not None and record.sheet_id == sheet.id and record.phase_id == phase.phase_id

                if mine and record.stage is Stage.FIND:
                    ids.append("finish_find")
                    if phase.setup_time > 0:
                        ids.append("start_setup")
                    continue
                if mine and record.stage is Stage.SETUP:
                    ids += ["finish_setup", "start_production"]
                    continue
                if mine and record.stage is Stage.PRODUCTION:
                    ids += ["finish_full", "finish_partial"] if rem > 0 else ["close_exhausted"]
                    continue

                if rem <= 0:
                    continue
                if self.catalog.requires_find(phase.phase_id):
                    ids.append("start_find")
                if phase.setup_time > 0:
                    ids.append("start_setup")
                if self._prestages_missing(sheet, phase) == []:
                    ids.append("start_production")
            return actions

    def _prestages_missing(self, sheet: SheetState, phase) -> list:
        bucket = self.context.take_pending(sheet.id, phase.phase_id)
        missing = []
        if self.catalog.requires_find(phase.phase_id) and bucket["find"] is None:
            missing.append(Stage.FIND.value)
        if phase.setup_time > 0 and bucket["setup"] is None:
            missing.append(Stage.SETUP.value)
        return missing

    # ---------- INÍCIO DE ETAPA ----------
    def start_find(self, sheet_id, phase_id, resolution: Optional[Resolution] = None):
        return self.start(sheet_id, phase_id, Stage.FIND, resolution)

    def start_setup(self, sheet_id, phase_id, resolution: Optional[Resolution] = None):
        return self.start(sheet_id, phase_id, Stage.SETUP, resolution)

    def start_production(self, sheet_id, phase_id, resolution: Optional[Resolution] = None):
        return self.start(sheet_id, phase_id, Stage.PRODUCTION, resolution)

    def start(self, sheet_id, phase_id, stage, resolution: Optional[Resolution] = None) -> Optional[WorkLog]:
        """
        Abre um registro da etapa. Retorna None somente quando o operador
        escolhe Abort no diálogo de sessão aberta.
        """
        stage = Stage(stage)
        with self.context.lock:
            self._ensure_not_blocked(sheet_id)

            dead = self.store.get_open_dead_time(self.operator_id)
            if dead is not None:
                self.context.open_dead(dead)
                raise ConflictError(
                    "Finish the running dead-time before starting work.",
                    open_record=dead, reason="open-dead-time",
                )

            open_record = self._refresh_open()
            if open_record is not None:
                same_phase = open_record.sheet_id == int(sheet_id) and open_record.phase_id == phase_id
                if same_phase and (open_record.stage, stage) in CHAINED:
                    # valida a próxima etapa antes de fechar a atual
                    self._openable(sheet_id, phase_id, stage, closing=open_record.stage)
                    self._close_prestage(open_record)
                elif resolution is None:
                    raise ConflictError(
                        "You are already working on another phase.",
                        open_record=open_record, reason="open-session",
                    )
                elif isinstance(resolution, Abort):
                    print(f"[SESSION] {self.operator_id} abortou início de {stage.value} na fase {phase_id}.")
                    return None
                else:
                    self._resolve(open_record, resolution)

            return self._open(sheet_id, phase_id, stage)

    def _openable(self, sheet_id, phase_id, stage: Stage, closing: Optional[Stage] = None):
        """
        Confere se a etapa pode ser aberta agora, sem gravar nada.
        closing: etapa prévia que será fechada logo antes (conta como feita).
        """
        sheet = self.store.get_sheet(int(sheet_id))
        if sheet is None:
            raise NotFoundError(f"Production sheet {sheet_id} not found.", sheetId=sheet_id)
        phase = sheet.phase(phase_id)
        if phase is None:
            raise ValidationError(f"Phase {phase_id} is not part of this sheet.", phaseId=phase_id)

        rem = remaining(sheet, phase_id)
        if rem <= 0:
            if sheet.done_by_phase().get(phase_id, 0) >= sheet.quantity:
                raise ValidationError("Phase already completed.", phaseId=phase_id)
            raise ConflictError("Nothing to start for this phase yet.", reason="upstream-exhausted", phaseId=phase_id)

        if stage is Stage.FIND:
            if not self.catalog.requires_find(phase_id):
                raise ValidationError("This phase has no material search.", phaseId=phase_id)
        elif stage is Stage.SETUP:
            if phase.setup_time <= 0:
                raise ValidationError("This phase has no setup.", phaseId=phase_id)
        else:
            # o balde sai sempre do banco (processo pode ter reiniciado no meio)
            self._apply_pending(sheet.id, self._load_pending(sheet))
            missing = [m for m in self._prestages_missing(sheet, phase) if closing is None or m != closing.value]
            if missing:
                raise ValidationError(
                    f"Complete {' and '.join(missing)} before production.",
                    phaseId=phase_id, missing=missing,
                )
        return sheet, phase, rem

    def _open(self, sheet_id, phase_id, stage: Stage) -> WorkLog:
        sheet, phase, rem = self._openable(sheet_id, phase_id, stage)
        find_seconds = setup_seconds = None
        total_quantity = 0
        if stage is Stage.PRODUCTION:
            bucket = self.context.take_pending(sheet.id, phase_id)
            find_seconds = bucket["find"] or 0
            setup_seconds = bucket["setup"] or 0
            total_quantity = rem

        record = self.store.start_session(
            self.operator_id, sheet.id, phase_id, stage, self.clock(),
            find_seconds=find_seconds, setup_seconds=setup_seconds, total_quantity=total_quantity,
        )

        self.context.enter(record)
        if stage is Stage.PRODUCTION:
            self.context.clear_pending(phase_id)
        print(f"[SESSION] {self.operator_id} iniciou {stage.value} na fase {phase_id} "
              f"da folha {sheet.qr_value} (restante {rem}).")
        self._notify("started", record, sheet=sheet, remaining_qty=rem)
        return record

    def _resolve(self, open_record: WorkLog, resolution: Resolution):
        if isinstance(resolution, FullFinish):
            if open_record.stage is Stage.PRODUCTION:
                self._close_production(open_record, None)
            else:
                self._close_prestage(open_record)
        elif isinstance(resolution, PartialFinish):
            if open_record.stage is not Stage.PRODUCTION:
                raise ValidationError("Only a production stage can be finished partially.")
            self._close_production(open_record, resolution.quantity)
        else:
            raise ValidationError(f"Unknown resolution: {resolution!r}")

    # ---------- FIM DE ETAPA ----------
    def finish(self, quantity=None, then_setup: bool = False):
        """Fecha a etapa corrente; quantity só vale para produção (None = total)."""
        with self.context.lock:
            record = self._current_record()
            if record.stage is Stage.PRODUCTION:
                return self._close_production(record, quantity)
            if quantity is not None:
                raise ValidationError("Quantity applies only to production.")
            if then_setup and record.stage is Stage.FIND:
                self._openable(record.sheet_id, record.phase_id, Stage.SETUP)
            closed = self._close_prestage(record)
            if then_setup and record.stage is Stage.FIND:
                self._open(record.sheet_id, record.phase_id, Stage.SETUP)
            return closed

    def finish_find(self, then_setup: bool = False):
        with self.context.lock:
            if self._current_record().stage is not Stage.FIND:
                raise ValidationError("No material search is running.")
            return self.finish(then_setup=then_setup)

    def finish_setup(self):
        with self.context.lock:
            if self._current_record().stage is not Stage.SETUP:
                raise ValidationError("No setup is running.")
            return self.finish()

    def finish_production(self, quantity=None):
        with self.context.lock:
            if self._current_record().stage is not Stage.PRODUCTION:
                raise ValidationError("No production is running.")
            return self.finish(quantity=quantity)

    def close_exhausted(self) -> WorkLog:
        """Fecha com 0 peças uma produção cuja quantidade a montante já foi consumida."""
        with self.context.lock:
            record = self._current_record()
            if record.stage is not Stage.PRODUCTION:
                raise ValidationError("No production is running.")
            sheet = self.store.get_sheet(record.sheet_id)
            if remaining(sheet, record.phase_id) > 0:
                raise ValidationError("Pieces are still available; finish fully or partially.")
            return self._close(record, 0)

    def _close_prestage(self, record: WorkLog) -> WorkLog:
        closed = self._close(record, 0)
        seconds = closed.find_material_time if closed.stage is Stage.FIND else closed.setup_time
        self.context.add_pending(closed.sheet_id, closed.phase_id, closed.stage, seconds)
        return closed

    def _close_production(self, record: WorkLog, quantity) -> WorkLog:
        sheet = self.store.get_sheet(record.sheet_id)
        rem = remaining(sheet, record.phase_id)
        if rem <= 0:
            raise ConflictError("Nothing to finish for this phase.", open_record=record, reason="upstream-exhausted")
        if quantity is None:
            quantity_done = rem
        else:
            quantity_done = _parse_int(quantity)
            if quantity_done <= 0 or quantity_done > rem:
                raise ValidationError(
                    f"Quantity must be between 1 and {rem}.",
                    quantity=quantity_done, remaining=rem,
                )
        return self._close(record, quantity_done)

    def _close(self, record: WorkLog, quantity_done: int) -> WorkLog:
        now = self.clock()
        elapsed = elapsed_seconds(record.start_time, now)
        closed = self.store.finish_session(record.id, now, quantity_done, elapsed)
        self.context.leave()
        print(f"[SESSION] {self.operator_id} finalizou {record.stage.value} na fase {record.phase_id} "
              f"({quantity_done} pç em {format_duration(elapsed)}).")
        self._notify("finished", closed)
        return closed

    # ---------- AUXILIARES ----------
    def _ensure_not_blocked(self, sheet_id=None):
        blocked = self.context.blocked_sheet_id
        if blocked is not None and (sheet_id is None or int(sheet_id) != blocked):
            raise ConflictError(
                "Return to the sheet with your open session first.",
                open_record=self.context.record, reason="wrong-sheet", sheetId=blocked,
            )

    def _refresh_open(self) -> Optional[WorkLog]:
        record = self.store.get_open_session(self.operator_id)
        if record is not None:
            self.context.enter(record)
        else:
            self.context.leave()
        return record

    def _current_record(self) -> WorkLog:
        self._ensure_not_blocked()
        record = self._refresh_open()
        if record is None:
            raise ValidationError("No stage is running.")
        return record

    def _notify(self, event: str, record: WorkLog, **extra):
        if self.notifier is None:
            return
        try:
            self.notifier.stage_changed(self.operator_id, event, record, **extra)
        except Exception as e:
            print(f"[SESSION] Falha ao notificar painel ao vivo ({event}): {e}")
