# app/live_status.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.sheet_state import DeadTimeRecord, SheetState, Stage, WorkLog, elapsed_seconds, remaining
from shopfloor.utils import utcnow


def planned_seconds(sheet: Optional[SheetState], record: WorkLog) -> Optional[float]:
    """
    Tempo previsto da etapa aberta. Busca/setup: setup + peça x restante;
    produção: peça x quantidade fixada no início (não anda com a montante).
    None se a fase não está na folha.
    """
    phase = sheet.phase(record.phase_id) if sheet is not None else None
    if phase is None:
        return None
    if record.stage is Stage.PRODUCTION and record.total_quantity > 0:
        return phase.production_time_per_piece * record.total_quantity
    rem = remaining(sheet, record.phase_id)
    production = phase.production_time_per_piece * rem
    if record.stage is Stage.PRODUCTION:
        return production
    return phase.setup_time + production


@dataclass
class ActiveEntry:
    operator_id: str
    record: WorkLog
    running_seconds: int
    planned_seconds: Optional[float]
    is_overrun: bool

    def to_dict(self):
        r = self.record
        return {
            "operatorId": self.operator_id,
            "recordId": r.id,
            "stage": r.stage.value,
            "sheetId": r.sheet_id,
            "orderNumber": r.order_number,
            "sheetNumber": r.sheet_number,
            "productId": r.product_id,
            "phaseId": r.phase_id,
            "startTime": r.start_time.isoformat(),
            "runningSeconds": self.running_seconds,
            "plannedSeconds": self.planned_seconds,
            "isOverrun": self.is_overrun,
        }


@dataclass
class DeadTimeEntry:
    operator_id: str
    record: DeadTimeRecord
    running_seconds: int

    def to_dict(self):
        d = self.record.to_dict()
        d["runningSeconds"] = self.running_seconds
        return d


@dataclass
class IdleEntry:
    operator_id: str
    last_kind: Optional[str] = None  # "phase" | "deadTime"
    last_record: object = None
    idle_seconds: Optional[int] = None

    def to_dict(self):
        return {
            "operatorId": self.operator_id,
            "lastKind": self.last_kind,
            "lastActivity": self.last_record.to_dict() if self.last_record is not None else None,
            "finishedAt": self.last_record.end_time.isoformat() if self.last_record is not None else None,
            "idleSeconds": self.idle_seconds,
        }


@dataclass
class LiveStatus:
    active: list = field(default_factory=list)
    dead_time: list = field(default_factory=list)
    idle: list = field(default_factory=list)
    generated_at: Optional[datetime] = None

    def bucket_of(self, operator_id: str) -> Optional[str]:
        for name, entries in (("active", self.active), ("deadTime", self.dead_time), ("idle", self.idle)):
            if any(e.operator_id == operator_id for e in entries):
                return name
        return None

    def to_dict(self):
        return {
            "active": [e.to_dict() for e in self.active],
            "deadTime": [e.to_dict() for e in self.dead_time],
            "idle": [e.to_dict() for e in self.idle],
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
        }


class LiveStatusAggregator:
    """
    Painel ao vivo: cada operador cai em exatamente um balde.
    Precedência: tempo morto aberto > trabalho aberto > ocioso.
    """

    def __init__(self, store, roster=(), clock=utcnow):
        self.store = store
        self.roster = tuple(roster)
        self.clock = clock

    def status(self, now: Optional[datetime] = None) -> LiveStatus:
        return self.from_raw(self.store.poll_live_status(), now)

    def from_raw(self, raw: dict, now: Optional[datetime] = None) -> LiveStatus:
        now = now or self.clock()
        sheets = raw.get("sheets") or {}
        last_logs = raw.get("lastClosedLogs") or {}
        last_dead = raw.get("lastClosedDeadTimes") or {}

        open_work = {}
        for log in raw.get("openLogs") or []:
            previous = open_work.get(log.operator_id)
            if previous is not None:
                print(f"[LIVE] ANOMALIA: {log.operator_id} com mais de um registro aberto "
                      f"({previous.id}, {log.id}); usando o mais recente.")
                if (previous.start_time, previous.id) > (log.start_time, log.id):
                    continue
            open_work[log.operator_id] = log

        open_dead = {}
        for rec in raw.get("openDeadTimes") or []:
            previous = open_dead.get(rec.operator_id)
            if previous is not None and (previous.start_time, previous.id) > (rec.start_time, rec.id):
                continue
            open_dead[rec.operator_id] = rec

        operators = set(self.roster) | set(open_work) | set(open_dead) | set(last_logs) | set(last_dead)

        result = LiveStatus(generated_at=now)
        for op in sorted(operators):
            dead = open_dead.get(op)
            work = open_work.get(op)

            if dead is not None:
                if work is not None:
                    print(f"[LIVE] ANOMALIA: {op} com tempo morto {dead.id} e trabalho {work.id} abertos; "
                          f"mostrando tempo morto.")
                result.dead_time.append(DeadTimeEntry(op, dead, elapsed_seconds(dead.start_time, now)))
                continue

            if work is not None:
                running = elapsed_seconds(work.start_time, now)
                planned = planned_seconds(sheets.get(work.sheet_id), work)
                result.active.append(ActiveEntry(
                    operator_id=op,
                    record=work,
                    running_seconds=running,
                    planned_seconds=planned,
                    is_overrun=planned is not None and running > planned,
                ))
                continue

            result.idle.append(self._idle_entry(op, last_logs.get(op), last_dead.get(op), now))
        return result

    def _idle_entry(self, op, last_log, last_dead, now) -> IdleEntry:
        candidates = []
        if last_log is not None:
            candidates.append(("phase", last_log))
        if last_dead is not None:
            candidates.append(("deadTime", last_dead))
        if not candidates:
            return IdleEntry(op)
        kind, record = max(candidates, key=lambda c: c[1].end_time)
        return IdleEntry(op, kind, record, elapsed_seconds(record.end_time, now))
