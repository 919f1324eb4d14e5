# app/sheet_state.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from shopfloor.errors import ValidationError


class Stage(str, Enum):
    FIND = "find"
    SETUP = "setup"
    PRODUCTION = "production"


def _iso(ts: Optional[datetime]):
    return ts.isoformat() if ts else None


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """Segundos inteiros entre start e now. Nunca negativo (relógios fora de sincronia)."""
    return max(0, int((now - start).total_seconds()))


@dataclass(frozen=True)
class PhaseDefinition:
    phase_id: str
    position: int
    setup_time: float = 0
    production_time_per_piece: float = 0

    def to_dict(self):
        return {
            "phaseId": self.phase_id,
            "position": self.position,
            "setupTime": self.setup_time,
            "productionTimePerPiece": self.production_time_per_piece,
        }


@dataclass(frozen=True)
class WorkLog:
    id: int
    operator_id: str
    sheet_id: int
    phase_id: str
    stage: Stage
    start_time: datetime
    end_time: Optional[datetime] = None
    quantity_done: int = 0
    total_quantity: int = 0
    find_material_time: Optional[float] = None
    setup_time: Optional[float] = None
    production_time: Optional[float] = None
    order_number: str = ""
    sheet_number: str = ""
    product_id: str = ""
    position: int = 0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self):
        return {
            "id": self.id,
            "operatorId": self.operator_id,
            "sheetId": self.sheet_id,
            "orderNumber": self.order_number,
            "sheetNumber": self.sheet_number,
            "productId": self.product_id,
            "phaseId": self.phase_id,
            "position": self.position,
            "stage": self.stage.value,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "quantityDone": self.quantity_done,
            "totalQuantity": self.total_quantity,
            "findMaterialTime": self.find_material_time,
            "setupTime": self.setup_time,
            "productionTime": self.production_time,
        }


@dataclass(frozen=True)
class DeadTimeRecord:
    id: int
    operator_id: str
    code: int
    description: str
    start_time: datetime
    end_time: Optional[datetime] = None
    product_id: Optional[str] = None
    sheet_id: Optional[int] = None
    order_number: Optional[str] = None
    sheet_number: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self):
        return {
            "id": self.id,
            "operatorId": self.operator_id,
            "code": self.code,
            "description": self.description,
            "productId": self.product_id,
            "sheetId": self.sheet_id,
            "orderNumber": self.order_number,
            "sheetNumber": self.sheet_number,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
        }


@dataclass(frozen=True)
class SheetState:
    """
    Visão derivada de uma folha de produção: quantidade, fases congeladas
    (ordenadas por posição) e todos os registros de trabalho da folha.
    """
    id: int
    order_number: str
    sheet_number: str
    product_id: str
    quantity: int
    phases: tuple = ()
    logs: tuple = ()
    qr_value: str = ""

    def __post_init__(self):
        ordered = tuple(sorted(self.phases, key=lambda p: p.position))
        positions = [p.position for p in ordered]
        if len(positions) != len(set(positions)):
            raise ValidationError("Phase positions must be unique within a sheet.", sheetId=self.id)
        object.__setattr__(self, "phases", ordered)
        object.__setattr__(self, "logs", tuple(self.logs))

    def phase(self, phase_id: str) -> Optional[PhaseDefinition]:
        for p in self.phases:
            if p.phase_id == phase_id:
                return p
        return None

    def phase_index(self, phase_id: str) -> int:
        for i, p in enumerate(self.phases):
            if p.phase_id == phase_id:
                return i
        return -1

    def done_by_phase(self) -> dict:
        # só registros de produção fechados contam; cada registro uma vez
        done = {p.phase_id: 0 for p in self.phases}
        for log in self.logs:
            if log.stage is Stage.PRODUCTION and not log.is_open:
                done[log.phase_id] = done.get(log.phase_id, 0) + int(log.quantity_done or 0)
        return done

    def in_progress(self) -> dict:
        flags = {p.phase_id: False for p in self.phases}
        for log in self.logs:
            if log.stage is Stage.PRODUCTION and log.is_open:
                flags[log.phase_id] = True
        return flags

    @property
    def is_locked(self) -> bool:
        """Folha com qualquer trabalho registrado não aceita mais alteração."""
        return len(self.logs) > 0

    def phase_statuses(self) -> list:
        done = self.done_by_phase()
        progress = self.in_progress()
        statuses = []
        for i, p in enumerate(self.phases):
            upstream_done = self.quantity if i == 0 else done[self.phases[i - 1].phase_id]
            statuses.append({
                "phaseId": p.phase_id,
                "position": p.position,
                "done": done[p.phase_id],
                "total": self.quantity,
                "remaining": remaining(self, p.phase_id),
                "inProgress": progress[p.phase_id],
                "unlocked": i == 0 or upstream_done > 0,
                "inProgressBy": sorted({
                    l.operator_id for l in self.logs if l.is_open and l.phase_id == p.phase_id
                }),
                "doneBy": [
                    {"operatorId": l.operator_id, "quantity": l.quantity_done}
                    for l in self.logs
                    if not l.is_open and l.phase_id == p.phase_id
                    and l.stage is Stage.PRODUCTION and l.quantity_done > 0
                ],
            })
        return statuses

    def to_dict(self, with_logs: bool = True):
        d = {
            "id": self.id,
            "orderNumber": self.order_number,
            "sheetNumber": self.sheet_number,
            "productId": self.product_id,
            "quantity": self.quantity,
            "qrValue": self.qr_value,
            "locked": self.is_locked,
            "phases": [p.to_dict() for p in self.phases],
            "phaseStatuses": self.phase_statuses(),
        }
        if with_logs:
            d["phaseLogs"] = [l.to_dict() for l in self.logs]
        return d


def remaining(sheet: Optional[SheetState], phase_id: str) -> int:
    """
    Quantas peças ainda podem ser iniciadas na fase.

    Pipeline estrito: a primeira fase é limitada pela quantidade da folha,
    as demais pelo que a fase imediatamente anterior já concluiu.
    Folha ausente ou fase inexistente -> 0.
    """
    if sheet is None:
        return 0
    idx = sheet.phase_index(phase_id)
    if idx < 0:
        return 0
    done = sheet.done_by_phase()
    upstream = sheet.quantity if idx == 0 else done.get(sheet.phases[idx - 1].phase_id, 0)
    return max(0, int(upstream) - done.get(phase_id, 0))
