# state.py
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from app.sheet_state import DeadTimeRecord, Stage, WorkLog, elapsed_seconds


class SessionState(Enum):
    IDLE = 0
    FINDING = 1
    SETTING_UP = 2
    PRODUCING = 3


STATE_BY_STAGE = {
    Stage.FIND: SessionState.FINDING,
    Stage.SETUP: SessionState.SETTING_UP,
    Stage.PRODUCTION: SessionState.PRODUCING,
}


class DeadTimeState(Enum):
    IDLE = 0
    OPEN = 1


@dataclass
class SessionSnapshot:
    operator_id: str
    state: SessionState
    record: Optional[WorkLog] = None
    elapsed_seconds: int = 0
    blocked_sheet_id: Optional[int] = None
    pending_times: dict = field(default_factory=dict)
    dead_time: Optional[DeadTimeRecord] = None
    taken_at: Optional[datetime] = None

    @property
    def blocked(self) -> bool:
        return self.blocked_sheet_id is not None

    def to_dict(self):
        return {
            "operatorId": self.operator_id,
            "state": self.state.name,
            "record": self.record.to_dict() if self.record else None,
            "elapsedSeconds": self.elapsed_seconds,
            "blockedSheetId": self.blocked_sheet_id,
            "pendingTimes": {k: dict(v) for k, v in self.pending_times.items()},
            "deadTime": self.dead_time.to_dict() if self.dead_time else None,
        }


class OperatorContext:
    """
    Estado de um operador. Um por operador, nunca global do processo.
    O relógio local não é fonte de verdade: o tempo decorrido sempre sai
    do start_time do registro aberto no banco.
    """

    def __init__(self, operator_id: str):
        self.operator_id = operator_id
        self.lock = threading.RLock()

        self.state = SessionState.IDLE
        self.record: Optional[WorkLog] = None
        self.blocked_sheet_id: Optional[int] = None

        # segundos de busca/setup aguardando a próxima produção, por fase.
        # None = etapa ainda não feita nesta unidade de trabalho
        self.pending_sheet_id: Optional[int] = None
        self.pending_times: dict = {}

        self.dead_state = DeadTimeState.IDLE
        self.dead_record: Optional[DeadTimeRecord] = None

    # ---------- SESSÃO ----------
    def enter(self, record: WorkLog):
        self.record = record
        self.state = STATE_BY_STAGE[record.stage]

    def leave(self):
        self.record = None
        self.state = SessionState.IDLE

    def reset_pending(self, sheet_id: Optional[int]):
        self.pending_sheet_id = sheet_id
        self.pending_times = {}

    def add_pending(self, sheet_id: int, phase_id: str, stage: Stage, seconds):
        if self.pending_sheet_id != sheet_id:
            self.reset_pending(sheet_id)
        bucket = self.pending_times.setdefault(phase_id, {"find": None, "setup": None})
        bucket[stage.value] = (bucket[stage.value] or 0) + int(seconds or 0)

    def take_pending(self, sheet_id: int, phase_id: str) -> dict:
        if self.pending_sheet_id != sheet_id:
            return {"find": None, "setup": None}
        return dict(self.pending_times.get(phase_id) or {"find": None, "setup": None})

    def clear_pending(self, phase_id: str):
        self.pending_times.pop(phase_id, None)

    # ---------- TEMPO MORTO ----------
    def open_dead(self, record: DeadTimeRecord):
        self.dead_record = record
        self.dead_state = DeadTimeState.OPEN

    def close_dead(self):
        self.dead_record = None
        self.dead_state = DeadTimeState.IDLE

    def snapshot(self, now: datetime) -> SessionSnapshot:
        with self.lock:
            elapsed = elapsed_seconds(self.record.start_time, now) if self.record else 0
            return SessionSnapshot(
                operator_id=self.operator_id,
                state=self.state,
                record=self.record,
                elapsed_seconds=elapsed,
                blocked_sheet_id=self.blocked_sheet_id,
                pending_times={k: dict(v) for k, v in self.pending_times.items()},
                dead_time=self.dead_record,
                taken_at=now,
            )
