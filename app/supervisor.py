# app/supervisor.py
import threading
import time

from app.dead_time import DeadTimeTracker
from app.live_status import LiveStatusAggregator
from app.session_machine import SessionStateMachine
from shopfloor.config import LIVE_POLL_SECONDS, MQTT_STAGE_TOPIC
from shopfloor.errors import BestEffortError
from shopfloor.utils import utcnow
from state import OperatorContext


class PhaseSupervisor:
    """
    Dono dos contextos de operador (um por operador, criado sob demanda),
    das notificações do painel (Socket.IO + MQTT) e do poll do painel ao vivo.
    """

    def __init__(self, store, catalog, socketio=None, mqttc=None,
                 poll_interval=LIVE_POLL_SECONDS, roster=(), clock=utcnow):
        self.store = store
        self.catalog = catalog
        self.socketio = socketio
        self.mqttc = mqttc
        self.poll_interval = poll_interval
        self.clock = clock
        self.live = LiveStatusAggregator(store, roster=roster, clock=clock)

        self._contexts = {}
        self._lock = threading.Lock()
        self._poll_thread = None
        self._last_status = None

    # ---------- CONTEXTOS ----------
    def context(self, operator_id) -> OperatorContext:
        operator_id = str(operator_id).strip()
        with self._lock:
            ctx = self._contexts.get(operator_id)
            if ctx is None:
                ctx = OperatorContext(operator_id)
                self._contexts[operator_id] = ctx
            return ctx

    def machine_for(self, operator_id) -> SessionStateMachine:
        return SessionStateMachine(self.context(operator_id), self.store, self.catalog,
                                   notifier=self, clock=self.clock)

    def dead_time_for(self, operator_id) -> DeadTimeTracker:
        return DeadTimeTracker(self.context(operator_id), self.store, self.catalog,
                               notifier=self, clock=self.clock)

    # ---------- NOTIFICAÇÕES ----------
    def stage_changed(self, operator_id, event, record, sheet=None, remaining_qty=None):
        payload = {
            "operatorId": operator_id,
            "event": event,
            "record": record.to_dict(),
        }
        if sheet is not None:
            payload["qrValue"] = sheet.qr_value
        if remaining_qty is not None:
            payload["remaining"] = remaining_qty
        self._publish(operator_id, payload)

    def dead_time_changed(self, operator_id, event, record):
        self._publish(operator_id, {
            "operatorId": operator_id,
            "event": event,
            "record": record.to_dict(),
        })

    def _publish(self, operator_id, payload):
        erros = []
        if self.socketio is not None:
            try:
                self.socketio.emit("operator/stage_changed", payload, room=f"operator:{operator_id}")
            except Exception as e:
                erros.append(f"socketio: {e}")
        if self.mqttc is not None:
            try:
                self.mqttc.publish(f"{MQTT_STAGE_TOPIC}/{operator_id}", payload["event"])
            except Exception as e:
                erros.append(f"mqtt: {e}")
        if erros:
            raise BestEffortError("Live notification failed.", operatorId=operator_id, errors=erros)

    # ---------- PAINEL AO VIVO ----------
    def live_status(self, now=None):
        status = self.live.status(now)
        self._last_status = status
        return status

    def last_status(self):
        """Último status calculado; calcula na hora se o poll ainda não rodou."""
        return self._last_status or self.live_status()

    def poll_once(self):
        try:
            status = self.live_status()
        except Exception as e:
            # falha de poll não derruba nada: tenta de novo no próximo tick
            print(f"[LIVE] Falha no poll do painel: {e}")
            return None
        if self.socketio is not None:
            try:
                self.socketio.emit("live/status", status.to_dict())
            except Exception as e:
                print(f"[LIVE] Falha ao enviar status: {e}")
        return status

    def start_polling(self):
        if self._poll_thread is not None:
            return

        def loop():
            while True:
                self.poll_once()
                time.sleep(self.poll_interval)

        self._poll_thread = threading.Thread(target=loop, daemon=True)
        self._poll_thread.start()
        print(f"[LIVE] Poll do painel a cada {self.poll_interval} s.")
