# app/socketio_gateway.py
from flask_socketio import join_room
from flask import request


def register_socketio_handlers(socketio, supervisor):
    @socketio.on("join_operator")
    def join_operator(data):
        op = str((data or {}).get("operator") or "").strip()   # ex: "OP-17"
        if not op:
            return
        join_room(f"operator:{op}")          # cliente entra na sala do operador
        snap = supervisor.machine_for(op).rehydrate()
        socketio.emit("operator/session_snapshot", snap.to_dict(), room=request.sid)

    @socketio.on("live/request_sync")
    def handle_live_sync():
        # Devolve apenas para quem pediu (request.sid)
        dados = supervisor.last_status().to_dict()
        socketio.emit("live/status", dados, room=request.sid)
