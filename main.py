import eventlet
eventlet.monkey_patch()

import os

from flask import Flask
from flask_mqtt import Mqtt
from flask_socketio import SocketIO

from shopfloor import config
from shopfloor.catalog import PhaseCatalog
from shopfloor.db_core import connect_db
from shopfloor.mqtt_handlers import configurar_mqtt_handlers
from shopfloor.routes import configurar_rotas
from shopfloor.store import ShopFloorStore
from app.supervisor import PhaseSupervisor
from app.socketio_gateway import register_socketio_handlers


def create_app(engine=None, with_mqtt=True):
    # ───────────────────────────────────────────────
    # Inicialização do app Flask
    app = Flask(__name__)
    app.url_map.strict_slashes = False
    app.secret_key = config.SECRET_KEY

    # Configurações do MQTT
    app.config['MQTT_BROKER_URL'] = config.MQTT_BROKER_URL
    app.config['MQTT_BROKER_PORT'] = config.MQTT_BROKER_PORT
    app.config['MQTT_USERNAME'] = config.MQTT_USERNAME
    app.config['MQTT_PASSWORD'] = config.MQTT_PASSWORD
    app.config['MQTT_CLIENT_ID'] = config.MQTT_CLIENT_ID

    # Banco e catálogo
    store = ShopFloorStore(engine if engine is not None else connect_db())
    catalog = PhaseCatalog(store)

    # Inicialização de extensões
    socketio = SocketIO(app, cors_allowed_origins="*")
    mqtt = Mqtt() if with_mqtt and config.MQTT_BROKER_URL else None
    supervisor = PhaseSupervisor(store, catalog, socketio=socketio, mqttc=mqtt)

    # Registro de funcionalidades
    configurar_rotas(app, supervisor, store)
    register_socketio_handlers(socketio, supervisor)
    if mqtt is not None:
        configurar_mqtt_handlers(mqtt)
        mqtt.init_app(app)
    else:
        print("[MQTT] Broker não configurado; transições só pelo Socket.IO.")

    return app, socketio, supervisor

# ───────────────────────────────────────────────
# Execução da aplicação
if __name__ == '__main__':
    app, socketio, supervisor = create_app()
    supervisor.start_polling()
    socketio.run(app, host=os.getenv("IP_EXT", "0.0.0.0"), port=int(os.getenv("PORT_EXT", 7000)))
