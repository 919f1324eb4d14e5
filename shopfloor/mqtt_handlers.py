from shopfloor.config import MQTT_STAGE_TOPIC


def configurar_mqtt_handlers(mqtt):
    @mqtt.on_connect()
    def handle_connect(client, userdata, flags, rc):
        if rc == 0:
            print(f"[MQTT] Conectado ao broker. Publicando transições em {MQTT_STAGE_TOPIC}/<operador>.")
        else:
            print(f"[MQTT] Conexão recusada pelo broker (rc={rc}).")

    @mqtt.on_disconnect()
    def handle_disconnect(*args):
        # publicações seguem best-effort: o painel continua pelo Socket.IO
        print("[MQTT] Desconectado do broker.")
