# shopfloor/config.py
from dotenv import load_dotenv
import os

dotenv_path = os.path.join(os.path.dirname(__file__), '..', '.env')
load_dotenv(dotenv_path=dotenv_path)

DATABASE_URL = os.getenv('DATABASE_URL')
DB_NAME = os.getenv('DB_NAME', 'shopfloor')

MQTT_BROKER_URL = os.getenv('MQTT_BROKER_URL')
MQTT_BROKER_PORT = int(os.getenv('MQTT_BROKER_PORT', 1883))
MQTT_USERNAME = os.getenv('MQTT_USERNAME')
MQTT_PASSWORD = os.getenv('MQTT_PASSWORD')
MQTT_CLIENT_ID = os.getenv('MQTT_CLIENT_ID')
MQTT_STAGE_TOPIC = os.getenv('MQTT_STAGE_TOPIC', 'ControleFases')

# intervalo do painel ao vivo, em segundos
LIVE_POLL_SECONDS = float(os.getenv('LIVE_POLL_SECONDS', 5))

# fases que exigem busca de material antes do setup
FIND_MATERIAL_PHASES = frozenset(
    p.strip() for p in os.getenv('FIND_MATERIAL_PHASES', '2,30').split(',') if p.strip()
)

SECRET_KEY = os.getenv('SECRET_KEY', 'chave-secreta')
