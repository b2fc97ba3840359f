import os
from dotenv import load_dotenv

load_dotenv()

'''Database'''
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agri_monitor.db")

'''Managed backend (identity service + object storage)'''
BACKEND_URL = os.getenv("BACKEND_URL", "")
BACKEND_SERVICE_KEY = os.getenv("BACKEND_SERVICE_KEY", "")
BACKEND_TIMEOUT = float(os.getenv("BACKEND_TIMEOUT", 10))

AUDIO_BUCKET = os.getenv("AUDIO_BUCKET", "audio-files")
AUDIO_PREFIX = os.getenv("AUDIO_PREFIX", "uploads")

'''Outbound relay'''
RELAY_CONNECT_TIMEOUT = float(os.getenv("RELAY_CONNECT_TIMEOUT", 5))
RELAY_LINGER = float(os.getenv("RELAY_LINGER", 1))
RELAY_DEFAULT_TOPIC = os.getenv("RELAY_DEFAULT_TOPIC", "out/esp32")
RELAY_FALLBACK_PORT = int(os.getenv("RELAY_FALLBACK_PORT", 8080))
RELAY_FALLBACK_PATH = os.getenv("RELAY_FALLBACK_PATH", "/api/publish")
RELAY_WS_PATH = os.getenv("RELAY_WS_PATH", "/mqtt")

'''Broker settings shown to a user who never saved any'''
DEFAULT_BROKER_HOST = os.getenv("DEFAULT_BROKER_HOST", "110.164.222.23")
DEFAULT_BROKER_PORT = int(os.getenv("DEFAULT_BROKER_PORT", 1883))
DEFAULT_BROKER_MESSAGE = os.getenv("DEFAULT_BROKER_MESSAGE", "out/esp32")

'''Roles'''
ADMIN_ROLE = "admin"
DEFAULT_ROLE = "user"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
API_PORT = int(os.getenv("API_PORT", 8000))
