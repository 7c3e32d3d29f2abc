"""
ASGI entry point for the local control API.

Used by uvicorn (see server.main). Settings come from the process
environment, optionally seeded from a .env file.
"""

from dotenv import load_dotenv

load_dotenv()

# pylint: disable=wrong-import-position
from config import AppConfig
from observability.logger import log_event
from server.app import create_app

config = AppConfig.load_from_env()

log_event({
    "event_type": "CONTROL_API_STARTING",
    "env": config.env,
    "api_base_url": config.api_base_url,
})

app = create_app(config=config)
