from fastapi import FastAPI

from .api import health, host
from .config import get_settings
from .logging_config import configure_logging

configure_logging(get_settings().log_level)

app = FastAPI(title="Host Telemetry")

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(host.router, prefix="/host", tags=["host"])
