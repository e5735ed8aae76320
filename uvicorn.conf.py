from app.core.config import get_settings

settings = get_settings()

app = "app.main:app"
host = settings.BACKEND_HOST
port = settings.BACKEND_PORT
log_level = "debug" if settings.DEBUG else "info"
# Socket.IO rooms live in process memory, so dashboards need a single worker.
workers = 1
