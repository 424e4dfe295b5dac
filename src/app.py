"""Orderflow FastAPI application.

Web server for checkout, payment and supplier webhooks and operator actions.
Every request runs inside the orderflow domain context. When tracking sync is
enabled, the scheduler loop runs alongside the server for the app's lifetime.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay (e.g. "production" → PostgreSQL).
from orderflow.app import create_app
from orderflow.config import OrderflowSettings
from orderflow.domain import orderflow
from orderflow.utils.logging import configure_logging

orderflow.init()

settings = OrderflowSettings.from_env()
configure_logging(settings)

app = create_app(settings)
