"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: uvicorn workers) importe `roastery.asgi:app`.
- Toute la configuration FastAPI est centralisée dans roastery.app_setup.factory.
"""
import os

from roastery.app_setup.factory import configure_logging, create_app

configure_logging(os.getenv("LOG_LEVEL", "info").upper())
app = create_app()
