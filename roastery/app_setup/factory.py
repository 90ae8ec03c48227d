"""
Factory d’application pour les entrypoints (roastery.asgi, tests).
Ordonne les étapes d’initialisation de manière lisible et testable.
"""
import logging

from fastapi import FastAPI

from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_no_cache_middleware, register_force_https_middleware
from .security import register_security_middleware
from .exceptions import register_exception_handlers
from .routers import register_routers

def configure_logging(level: str = "INFO") -> None:
    # Les loggers roastery.* remontent vers la sortie d'uvicorn
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

def create_app() -> FastAPI:
    """
    Construit l’app FastAPI avec le lifespan et enregistre:
      1) middlewares de base: CORS, TrustedHost, ProxyHeaders
      2) sécurité (en-têtes + CSRF) et no-cache des lectures admin
      3) gestionnaires d’exceptions
      4) tous les routers (API v1, health)
      5) redirection HTTPS, ajoutée en dernier pour s’exécuter en premier
    """
    app = FastAPI(title="Roastery Checkout API", lifespan=lifespan)
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_no_cache_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    register_force_https_middleware(app)
    return app
