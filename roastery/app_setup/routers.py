"""
Registre central des routers (API v1, health).
- API v1: payments, orders, invoices, settings
- Health: health_router
"""
from fastapi import FastAPI

from roastery.payments import views as payments_views
from roastery.orders import views as orders_views
from roastery.invoices import views as invoices_views
from roastery.store_settings import views as settings_views
from roastery.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    """
    Agrège tous les routers de l’application.
    - L’ordre n’a pas d’impact sauf conflits de chemins (évités par préfixes).
    """
    # API v1
    app.include_router(payments_views.router)
    app.include_router(orders_views.router)
    app.include_router(invoices_views.router)
    app.include_router(settings_views.router)
    # Health & monitoring
    app.include_router(health_router)
