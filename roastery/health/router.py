from fastapi import APIRouter, Request

from roastery import config
from roastery.notifications import brevo
from roastery.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/config")
def health_config():
    """Présence (jamais la valeur) des secrets nécessaires au checkout."""
    return {
        "stripe": bool(config.STRIPE_SECRET_KEY),
        "stripe_webhook": bool(config.STRIPE_WEBHOOK_SECRET),
        "supabase": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY),
        "email": brevo.is_configured(),
    }

@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
