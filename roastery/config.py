# roastery.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Brevo), sécurité cookies, CORS/hosts
- Fournit les valeurs par défaut des frais de port (écrasées par la table shop_settings)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_int(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def _env_bool(name: str, default: bool) -> bool:
    raw = _clean_env(os.getenv(name) or "").lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")

# Supabase: URLs et clés (public/anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Stripe: clés publiques/privées et secret webhook
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_CURRENCY = (_clean_env(os.getenv("STRIPE_CURRENCY") or "") or "gbp").lower()

# Limites Stripe sur les metadata: 500 caractères par valeur, 50 clés par objet
STRIPE_METADATA_VALUE_MAX = _env_int("STRIPE_METADATA_VALUE_MAX", 500)
STRIPE_METADATA_MAX_KEYS = 50
STRIPE_METADATA_TRUNCATION_MARKER = "..."

# Prix et frais de port (en pence). Les frais/seuil sont surchargés par shop_settings.
PRICE_TOLERANCE_PENCE = _env_int("PRICE_TOLERANCE_PENCE", 1)
DEFAULT_DELIVERY_FEE_PENCE = _env_int("DEFAULT_DELIVERY_FEE_PENCE", 499)
DEFAULT_FREE_SHIPPING_THRESHOLD_PENCE = _env_int("DEFAULT_FREE_SHIPPING_THRESHOLD_PENCE", 3000)
DEFAULT_FREE_SHIPPING_ENABLED = _env_bool("DEFAULT_FREE_SHIPPING_ENABLED", True)

# Emails transactionnels (Brevo)
BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
BREVO_API_KEY = _clean_env(os.getenv("BREVO_API_KEY") or "")
BREVO_SENDER_EMAIL = _clean_env(os.getenv("BREVO_SENDER_EMAIL") or os.getenv("EMAIL_FROM") or "")
BREVO_SENDER_NAME = _clean_env(os.getenv("BREVO_SENDER_NAME") or "") or "Roastery"
BREVO_TIMEOUT_SECONDS = _env_int("BREVO_TIMEOUT_SECONDS", 10)
COMPANY_NAME = _clean_env(os.getenv("COMPANY_NAME") or "") or "Roastery"
SUPPORT_EMAIL = _clean_env(os.getenv("SUPPORT_EMAIL") or "")
ADMIN_NOTIFICATION_EMAILS = [e.strip() for e in os.getenv("ADMIN_NOTIFICATION_EMAILS", "").split(",") if e.strip()]

# Factures
INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 14)

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
APP_BASE_URL = _clean_env(os.getenv("APP_BASE_URL") or "") or BASE_URL
