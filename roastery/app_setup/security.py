"""
Middleware de sécurité:
- CSRF: vérifie X-CSRF-Token contre le cookie csrf_token sur requêtes mutatives authentifiées par cookie.
  Exemption: webhook Stripe (signé, sans cookie).
- En-têtes: X-Frame-Options, X-Content-Type-Options, Referrer-Policy, Permissions-Policy, HSTS (si secure).
- Dépose un cookie CSRF si manquant (httponly=False pour que le front lise la valeur).
"""
import secrets
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from roastery.config import COOKIE_SECURE, SUPABASE_URL
from roastery.utils.security import COOKIE_NAME

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_EXEMPT_PATHS = {
    "/api/v1/payments/webhook",
}

def register_security_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        is_state_changing = request.method.upper() in ("POST", "PUT", "PATCH", "DELETE")
        has_session = bool(request.cookies.get(COOKIE_NAME))
        csrf_cookie = request.cookies.get(CSRF_COOKIE_NAME)
        set_csrf_cookie_value: Optional[str] = None
        if not csrf_cookie:
            set_csrf_cookie_value = secrets.token_urlsafe(32)

        # Bearer seul: pas de cookie ambiant, donc pas de CSRF possible
        if is_state_changing and has_session and request.url.path not in CSRF_EXEMPT_PATHS:
            token = request.headers.get(CSRF_HEADER_NAME, "")
            if not csrf_cookie or not token or not secrets.compare_digest(token, csrf_cookie):
                return JSONResponse(status_code=403, content={"detail": "CSRF verification failed"})

        response = await call_next(request)

        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
        if COOKIE_SECURE:
            response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")

        csp_connect = ["'self'", "https://api.stripe.com"]
        if SUPABASE_URL:
            csp_connect.append(SUPABASE_URL.rstrip("/"))
        swagger_cdns = ["https://cdn.jsdelivr.net", "https://unpkg.com"]
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "base-uri 'self'; object-src 'none'; frame-ancestors 'none'; "
            "img-src 'self' data: https://fastapi.tiangolo.com; "
            f"style-src 'self' 'unsafe-inline' {' '.join(swagger_cdns)}; "
            f"script-src 'self' 'unsafe-inline' https://js.stripe.com {' '.join(swagger_cdns)}; "
            "frame-src https://js.stripe.com; "
            f"connect-src {' '.join(csp_connect + swagger_cdns)}"
        )

        if set_csrf_cookie_value:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=set_csrf_cookie_value,
                httponly=False,
                secure=COOKIE_SECURE,
                samesite="Lax",
                max_age=60 * 60,
                path="/",
            )
        return response
