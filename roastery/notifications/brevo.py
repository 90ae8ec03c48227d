"""
Client Brevo (API transactionnelle SMTP) via httpx.

Un seul essai par email, pas de retry: l'appelant enregistre l'échec.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from roastery import config
from roastery.errors import NotificationError

logger = logging.getLogger(__name__)

def is_configured() -> bool:
    return bool(config.BREVO_API_KEY and config.BREVO_SENDER_EMAIL)

# module roastery.notifications.brevo
def send_email(
    *,
    to: List[Dict[str, str]],
    subject: str,
    html: str,
    text: str,
    reply_to: Optional[str] = None,
) -> Dict[str, Any]:
    """
    POST https://api.brevo.com/v3/smtp/email
    - to: [{"email": "...", "name": "..."}]
    - Lève NotificationError si la configuration manque ou si Brevo répond hors 2xx.
    Retour: corps JSON Brevo (ex: {"messageId": "<...>"})
    """
    if not is_configured():
        raise NotificationError("Brevo is not configured (BREVO_API_KEY / BREVO_SENDER_EMAIL)")
    payload: Dict[str, Any] = {
        "sender": {"email": config.BREVO_SENDER_EMAIL, "name": config.BREVO_SENDER_NAME},
        "to": to,
        "subject": subject,
        "htmlContent": html,
        "textContent": text,
    }
    if reply_to:
        payload["replyTo"] = {"email": reply_to}
    headers = {
        "api-key": config.BREVO_API_KEY,
        "accept": "application/json",
        "content-type": "application/json",
    }
    try:
        resp = httpx.post(config.BREVO_API_URL, json=payload, headers=headers, timeout=config.BREVO_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        raise NotificationError(f"Brevo request failed: {e}") from e
    if not (200 <= resp.status_code < 300):
        raise NotificationError(f"Brevo responded {resp.status_code}: {resp.text[:300]}")
    try:
        return resp.json()
    except ValueError:
        return {}
