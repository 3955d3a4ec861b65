# app/services/twilio_client.py
import logging
from twilio.rest import Client
from ..config import settings

logger = logging.getLogger(__name__)

def _normalize_sms(number: str) -> str:
    # El formato del número lo valida el módulo de usuarios; aquí solo limpiamos espacios/guiones
    if not number:
        return number
    number = number.strip().replace(" ", "").replace("-", "")
    if not number.startswith("+"):
        number = "+" + number
    return number

def get_twilio_client() -> Client | None:
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
        return None
    return Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)

def send_sms(to: str, body: str) -> dict:
    """
    Envía un SMS usando Twilio.
    - Si DRY_RUN=true: no envía; registra en logs y regresa {"dry_run": True, ...}
    - Si faltan credenciales: modo MOCK (no envía) y regresa {"mock": True, ...}
    - Si hay error al enviar: registra y regresa {"error": "..."}
    """
    to_norm = _normalize_sms(to)
    from_norm = _normalize_sms(settings.TWILIO_SMS_FROM or "")
    flat = body.replace("\n", " | ")

    # DRY RUN: solo log, no se consume Twilio
    if settings.DRY_RUN:
        logger.info("[DRY_RUN SMS] to=%s body=%s", to_norm, flat)
        return {"dry_run": True, "to": to_norm, "body": body}

    client = get_twilio_client()

    # MOCK si no hay credenciales/configuración
    if client is None or not from_norm:
        logger.info("[SMS MOCK] to=%s body=%s", to_norm, flat)
        return {"mock": True, "to": to_norm, "body": body}

    try:
        msg = client.messages.create(from_=from_norm, to=to_norm, body=body)
        return {"sid": msg.sid, "to": to_norm}
    except Exception as e:
        logger.warning("[SMS ERROR] to=%s err=%s", to_norm, e)
        return {"error": str(e), "to": to_norm}
