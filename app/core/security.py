## Validação de quem está chamando (chave compartilhada)
import hmac
from typing import Optional

from fastapi import Header, HTTPException, Query

from app.core.config import settings


def _matches(given: Optional[str], expected: str) -> bool:
    return given is not None and hmac.compare_digest(given, expected)


# /send e /onboard: chamados por workflow do GHL ou por admin
def verify_api_key(x_api_key: Optional[str] = Header(None)):
    if not settings.RELAY_API_KEY:
        return True
    if not _matches(x_api_key, settings.RELAY_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid API Key")
    return True


# /incoming e /status: o Ultramsg não manda header, só dá pra usar query string
def verify_webhook_secret(secret: Optional[str] = Query(None)):
    if not settings.WEBHOOK_SECRET:
        return True
    if not _matches(secret, settings.WEBHOOK_SECRET):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")
    return True
