from __future__ import annotations

import logging
from typing import Optional

from app.api.services.ghl_service import GHLService

logger = logging.getLogger("keywords")

UNSUBSCRIBED_TAG = "whatsapp_unsubscribed"
STOP_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE"})
START_KEYWORDS = frozenset({"START", "UNSTOP"})


def route_keywords(
    text: Optional[str],
    crm: GHLService,
    contact_id: str,
    location_id: Optional[str] = None,
) -> Optional[str]:
    """
    Efeito colateral por palavra-chave exata (não filtra a mensagem: ela é
    registrada no GHL de qualquer jeito). Devolve "stop", "start" ou None.
    """
    normalized = (text or "").strip().upper()

    if normalized in STOP_KEYWORDS:
        logger.info("KEYWORD_STOP: contact_id=%s", contact_id)
        crm.add_tags(contact_id, [UNSUBSCRIBED_TAG])
        return "stop"

    if normalized in START_KEYWORDS:
        logger.info("KEYWORD_START: contact_id=%s", contact_id)
        crm.remove_tags(contact_id, [UNSUBSCRIBED_TAG], location_id)
        return "start"

    return None
