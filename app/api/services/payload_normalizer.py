"""
Normalização dos webhooks do Ultramsg.

O formato do payload muda entre versões do Ultramsg (campos no root ou dentro
de "data", snake_case ou camelCase). Cada campo é procurado numa lista
ordenada de caminhos; o primeiro valor não vazio vence. As listas abaixo são
a parte mais sensível do bridge: mudar a ordem muda qual campo ganha quando o
payload traz os dois.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.schemas.whatsapp import IncomingMessage, MediaItem, StatusEvent

logger = logging.getLogger("ultramsg.webhook")

# Escopos de busca: "data" = sub-objeto data (ou o payload inteiro), "root" = payload
Path = Tuple[str, str]

REFERENCE_ID_PATHS: Sequence[Path] = (
    ("root", "referenceId"),
    ("data", "referenceId"),
    ("data", "reference_id"),
    ("root", "reference_id"),
)
PHONE_PATHS: Sequence[Path] = (
    ("data", "from"),
    ("data", "sender"),
    ("data", "phone"),
    ("root", "from"),
    ("root", "sender"),
    ("root", "phone"),
)
TEXT_PATHS: Sequence[Path] = (
    ("data", "body"),
    ("data", "text"),
    ("root", "body"),
    ("root", "text"),
)
MEDIA_PATHS: Sequence[Path] = (
    ("data", "media"),
    ("root", "media"),
)
MESSAGE_ID_PATHS: Sequence[Path] = (
    ("data", "id"),
    ("root", "id"),
)
MEDIA_URL_KEYS: Sequence[str] = ("url", "media")

ACK_NAME_STATUS: Dict[str, str] = {
    "PENDING": "pending",
    "SERVER": "sent",
    "SENT": "sent",
    "DEVICE": "delivered",
    "DELIVERED": "delivered",
    "READ": "read",
    "PLAYED": "played",
}
ACK_CODE_STATUS: Dict[int, str] = {
    -1: "error",
    0: "pending",
    1: "sent",
    2: "delivered",
    3: "read",
    4: "played",
}


# ---------- Helpers ----------

def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "") or (isinstance(value, (list, dict)) and not value)


def _data_scope(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def first_present(payload: Dict[str, Any], paths: Sequence[Path]) -> Any:
    """Percorre os caminhos em ordem e devolve o primeiro valor não vazio."""
    scopes = {"root": payload, "data": _data_scope(payload)}
    for scope, key in paths:
        value = scopes[scope].get(key)
        if not _is_empty(value):
            return value
    return None


def _as_str(value: Any) -> Optional[str]:
    if _is_empty(value):
        return None
    return value if isinstance(value, str) else str(value)


def normalize_phone(raw: Any) -> Optional[str]:
    """
    "15551234567@s.whatsapp.net" -> "+15551234567"
    "5551234567"                 -> "+15551234567"  (10 dígitos = NANP)
    """
    phone = _as_str(raw)
    if not phone:
        return None

    phone = phone.split("@", 1)[0]
    if not phone.startswith("+"):
        if len(phone) == 10 and phone.isdigit():
            phone = "+1" + phone
        else:
            phone = "+" + phone.lstrip("+")

    return phone if phone != "+" else None


def extract_media(raw: Any) -> List[MediaItem]:
    """
    Aceita:
      - ausente            -> []
      - "https://..."      -> [{"url": "https://...", "type": "media"}]
      - [{"url": ...}, ..] -> um item por elemento
      - {"url": ...}       -> lista com um item
    Itens sem url são descartados.
    """
    if _is_empty(raw):
        return []

    if isinstance(raw, dict):
        raw = [raw]
    elif not isinstance(raw, list):
        raw = [raw]

    items: List[MediaItem] = []
    for item in raw:
        if isinstance(item, dict):
            url = None
            for key in MEDIA_URL_KEYS:
                if not _is_empty(item.get(key)):
                    url = item.get(key)
                    break
            media_type = _as_str(item.get("type")) or "media"
        else:
            url = item
            media_type = "media"

        url = _as_str(url)
        if url:
            items.append(MediaItem(url=url, type=media_type))

    return items


def _ack_code_as_int(value: Any) -> Optional[int]:
    """
    3, "3", " 3 ", "3.0", "3e0", 3.7 -> 3 (trunca como um cast para int).
    Não numérico, NaN/infinito ou bool -> None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def map_ack_status(ack_code: Any, ack_name: Any) -> Optional[str]:
    # 1) ackName (string) tem prioridade
    if isinstance(ack_name, str) and ack_name.strip():
        return ACK_NAME_STATUS.get(ack_name.strip().upper(), ack_name.strip().lower())

    # 2) ack numérico
    code = _ack_code_as_int(ack_code)
    if code is not None:
        return ACK_CODE_STATUS.get(code, str(code))

    # 3) ack como string não numérica ("read", "device"...)
    if isinstance(ack_code, str) and ack_code.strip():
        return ack_code.strip().lower()

    return None


# ---------- Normalizers ----------

def normalize_incoming_message(payload: Any) -> Optional[IncomingMessage]:
    if not isinstance(payload, dict):
        logger.warning("ULTRAMSG_INCOMING_INVALID: payload_type=%s", type(payload).__name__)
        return None

    phone = normalize_phone(first_present(payload, PHONE_PATHS))
    text = _as_str(first_present(payload, TEXT_PATHS))
    media = extract_media(first_present(payload, MEDIA_PATHS))

    if not phone or (not text and not media):
        logger.warning(
            "ULTRAMSG_INCOMING_INVALID: has_phone=%s has_text=%s media=%d keys=%s",
            bool(phone), bool(text), len(media), list(payload.keys()),
        )
        return None

    return IncomingMessage(
        phone=phone,
        text=text,
        media=media,
        instance_id=_as_str(payload.get("instanceId")),
        reference_id=_as_str(first_present(payload, REFERENCE_ID_PATHS)),
        message_id=_as_str(first_present(payload, MESSAGE_ID_PATHS)),
    )


def normalize_status_event(payload: Any) -> Optional[StatusEvent]:
    if not isinstance(payload, dict):
        logger.warning("ULTRAMSG_STATUS_INVALID: payload_type=%s", type(payload).__name__)
        return None

    data = _data_scope(payload)
    message_id = _as_str(first_present(payload, MESSAGE_ID_PATHS))
    ack_code = data.get("ack")
    status = map_ack_status(ack_code, data.get("ackName"))

    if not message_id or status is None:
        logger.warning(
            "ULTRAMSG_STATUS_INVALID: has_message_id=%s ack=%r ackName=%r",
            bool(message_id), ack_code, data.get("ackName"),
        )
        return None

    return StatusEvent(
        message_id=message_id,
        status=status,
        ack_code=ack_code,
        instance_id=_as_str(payload.get("instanceId")),
        reference_id=_as_str(payload.get("referenceId")),
    )
