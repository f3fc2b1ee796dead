from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from app.api.services.ghl_service import GHLService
from app.api.services.message_map_service import MessageMapService
from app.api.services.tenant_directory import TenantDirectory
from app.api.services.ultramsg_service import UltramsgService
from app.core.exceptions import (
    CredentialsNotConfigured,
    CrmCallFailed,
    InvalidMediaType,
    StoreUnavailable,
    ValidationFailed,
)
from app.schemas.whatsapp import ProviderCredentials, SendResult

logger = logging.getLogger("dispatcher")

MEDIA_TYPES = ("image", "document", "audio", "video")
DEFAULT_MEDIA_TYPE = "image"


def make_reference_id(sub_account_id: str, now: float) -> str:
    return f"{sub_account_id}_{int(now)}"


def extract_provider_message_id(resp: Any) -> Optional[str]:
    if not isinstance(resp, dict):
        return None
    value = resp.get("id") or resp.get("messageId")
    return str(value) if value else None


class OutboundDispatcher:
    """
    Envia uma mensagem (texto ou mídia) para um telefone via Ultramsg e,
    se houver locationId, espelha a mesma mensagem na conversa do GHL.
    Só o envio primário decide o resultado; o espelhamento é best-effort.
    """

    def __init__(
        self,
        directory: TenantDirectory,
        ultramsg: UltramsgService,
        message_map: MessageMapService,
        ghl_factory: Callable[[str], GHLService] = GHLService,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.ultramsg = ultramsg
        self.message_map = message_map
        self.ghl_factory = ghl_factory
        self.clock = clock

    def dispatch(
        self,
        sub_account_id: Optional[str],
        phone: Optional[str],
        text: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> SendResult:
        if not sub_account_id and location_id:
            sub_account_id = self.directory.resolve_sub_account_by_location(location_id)
            logger.info("SUB_ACCOUNT_FROM_LOCATION: location_id=%s sub_account_id=%s", location_id, sub_account_id)

        if not phone or not sub_account_id:
            raise ValidationFailed("Missing required fields", required=["phone", "subAccountId"])
        if not text and not media_url:
            raise ValidationFailed(
                "At least one of message or mediaUrl is required",
                required=["message or mediaUrl", "phone", "subAccountId"],
            )

        kind = "text"
        if media_url:
            kind = (media_type or DEFAULT_MEDIA_TYPE).strip().lower()
            if kind not in MEDIA_TYPES:
                raise InvalidMediaType("Invalid mediaType", allowed=list(MEDIA_TYPES), media_type=media_type)

        creds = self.directory.get_provider_credentials(sub_account_id)
        if not creds:
            raise CredentialsNotConfigured(
                "Ultramsg credentials not configured for this sub-account",
                sub_account_id=sub_account_id,
            )

        reference_id = make_reference_id(sub_account_id, self.clock())
        response = self._send(kind, creds, phone, text, media_url, reference_id)
        provider_message_id = extract_provider_message_id(response)

        logger.info(
            "WHATSAPP_SENT: sub_account_id=%s kind=%s to=%s ultramsg_id=%s reference_id=%s",
            sub_account_id, kind, phone, provider_message_id, reference_id,
        )

        crm_message_id = None
        if location_id:
            crm_message_id = self._mirror_to_crm(
                sub_account_id, phone, text, media_url, kind, location_id, provider_message_id,
            )

        return SendResult(
            sub_account_id=sub_account_id,
            reference_id=reference_id,
            provider_response=response,
            provider_message_id=provider_message_id,
            crm_message_id=crm_message_id,
        )

    def _send(
        self,
        kind: str,
        creds: ProviderCredentials,
        phone: str,
        text: Optional[str],
        media_url: Optional[str],
        reference_id: str,
    ) -> Dict[str, Any]:
        args = (creds.instance_id, creds.api_token, phone)
        if kind == "image":
            return self.ultramsg.send_image(*args, media_url, caption=text, reference_id=reference_id)
        if kind == "document":
            return self.ultramsg.send_document(*args, media_url, filename=None, reference_id=reference_id)
        if kind == "audio":
            return self.ultramsg.send_audio(*args, media_url, reference_id=reference_id)
        if kind == "video":
            return self.ultramsg.send_video(*args, media_url, caption=text, reference_id=reference_id)
        return self.ultramsg.send_text(*args, text, reference_id=reference_id)

    def _mirror_to_crm(
        self,
        sub_account_id: str,
        phone: str,
        text: Optional[str],
        media_url: Optional[str],
        kind: str,
        location_id: str,
        provider_message_id: Optional[str],
    ) -> Optional[str]:
        api_key = self.directory.get_crm_api_key(sub_account_id)
        if not api_key:
            logger.warning("GHL_MIRROR_SKIPPED: no api key sub_account_id=%s", sub_account_id)
            return None

        try:
            crm = self.ghl_factory(api_key)
            contact_id = crm.find_or_create_contact_by_phone(phone, location_id)
            created = crm.create_conversation_message(
                contact_id,
                text,
                [{"url": media_url, "type": kind}] if media_url else None,
                "whatsapp",
                location_id,
            )
            crm_message_id = GHLService.extract_message_id(created)
        except (CrmCallFailed, requests.RequestException) as e:
            logger.warning("GHL_MIRROR_FAILED: sub_account_id=%s err=%r", sub_account_id, e)
            return None

        if provider_message_id and crm_message_id:
            try:
                self.message_map.upsert_map(provider_message_id, crm_message_id, sub_account_id)
            except StoreUnavailable as e:
                logger.warning("MESSAGE_MAP_SKIPPED: ultramsg_id=%s err=%r", provider_message_id, e)
        return crm_message_id
