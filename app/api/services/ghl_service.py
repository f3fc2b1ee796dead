from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import urlparse

import requests

from app.api.services.payload_normalizer import normalize_phone
from app.core.config import settings
from app.core.exceptions import CrmCallFailed

logger = logging.getLogger("ghl")


class GHLService:
    """
    GHLService (LeadConnector API v2, robusto para variações de resposta)

    - Contato/conversa/mensagem às vezes vêm embrulhados ({"contact": {...}},
      {"message": {...}}) e às vezes direto no root.
    - Contato duplicado volta 400 com o id existente em meta.contactId: tratamos como sucesso.
    - Loga o essencial sem vazar token.
    """

    def __init__(self, api_key: str, base_url: str = None, version: str = None, timeout: int = None):
        self.api_key = api_key
        self.base_url = (base_url or settings.GHL_BASE_URL).rstrip("/")
        self.version = version or settings.GHL_API_VERSION
        self.timeout = timeout or settings.HTTP_TIMEOUT

    # ---------- Core helpers ----------

    def _headers(self, content_type: Optional[str] = "application/json") -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Version": self.version,
            "Accept": "application/json",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _req(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = requests.request(
                method=method.upper(),
                url=url,
                headers=self._headers(),
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("GHL_CONNECTION_ERR: method=%s path=%s err=%r", method.upper(), path, e)
            raise CrmCallFailed(f"GHL {method.upper()} {path} connection error: {e}") from e

        try:
            data: Union[Dict[str, Any], List[Any]] = r.json()
        except ValueError:
            data = {"_raw_text": r.text}

        logger.info("GHL_HTTP: method=%s path=%s status=%s", method.upper(), path, r.status_code)

        if r.status_code >= 300:
            raise CrmCallFailed(
                f"GHL {method.upper()} {path} failed",
                upstream_status=r.status_code,
                body=data,
            )

        if isinstance(data, dict):
            return data
        return {"payload": data}

    @staticmethod
    def _extract_id(resp: Any, *wrappers: str) -> Optional[str]:
        """
        Extrai id em formatos comuns:
        - {"<wrapper>": {"id": "..."}}
        - {"id": "..."}
        """
        if not isinstance(resp, dict):
            return None
        for wrapper in wrappers:
            inner = resp.get(wrapper)
            if isinstance(inner, dict) and inner.get("id"):
                return str(inner["id"])
        if resp.get("id"):
            return str(resp["id"])
        return None

    @staticmethod
    def _duplicate_contact_id(body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        meta = body.get("meta")
        if isinstance(meta, dict) and meta.get("contactId"):
            return str(meta["contactId"])
        return None

    # ---------- Contacts ----------

    def find_or_create_contact_by_phone(self, phone: str, location_id: str) -> str:
        phone = normalize_phone("".join(ch for ch in phone if ch.isdigit() or ch == "+")) or phone
        try:
            raw = self._req("POST", "/contacts/", json={"phone": phone, "locationId": location_id})
        except CrmCallFailed as e:
            existing = self._duplicate_contact_id(e.body)
            if e.upstream_status == 400 and existing:
                logger.info("GHL_CONTACT_FOUND: id=%s phone=%s (duplicate)", existing, phone)
                return existing
            raise

        contact_id = self._extract_id(raw, "contact")
        if not contact_id:
            raise CrmCallFailed("GHL contact creation did not return contactId", body=raw)

        logger.info("GHL_CONTACT_OK: id=%s phone=%s", contact_id, phone)
        return contact_id

    # ---------- Conversations ----------

    def get_or_create_conversation(self, contact_id: str, location_id: str) -> str:
        try:
            found = self._req(
                "GET",
                "/conversations/search",
                params={"contactId": contact_id, "locationId": location_id},
            )
            conversations = found.get("conversations") or found.get("data") or []
            if isinstance(conversations, list) and conversations and isinstance(conversations[0], dict):
                conv_id = conversations[0].get("id") or conversations[0].get("conversationId")
                if conv_id:
                    return str(conv_id)
        except CrmCallFailed as e:
            logger.warning("GHL_CONVERSATION_SEARCH_FAILED: contact_id=%s status=%s", contact_id, e.upstream_status)

        raw = self._req("POST", "/conversations/", json={"contactId": contact_id, "locationId": location_id})
        conv_id = self._extract_id(raw, "conversation")
        if not conv_id:
            raise CrmCallFailed("GHL conversation creation did not return id", body=raw)

        logger.info("GHL_CONVERSATION_CREATED: id=%s contact_id=%s", conv_id, contact_id)
        return conv_id

    def upload_attachment(self, conversation_id: str, location_id: str, file_url: str) -> Optional[str]:
        """
        Baixa a mídia do Ultramsg e reenvia para o storage do GHL.
        Best-effort: qualquer falha devolve None e a mensagem segue sem o anexo.
        """
        try:
            source = requests.get(file_url, timeout=self.timeout)
            source.raise_for_status()

            filename = os.path.basename(urlparse(file_url).path) or "attachment"
            r = requests.post(
                f"{self.base_url}/conversations/messages/upload",
                headers=self._headers(content_type=None),
                data={"conversationId": conversation_id, "locationId": location_id},
                files={"fileAttachment": (filename, source.content)},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("GHL_UPLOAD_FAILED: url=%s err=%r", file_url, e)
            return None

        uploaded = data.get("uploadedFiles") if isinstance(data, dict) else None
        if isinstance(uploaded, list) and uploaded:
            first = uploaded[0]
            if isinstance(first, str):
                return first
            if isinstance(first, dict) and first.get("url"):
                return first["url"]
        if isinstance(uploaded, dict) and uploaded:
            return next(iter(uploaded.values()))
        if isinstance(data, dict):
            return data.get("url") or data.get("fileUrl")
        return None

    # ---------- Messages ----------

    def create_conversation_message(
        self,
        contact_id: str,
        text: Optional[str] = None,
        media: Optional[Sequence[Dict[str, Any]]] = None,
        channel_type: str = "whatsapp",
        location_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contactId": contact_id,
            "messageType": channel_type.upper(),
        }
        if text:
            payload["message"] = text

        if location_id:
            payload["locationId"] = location_id
            conversation_id = self.get_or_create_conversation(contact_id, location_id)
            payload["conversationId"] = conversation_id

            attachments = []
            for item in media or []:
                url = item.get("url") if isinstance(item, dict) else item
                if not url:
                    continue
                uploaded = self.upload_attachment(conversation_id, location_id, url)
                if uploaded:
                    attachments.append(uploaded)
            if attachments:
                payload["attachments"] = attachments

        raw = self._req("POST", "/conversations/messages/", json=payload)
        logger.info("GHL_MESSAGE_CREATED: id=%s contact_id=%s", self.extract_message_id(raw), contact_id)
        return raw

    @staticmethod
    def extract_message_id(resp: Any) -> Optional[str]:
        # message.id -> messageId -> id
        if not isinstance(resp, dict):
            return None
        inner = resp.get("message")
        if isinstance(inner, dict) and inner.get("id"):
            return str(inner["id"])
        if resp.get("messageId"):
            return str(resp["messageId"])
        return GHLService._extract_id(resp)

    def update_message_status(self, message_id: str, status: str) -> bool:
        try:
            self._req("PUT", f"/conversations/messages/{message_id}/status", json={"status": status})
        except CrmCallFailed as e:
            logger.warning("GHL_STATUS_UPDATE_FAILED: message_id=%s status=%s upstream=%s", message_id, status, e.upstream_status)
            return False
        return True

    # ---------- Tags ----------

    def add_tags(self, contact_id: str, tags: Sequence[str]) -> None:
        try:
            self._req("POST", f"/contacts/{contact_id}/tags", json={"tags": sorted(set(tags))})
        except CrmCallFailed as e:
            logger.warning("GHL_ADD_TAGS_FAILED: contact_id=%s tags=%s upstream=%s", contact_id, list(tags), e.upstream_status)

    def remove_tags(self, contact_id: str, tags: Sequence[str], location_id: Optional[str] = None) -> None:
        try:
            if location_id:
                self._req(
                    "POST",
                    "/contacts/bulk/tags/update/remove",
                    json={
                        "contacts": [contact_id],
                        "tags": sorted(set(tags)),
                        "locationId": location_id,
                        "removeAllTags": False,
                    },
                )
            else:
                self._req("DELETE", f"/contacts/{contact_id}/tags", json={"tags": sorted(set(tags))})
        except CrmCallFailed as e:
            logger.warning("GHL_REMOVE_TAGS_FAILED: contact_id=%s tags=%s upstream=%s", contact_id, list(tags), e.upstream_status)
