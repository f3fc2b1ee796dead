# app/api/services/ultramsg_service.py
from __future__ import annotations

import logging
import requests
from typing import Any, Dict, Optional

from app.core.config import settings
from app.core.exceptions import ProviderSendFailed

logger = logging.getLogger("ultramsg")


class UltramsgService:
    def __init__(self, base_url: str = None, timeout: int = None):
        self.base_url = (base_url or settings.ULTRAMSG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT

    def _url(self, instance_id: str, path: str) -> str:
        return f"{self.base_url}/{instance_id.strip()}{path}"

    @staticmethod
    def _parse(r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError:
            return {"_raw_text": r.text}

    def _post(self, operation: str, instance_id: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self._url(instance_id, path)
        try:
            # Ultramsg aceita form-urlencoded com token no corpo
            r = requests.post(url, data=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("ULTRAMSG_CONNECTION_ERR: op=%s instance=%s err=%r", operation, instance_id, e)
            raise ProviderSendFailed(f"Ultramsg {operation} connection error: {e}", operation=operation) from e

        data = self._parse(r)
        if r.status_code >= 400:
            logger.error("ULTRAMSG_HTTP_ERR: op=%s instance=%s status=%s body=%s", operation, instance_id, r.status_code, r.text[:500])
            raise ProviderSendFailed(
                f"Ultramsg {operation} failed",
                upstream_status=r.status_code,
                body=data,
                operation=operation,
            )

        logger.info("ULTRAMSG_SEND_OK: op=%s instance=%s to=%s", operation, instance_id, payload.get("to"))
        return data if isinstance(data, dict) else {"payload": data}

    def _message(
        self,
        kind: str,
        instance_id: str,
        api_token: str,
        phone: str,
        fields: Dict[str, Any],
        reference_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"token": api_token, "to": phone}
        payload.update({k: v for k, v in fields.items() if v})
        if reference_id:
            payload["referenceId"] = reference_id
        return self._post(f"send_{kind}", instance_id, f"/messages/{'chat' if kind == 'text' else kind}", payload)

    # ======================
    # Messaging
    # ======================

    def send_text(self, instance_id: str, api_token: str, phone: str, body: str, reference_id: Optional[str] = None):
        return self._message("text", instance_id, api_token, phone, {"body": body}, reference_id)

    def send_image(self, instance_id: str, api_token: str, phone: str, image_url: str, caption: Optional[str] = None, reference_id: Optional[str] = None):
        return self._message("image", instance_id, api_token, phone, {"image": image_url, "caption": caption}, reference_id)

    def send_document(self, instance_id: str, api_token: str, phone: str, document_url: str, filename: Optional[str] = None, reference_id: Optional[str] = None):
        return self._message("document", instance_id, api_token, phone, {"document": document_url, "filename": filename}, reference_id)

    def send_audio(self, instance_id: str, api_token: str, phone: str, audio_url: str, reference_id: Optional[str] = None):
        return self._message("audio", instance_id, api_token, phone, {"audio": audio_url}, reference_id)

    def send_video(self, instance_id: str, api_token: str, phone: str, video_url: str, caption: Optional[str] = None, reference_id: Optional[str] = None):
        return self._message("video", instance_id, api_token, phone, {"video": video_url, "caption": caption}, reference_id)

    # ======================
    # Instance
    # ======================

    def get_qr_code(self, instance_id: str, api_token: str) -> Dict[str, Any]:
        url = self._url(instance_id, "/instance/qrCode")
        try:
            r = requests.get(url, params={"token": api_token}, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderSendFailed(f"Ultramsg get_qr_code connection error: {e}", operation="get_qr_code") from e

        data = self._parse(r)
        if r.status_code >= 400:
            logger.error("ULTRAMSG_QR_ERR: instance=%s status=%s", instance_id, r.status_code)
            raise ProviderSendFailed("Ultramsg get_qr_code failed", upstream_status=r.status_code, body=data, operation="get_qr_code")
        return data if isinstance(data, dict) else {"payload": data}
