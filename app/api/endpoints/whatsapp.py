from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import requests
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from app.api.deps import (
    get_directory,
    get_dispatcher,
    get_ghl_factory,
    get_message_map,
    get_ultramsg,
)
from app.api.services.ghl_service import GHLService
from app.api.services.keyword_router import route_keywords
from app.api.services.message_map_service import MessageMapService
from app.api.services.outbound_dispatcher import OutboundDispatcher
from app.api.services.payload_normalizer import normalize_incoming_message, normalize_status_event
from app.api.services.tenant_directory import TenantDirectory
from app.api.services.tenant_resolver import resolve_sub_account
from app.api.services.ultramsg_service import UltramsgService
from app.core.exceptions import (
    CredentialsNotConfigured,
    CrmCallFailed,
    RelayError,
    StoreUnavailable,
    TenantUnresolved,
    ValidationFailed,
)
from app.core.security import verify_api_key, verify_webhook_secret
from app.schemas.whatsapp import IncomingMessage, OnboardIn, SendIn, StatusEvent

logger = logging.getLogger("whatsapp.bridge")

router = APIRouter(tags=["WhatsApp Bridge"])

# falhas que, num webhook, viram 200 "logado" (senão o Ultramsg reenvia para sempre)
SOFT_FAILURES = (CrmCallFailed, StoreUnavailable, requests.RequestException)


def _http_error(e: RelayError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


_FORM_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_FORM_PART_RE = re.compile(r"\[([^\[\]]*)\]")


def _listify(node: Any) -> Any:
    # {"0": ..., "1": ...} -> [..., ...]
    if not isinstance(node, dict):
        return node
    folded = {k: _listify(v) for k, v in node.items()}
    if folded and all(k.isdigit() for k in folded):
        return [folded[k] for k in sorted(folded, key=int)]
    return folded


def fold_form_fields(items: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Form do Ultramsg vem achatado: data[from]=..., data[media][0][url]=...
    Remonta os objetos aninhados para o normalizador enxergar o mesmo formato do JSON.
    """
    payload: Dict[str, Any] = {}
    for name, value in items:
        match = _FORM_KEY_RE.match(name)
        if not match:
            payload[name] = value
            continue

        parts = [match.group(1)] + _FORM_PART_RE.findall(match.group(2))
        node = payload
        for part in parts[:-1]:
            key = part or str(len(node))
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[parts[-1] or str(len(node))] = value
    return _listify(payload)


async def _read_payload(request: Request) -> Optional[Dict[str, Any]]:
    """Corpo do webhook como dict (JSON ou form); None quando não dá para ler."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            form = await request.form()
            payload = fold_form_fields(form.multi_items())
        else:
            payload = await request.json()
    except ValueError as e:
        logger.warning("WEBHOOK_BODY_UNREADABLE: path=%s content_type=%s err=%r", request.url.path, content_type, e)
        return None
    if not isinstance(payload, dict):
        logger.warning("WEBHOOK_BODY_NOT_OBJECT: path=%s type=%s", request.url.path, type(payload).__name__)
        return None
    return payload


# ---------- Outbound (GHL -> WhatsApp) ----------

@router.post("/send", dependencies=[Depends(verify_api_key)])
def send(body: SendIn, dispatcher: OutboundDispatcher = Depends(get_dispatcher)):
    """
    Chamado pelos workflows do GHL no lugar do passo de SMS.
    Sem subAccountId, o sub-account vem do locationId (LOCATION_MAPPINGS).
    """
    try:
        result = dispatcher.dispatch(
            sub_account_id=body.sub_account_id,
            phone=body.phone,
            text=body.message,
            media_url=body.media_url,
            media_type=body.media_type,
            location_id=body.location_id,
        )
    except RelayError as e:
        logger.error("WHATSAPP_SEND_ERR: sub_account_id=%s code=%s err=%s", body.sub_account_id, e.code, e.message)
        raise _http_error(e)

    return {
        "success": True,
        "message": "WhatsApp message sent",
        "data": result.provider_response,
        "subAccountId": result.sub_account_id,
    }


# ---------- Inbound (WhatsApp -> GHL) ----------

def relay_incoming(
    incoming: IncomingMessage,
    payload: Dict[str, Any],
    directory: TenantDirectory,
    message_map: MessageMapService,
    ghl_factory: Callable[[str], GHLService],
) -> Dict[str, Any]:
    sub_account_id = resolve_sub_account(directory, incoming.reference_id, incoming.instance_id)
    if not sub_account_id:
        raise TenantUnresolved(
            "Sub-account could not be resolved",
            instance_id=incoming.instance_id,
            reference_id=incoming.reference_id,
        )

    api_key = directory.get_crm_api_key(sub_account_id)
    if not api_key:
        raise CredentialsNotConfigured("GHL API key not configured for this sub-account", sub_account_id=sub_account_id)

    location_id = payload.get("locationId") or directory.get_crm_location_id(sub_account_id)
    if not location_id:
        raise ValidationFailed("GHL locationId not configured for this sub-account", sub_account_id=sub_account_id)

    crm = ghl_factory(api_key)
    contact_id = crm.find_or_create_contact_by_phone(incoming.phone, location_id)

    # palavra-chave é efeito colateral; a mensagem vai para o GHL sempre
    keyword = route_keywords(incoming.text, crm, contact_id, location_id)

    created = crm.create_conversation_message(
        contact_id,
        incoming.text,
        [m.model_dump() for m in incoming.media],
        "WhatsApp",
        location_id,
    )
    ghl_message_id = GHLService.extract_message_id(created)

    if incoming.message_id and ghl_message_id:
        try:
            message_map.upsert_map(incoming.message_id, ghl_message_id, sub_account_id)
        except StoreUnavailable as e:
            logger.warning("MESSAGE_MAP_SKIPPED: ultramsg_id=%s err=%r", incoming.message_id, e)

    logger.info(
        "INCOMING_FORWARDED: phone=%s contact_id=%s sub_account_id=%s keyword=%s",
        incoming.phone, contact_id, sub_account_id, keyword,
    )
    return {
        "success": True,
        "message": "Message forwarded to GHL",
        "subAccountId": sub_account_id,
        "contactId": contact_id,
        "keyword": keyword,
        "ghlResult": created,
    }


@router.post("/incoming", dependencies=[Depends(verify_webhook_secret)])
async def incoming_webhook(
    request: Request,
    directory: TenantDirectory = Depends(get_directory),
    message_map: MessageMapService = Depends(get_message_map),
    ghl_factory: Callable[[str], GHLService] = Depends(get_ghl_factory),
):
    payload = await _read_payload(request)
    if payload is None:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    logger.info("ULTRAMSG_INCOMING: event=%s keys=%s", payload.get("event_type"), list(payload.keys()))

    incoming = normalize_incoming_message(payload)
    if not incoming:
        raise HTTPException(status_code=400, detail={"error": "Invalid Ultramsg webhook payload", "payload": payload})

    try:
        return await run_in_threadpool(relay_incoming, incoming, payload, directory, message_map, ghl_factory)
    except SOFT_FAILURES as e:
        # 200 para o Ultramsg não reenviar; o erro fica no log
        logger.error("INCOMING_FORWARD_ERR: phone=%s err=%r", incoming.phone, e)
        return {
            "success": False,
            "error": "Failed to forward message to GHL",
            "message": str(e),
            "logged": True,
        }
    except RelayError as e:
        logger.error("INCOMING_REJECTED: code=%s err=%s", e.code, e.message)
        raise _http_error(e)
    except Exception as e:
        logger.exception("INCOMING_UNEXPECTED_ERR: phone=%s", incoming.phone)
        return {
            "success": False,
            "error": "Failed to forward message to GHL",
            "message": str(e),
            "logged": True,
        }


# ---------- Status (ack) ----------

def _logged_only(message: str) -> Dict[str, Any]:
    return {"success": True, "message": message}


def relay_status(
    status: StatusEvent,
    directory: TenantDirectory,
    message_map: MessageMapService,
    ghl_factory: Callable[[str], GHLService],
) -> Dict[str, Any]:
    sub_account_id = resolve_sub_account(directory, status.reference_id, status.instance_id)
    if not sub_account_id:
        logger.warning("STATUS_TENANT_UNRESOLVED: message_id=%s instance_id=%s", status.message_id, status.instance_id)
        return _logged_only("Status received but sub-account unknown (logged only).")

    api_key = directory.get_crm_api_key(sub_account_id)
    if not api_key:
        raise CredentialsNotConfigured("GHL API key not configured for this sub-account", sub_account_id=sub_account_id)

    ghl_message_id = message_map.get_ghl_message_id(status.message_id)
    if not ghl_message_id:
        logger.warning("STATUS_MAPPING_NOT_FOUND: ultramsg_id=%s sub_account_id=%s", status.message_id, sub_account_id)
        return _logged_only("Status received but GHL message ID not found (logged only).")

    if ghl_factory(api_key).update_message_status(ghl_message_id, status.status):
        logger.info("STATUS_UPDATED: ghl_id=%s status=%s sub_account_id=%s", ghl_message_id, status.status, sub_account_id)
        return _logged_only("Status updated in GHL")

    return _logged_only("Status received (GHL update not supported or failed)")


@router.post("/status", dependencies=[Depends(verify_webhook_secret)])
async def status_webhook(
    request: Request,
    directory: TenantDirectory = Depends(get_directory),
    message_map: MessageMapService = Depends(get_message_map),
    ghl_factory: Callable[[str], GHLService] = Depends(get_ghl_factory),
):
    payload = await _read_payload(request)

    status = normalize_status_event(payload) if payload is not None else None
    if not status:
        # status não é crítico: confirma para evitar retry
        return {"success": False, "error": "Invalid Ultramsg status payload", "logged": True}

    try:
        return await run_in_threadpool(relay_status, status, directory, message_map, ghl_factory)
    except SOFT_FAILURES as e:
        logger.error("STATUS_RELAY_ERR: message_id=%s err=%r", status.message_id, e)
        return {"success": False, "error": "Failed to process status update", "message": str(e), "logged": True}
    except RelayError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("STATUS_UNEXPECTED_ERR: message_id=%s", status.message_id)
        return {"success": False, "error": "Failed to process status update", "message": str(e), "logged": True}


# ---------- Onboarding ----------

@router.post("/onboard", dependencies=[Depends(verify_api_key)])
def onboard(body: OnboardIn, directory: TenantDirectory = Depends(get_directory)):
    if not body.sub_account_id or not body.instance_id or not body.api_token:
        raise _http_error(ValidationFailed("Missing required fields", required=["subAccountId", "instanceId", "apiToken"]))

    try:
        directory.upsert_provider_credentials(body.sub_account_id, body.instance_id, body.api_token)
    except StoreUnavailable as e:
        raise _http_error(e)

    return {
        "success": True,
        "message": "Ultramsg credentials stored for sub-account",
        "subAccountId": body.sub_account_id.strip(),
    }


@router.get("/onboard/qr", dependencies=[Depends(verify_api_key)])
def onboard_qr(
    instance_id: Optional[str] = Query(None, alias="instanceId"),
    api_token: Optional[str] = Query(None, alias="apiToken"),
    ultramsg: UltramsgService = Depends(get_ultramsg),
):
    if not instance_id or not api_token:
        raise _http_error(ValidationFailed("Missing required fields", required=["instanceId", "apiToken"]))

    try:
        data = ultramsg.get_qr_code(instance_id, api_token)
    except RelayError as e:
        raise _http_error(e)

    return {"success": True, "data": data}
