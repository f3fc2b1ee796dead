# app/api/services/tenant_directory.py
from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.models.whatsapp_credential import WhatsAppCredential
from app.api.models.whatsapp_instance_mapping import WhatsAppInstanceMapping
from app.core.config import Settings, settings
from app.core.exceptions import StoreUnavailable
from app.schemas.whatsapp import ProviderCredentials

logger = logging.getLogger("tenant.directory")

DEFAULT_SUB_ACCOUNT = "default"


class TenantDirectory:
    """
    Lookup puro de credenciais e mapeamentos por sub-account.

    - Ultramsg: tabela whatsapp_credentials -> ULTRAMSG_SUB_ACCOUNTS -> default global
    - GHL: GHL_SUB_ACCOUNTS -> default global
    - instance -> sub-account: whatsapp_instance_mappings -> whatsapp_credentials -> INSTANCE_MAPPINGS

    "Não encontrado" é None. Falha de banco vira StoreUnavailable.
    """

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config

    # ---------- Ultramsg ----------

    def get_provider_credentials(self, sub_account_id: Optional[str] = None) -> Optional[ProviderCredentials]:
        if sub_account_id:
            row = self._scalar(
                select(WhatsAppCredential).where(WhatsAppCredential.sub_account_id == sub_account_id),
                op="get_provider_credentials",
            )
            if row:
                return ProviderCredentials(instance_id=row.instance_id, api_token=row.api_token)

            configured = self.config.ULTRAMSG_SUB_ACCOUNTS.get(sub_account_id) or {}
            if configured.get("instance_id") and configured.get("api_token"):
                return ProviderCredentials(
                    instance_id=configured["instance_id"],
                    api_token=configured["api_token"],
                )

        if self.config.ULTRAMSG_INSTANCE_ID and self.config.ULTRAMSG_API_TOKEN:
            return ProviderCredentials(
                instance_id=self.config.ULTRAMSG_INSTANCE_ID,
                api_token=self.config.ULTRAMSG_API_TOKEN,
            )

        logger.info("TENANT_CREDENTIALS_NOT_FOUND: sub_account_id=%s", sub_account_id)
        return None

    def upsert_provider_credentials(self, sub_account_id: str, instance_id: str, api_token: str) -> WhatsAppCredential:
        sub_account_id = sub_account_id.strip()
        instance_id = instance_id.strip()
        # a credencial guarda o id como veio (vai na URL do Ultramsg); o índice guarda minúsculo
        instance_key = instance_id.lower()
        try:
            credential = self.db.execute(
                select(WhatsAppCredential).where(WhatsAppCredential.sub_account_id == sub_account_id)
            ).scalar_one_or_none()
            if credential:
                credential.instance_id = instance_id
                credential.api_token = api_token
            else:
                credential = WhatsAppCredential(
                    sub_account_id=sub_account_id,
                    instance_id=instance_id,
                    api_token=api_token,
                )
                self.db.add(credential)

            # mantém o índice instance -> sub-account junto
            mapping = self.db.execute(
                select(WhatsAppInstanceMapping).where(WhatsAppInstanceMapping.instance_id == instance_key)
            ).scalar_one_or_none()
            if mapping:
                mapping.sub_account_id = sub_account_id
            else:
                self.db.add(WhatsAppInstanceMapping(instance_id=instance_key, sub_account_id=sub_account_id))

            self.db.commit()
            self.db.refresh(credential)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("TENANT_UPSERT_ERR: sub_account_id=%s err=%r", sub_account_id, e)
            raise StoreUnavailable("Failed to store Ultramsg credentials", sub_account_id=sub_account_id) from e

        logger.info("TENANT_UPSERT_OK: sub_account_id=%s instance_id=%s", sub_account_id, instance_id)
        return credential

    # ---------- GHL ----------

    def _ghl_entry(self, sub_account_id: Optional[str]) -> Dict[str, str]:
        if not sub_account_id:
            return {}
        return self.config.GHL_SUB_ACCOUNTS.get(sub_account_id) or {}

    def get_crm_api_key(self, sub_account_id: Optional[str] = None) -> Optional[str]:
        return self._ghl_entry(sub_account_id).get("api_key") or self.config.GHL_API_KEY

    def get_crm_location_id(self, sub_account_id: Optional[str] = None) -> Optional[str]:
        return self._ghl_entry(sub_account_id).get("location_id") or self.config.GHL_LOCATION_ID

    # ---------- Reverse lookups ----------

    def resolve_sub_account_by_instance(self, instance_id: Optional[str]) -> Optional[str]:
        if not instance_id or not instance_id.strip():
            return None
        # instanceId é comparado sem diferenciar maiúsculas
        instance_key = instance_id.strip().lower()

        sub_account_id = self._scalar(
            select(WhatsAppInstanceMapping.sub_account_id)
            .where(func.lower(WhatsAppInstanceMapping.instance_id) == instance_key)
            .limit(1),
            op="resolve_sub_account_by_instance",
        )
        if sub_account_id:
            return sub_account_id

        # fallback: credencial gravada antes do índice existir
        sub_account_id = self._scalar(
            select(WhatsAppCredential.sub_account_id)
            .where(func.lower(WhatsAppCredential.instance_id) == instance_key)
            .limit(1),
            op="resolve_sub_account_by_instance",
        )
        if sub_account_id:
            return sub_account_id

        for configured, mapped in self.config.INSTANCE_MAPPINGS.items():
            if configured.strip().lower() == instance_key:
                return mapped
        return None

    def resolve_sub_account_by_location(self, location_id: Optional[str]) -> Optional[str]:
        if not location_id:
            return None
        return self.config.LOCATION_MAPPINGS.get(location_id.strip())

    @property
    def default_instance_id(self) -> Optional[str]:
        return self.config.ULTRAMSG_INSTANCE_ID

    # ---------- internals ----------

    def _scalar(self, stmt, op: str):
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("TENANT_STORE_ERR: op=%s err=%r", op, e)
            raise StoreUnavailable("Tenant store unavailable", operation=op) from e
