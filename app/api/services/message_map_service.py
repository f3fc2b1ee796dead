from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.models.whatsapp_message_mapping import WhatsAppMessageMapping
from app.core.exceptions import StoreUnavailable

logger = logging.getLogger("message.map")


class MessageMapService:
    """Correlação ultramsg_message_id <-> ghl_message_id (upsert, last write wins)."""

    def __init__(self, db: Session):
        self.db = db

    def upsert_map(self, ultramsg_message_id: str, ghl_message_id: str, sub_account_id: str) -> WhatsAppMessageMapping:
        try:
            try:
                row = self._apply(ultramsg_message_id, ghl_message_id, sub_account_id)
                self.db.commit()
            except IntegrityError:
                # outro request inseriu a mesma chave entre o select e o insert
                self.db.rollback()
                row = self._apply(ultramsg_message_id, ghl_message_id, sub_account_id)
                self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("MESSAGE_MAP_UPSERT_ERR: ultramsg_id=%s err=%r", ultramsg_message_id, e)
            raise StoreUnavailable("Message mapping store unavailable", operation="upsert_map") from e

        logger.info(
            "MESSAGE_MAP_OK: ultramsg_id=%s ghl_id=%s sub_account_id=%s",
            ultramsg_message_id, ghl_message_id, sub_account_id,
        )
        return row

    def _apply(self, ultramsg_message_id: str, ghl_message_id: str, sub_account_id: str) -> WhatsAppMessageMapping:
        row = self.db.execute(
            select(WhatsAppMessageMapping).where(WhatsAppMessageMapping.ultramsg_message_id == ultramsg_message_id)
        ).scalar_one_or_none()

        if row:
            row.ghl_message_id = ghl_message_id
            row.sub_account_id = sub_account_id
        else:
            row = WhatsAppMessageMapping(
                ultramsg_message_id=ultramsg_message_id,
                ghl_message_id=ghl_message_id,
                sub_account_id=sub_account_id,
            )
            self.db.add(row)
        self.db.flush()
        return row

    def get_ghl_message_id(self, ultramsg_message_id: str) -> Optional[str]:
        stmt = select(WhatsAppMessageMapping.ghl_message_id).where(
            WhatsAppMessageMapping.ultramsg_message_id == ultramsg_message_id,
        )
        return self._scalar(stmt, op="get_ghl_message_id")

    def get_ultramsg_message_id(self, ghl_message_id: str) -> Optional[str]:
        stmt = select(WhatsAppMessageMapping.ultramsg_message_id).where(
            WhatsAppMessageMapping.ghl_message_id == ghl_message_id,
        ).limit(1)
        return self._scalar(stmt, op="get_ultramsg_message_id")

    def _scalar(self, stmt, op: str):
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("MESSAGE_MAP_STORE_ERR: op=%s err=%r", op, e)
            raise StoreUnavailable("Message mapping store unavailable", operation=op) from e
