from __future__ import annotations

from sqlalchemy import Column, Integer, String, DateTime, func
from app.db.base_class import Base


class WhatsAppMessageMapping(Base):
    __tablename__ = "whatsapp_message_mappings"

    id = Column(Integer, primary_key=True, index=True)

    # id da mensagem no Ultramsg (chave natural, last write wins)
    ultramsg_message_id = Column(String(255), unique=True, index=True, nullable=False)
    ghl_message_id = Column(String(255), nullable=False, index=True)
    sub_account_id = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
