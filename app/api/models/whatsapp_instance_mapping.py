from __future__ import annotations

from sqlalchemy import Column, Integer, String, DateTime, func
from app.db.base_class import Base


class WhatsAppInstanceMapping(Base):
    """Índice secundário instance_id -> sub_account_id (mantido pelo upsert de credenciais)."""

    __tablename__ = "whatsapp_instance_mappings"

    id = Column(Integer, primary_key=True, index=True)

    instance_id = Column(String(128), unique=True, index=True, nullable=False)
    sub_account_id = Column(String(128), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
