from __future__ import annotations

from sqlalchemy import Column, Integer, String, DateTime, func
from app.db.base_class import Base


class WhatsAppCredential(Base):
    __tablename__ = "whatsapp_credentials"

    id = Column(Integer, primary_key=True, index=True)

    # um registro por sub-account (upsert pelo /onboard)
    sub_account_id = Column(String(128), unique=True, index=True, nullable=False)

    # Ultramsg
    instance_id = Column(String(128), nullable=False, index=True)
    api_token = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
