from __future__ import annotations

from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from app.api.services.ghl_service import GHLService
from app.api.services.message_map_service import MessageMapService
from app.api.services.outbound_dispatcher import OutboundDispatcher
from app.api.services.tenant_directory import TenantDirectory
from app.api.services.ultramsg_service import UltramsgService
from app.db.session import get_db


# Clientes externos como dependências: os testes trocam via app.dependency_overrides

def get_ultramsg() -> UltramsgService:
    return UltramsgService()


def get_ghl_factory() -> Callable[[str], GHLService]:
    return GHLService


def get_directory(db: Session = Depends(get_db)) -> TenantDirectory:
    return TenantDirectory(db)


def get_message_map(db: Session = Depends(get_db)) -> MessageMapService:
    return MessageMapService(db)


def get_dispatcher(
    directory: TenantDirectory = Depends(get_directory),
    ultramsg: UltramsgService = Depends(get_ultramsg),
    message_map: MessageMapService = Depends(get_message_map),
    ghl_factory: Callable[[str], GHLService] = Depends(get_ghl_factory),
) -> OutboundDispatcher:
    return OutboundDispatcher(directory, ultramsg, message_map, ghl_factory)
