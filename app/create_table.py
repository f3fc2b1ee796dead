import logging

from app.db.base_class import Base
from app.db.session import engine

# IMPORTAR TODOS OS MODELOS para que o SQLAlchemy registre no metadata
from app.api.models.whatsapp_credential import WhatsAppCredential  # noqa: F401
from app.api.models.whatsapp_instance_mapping import WhatsAppInstanceMapping  # noqa: F401
from app.api.models.whatsapp_message_mapping import WhatsAppMessageMapping  # noqa: F401

logger = logging.getLogger("db")


def create_all():
    logger.info("Criando tabelas no banco...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tabelas criadas com sucesso")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_all()
