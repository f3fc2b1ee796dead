## ponto de entrada do FastAPI (app instantiation, middlewares, inclusão de rotas)

# app/main.py
import logging
import re

from fastapi import FastAPI

from app.core.config import settings
from app.api.endpoints import health, whatsapp

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("startup")

app = FastAPI(
    title="WhatsApp Bridge API",
    description="Bridge Ultramsg (WhatsApp) <-> GoHighLevel por sub-account.",
    version="0.1.0",
)

app.include_router(health.router)
app.include_router(whatsapp.router)


@app.on_event("startup")
def startup():
    safe = re.sub(r":([^:@/]+)@", ":***@", settings.DATABASE_URL)
    logger.info("STARTUP ENV=%s DATABASE_URL=%s", settings.ENV, safe)

    if settings.AUTO_CREATE_TABLES:
        from app.create_table import create_all
        create_all()

    if not settings.ULTRAMSG_INSTANCE_ID or not settings.ULTRAMSG_API_TOKEN:
        logger.warning("STARTUP: ULTRAMSG_INSTANCE_ID/ULTRAMSG_API_TOKEN not set; only onboarded sub-accounts can send")
    if not settings.GHL_API_KEY and not settings.GHL_SUB_ACCOUNTS:
        logger.warning("STARTUP: no GHL credentials configured; inbound relay will answer 401")

# Para rodar com uvicorn:
# uvicorn app.main:app --reload
