## config do ambiente (variaveis de ambiente)
from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # O model_config especifica onde Pydantic deve buscar as variáveis (do .env)
    model_config = SettingsConfigDict(
        env_file='.env',
        case_sensitive=True,
        extra='ignore'
    )

    # ----------------------------------------------------
    # 1. GERAL
    # ----------------------------------------------------
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    HTTP_TIMEOUT: int = 30

    # Se definido, /send e /onboard exigem header X-API-Key
    RELAY_API_KEY: Optional[str] = None
    # Se definido, /incoming e /status exigem ?secret=
    WEBHOOK_SECRET: Optional[str] = None

    # ----------------------------------------------------
    # 2. BANCO DE DADOS
    # ----------------------------------------------------
    DATABASE_URL: str = "sqlite:///./whatsapp_bridge.db"
    AUTO_CREATE_TABLES: bool = True

    # ----------------------------------------------------
    # 3. ULTRAMSG (WhatsApp)
    # ----------------------------------------------------
    ULTRAMSG_BASE_URL: str = "https://api.ultramsg.com"
    # credenciais default (usadas quando o sub-account não tem registro próprio)
    ULTRAMSG_INSTANCE_ID: Optional[str] = None
    ULTRAMSG_API_TOKEN: Optional[str] = None
    # {"sub_account_001": {"instance_id": "...", "api_token": "..."}}
    ULTRAMSG_SUB_ACCOUNTS: Dict[str, Dict[str, str]] = {}
    # {"instance149866": "default"}
    INSTANCE_MAPPINGS: Dict[str, str] = {}

    # ----------------------------------------------------
    # 4. GOHIGHLEVEL
    # ----------------------------------------------------
    GHL_BASE_URL: str = "https://services.leadconnectorhq.com"
    GHL_API_VERSION: str = "2021-07-28"
    GHL_API_KEY: Optional[str] = None
    GHL_LOCATION_ID: Optional[str] = None
    # {"sub_account_001": {"api_key": "...", "location_id": "..."}}
    GHL_SUB_ACCOUNTS: Dict[str, Dict[str, str]] = {}
    # {"A9OQOsWw1io1F7vu8t5n": "sub_account_001"}
    LOCATION_MAPPINGS: Dict[str, str] = {}


# Cria uma instância única da classe Settings para ser importada em toda a aplicação
settings = Settings()
