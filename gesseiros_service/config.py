"""Configuração do serviço de gesseiros lida do ambiente (.env)."""

import os
import logging
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Carrega variáveis de ambiente do arquivo .env
load_dotenv()

DEFAULT_SECRET_KEY = "chave_secreta_insegura_padrao_trocar_urgentemente"


@dataclass(frozen=True)
class Settings:
    """Valores de configuração do processo, montados uma única vez na inicialização."""
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7
    upload_dir: str = "uploads"
    max_upload_size: int = 5 * 1024 * 1024
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 3000


def load_settings() -> Settings:
    """Lê as variáveis de ambiente e devolve um objeto Settings."""
    secret_key = os.getenv("JWT_SECRET_KEY")
    if not secret_key:
        logger.warning("JWT_SECRET_KEY não está definida. Usando chave insegura padrão para desenvolvimento.")
        secret_key = DEFAULT_SECRET_KEY

    origins = os.getenv("CORS_ORIGINS", "*")

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./gesseiros.db"),
        secret_key=secret_key,
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        max_upload_size=int(os.getenv("MAX_UPLOAD_SIZE", 5 * 1024 * 1024)),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        port=int(os.getenv("PORT", 3000)),
    )


settings = load_settings()
