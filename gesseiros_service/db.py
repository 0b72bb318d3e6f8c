"""Configuração da conexão com o banco de dados relacional usando SQLAlchemy."""

import logging
from fastapi import HTTPException, status
from sqlalchemy import create_engine, event, exc
from sqlalchemy.orm import sessionmaker, declarative_base

from config import settings

# Configuração do logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = settings.database_url
IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

# O SQLite exige check_same_thread=False porque o FastAPI atende rotas síncronas em um threadpool.
connect_args = {"check_same_thread": False} if IS_SQLITE else {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # Sem este PRAGMA o SQLite ignora ON DELETE CASCADE
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

# Fábrica de sessões: cada requisição usa a sua própria sessão.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Classe base para os modelos declarativos (gesseiros, usuarios, fotos, servicos).
Base = declarative_base()


def init_db():
    """Cria as tabelas que ainda não existem."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Tabelas do banco de dados verificadas/criadas.")
    except exc.SQLAlchemyError as e:
        logger.error(f"Erro ao inicializar o banco de dados: {e}", exc_info=True)
        raise


# --- Dependência do FastAPI ---
def get_db():
    """
    Gerador de dependência que entrega uma sessão de banco de dados.
    Garante rollback em caso de erro e fecha a sessão ao final da requisição.
    """
    db = SessionLocal()
    try:
        yield db
    except HTTPException:
        db.rollback()
        raise
    except exc.SQLAlchemyError as e:
        logger.error(f"Erro de banco de dados durante a requisição: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Erro interno de banco de dados.")
    finally:
        db.close()
