# tests/conftest.py
import os
import shutil
import tempfile
import uuid

import pytest

# O ambiente precisa estar pronto ANTES de importar o app (engine e pasta de uploads são criados no import).
TEST_DIR = tempfile.mkdtemp(prefix="gesseiros_tests_")
UPLOAD_DIR = os.path.join(TEST_DIR, "uploads")
MAX_UPLOAD_SIZE = 64 * 1024

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(TEST_DIR, 'gesseiros_test.db')}"
os.environ["UPLOAD_DIR"] = UPLOAD_DIR
os.environ["MAX_UPLOAD_SIZE"] = str(MAX_UPLOAD_SIZE)
os.environ["JWT_SECRET_KEY"] = "chave-secreta-de-testes"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from db import SessionLocal  # noqa: E402
from models import Contractor, User, Photo, ServicePrice  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256


def bearer(token: str) -> dict:
    """Cabeçalho de autorização para as rotas protegidas."""
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="session")
def client():
    with TestClient(main.app) as test_client:
        yield test_client
    shutil.rmtree(TEST_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def clean_state():
    """Cada teste começa com banco e pasta de uploads vazios."""
    yield
    db = SessionLocal()
    try:
        for model in (ServicePrice, Photo, User, Contractor):
            db.query(model).delete()
        db.commit()
    finally:
        db.close()
    if os.path.isdir(UPLOAD_DIR):
        for name in os.listdir(UPLOAD_DIR):
            os.remove(os.path.join(UPLOAD_DIR, name))


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def register(client):
    """
    Fábrica que faz o cadastro completo de um gesseiro.
    Usa um email único por chamada, a menos que outro seja passado.
    """
    def _register(**overrides):
        payload = {
            "nome": "Ana",
            "cidade": "Recife",
            "telefone": "123",
            "email": f"ana_{uuid.uuid4().hex[:8]}@x.com",
            "senha": "secret",
        }
        payload.update(overrides)
        r = client.post("/api/cadastro-completo", json=payload)
        assert r.status_code == 200, f"Cadastro falhou: {r.status_code} {r.text}"
        return r.json()
    return _register


@pytest.fixture
def ana(register):
    return register(nome="Ana", cidade="Recife", telefone="123", email="ana@x.com", senha="secret")


@pytest.fixture
def bruno(register):
    return register(nome="Bruno", cidade="Fortaleza", telefone="(85) 99999-1111", email="bruno@x.com", senha="outra-senha")
