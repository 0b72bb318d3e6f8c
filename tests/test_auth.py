# tests/test_auth.py
"""Cadastro completo e login."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import main
from db import engine
from models import Contractor, User


def test_register_returns_token_for_new_contractor(client, db_session):
    payload = {
        "nome": "Ana", "cidade": "Recife", "telefone": "123",
        "email": "ana@x.com", "instagram": "@anagesso", "descricao": "Forro e sanca", "senha": "secret",
    }
    r = client.post("/api/cadastro-completo", json=payload)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["mensagem"] == "Cadastro realizado com sucesso!"
    assert body["nome"] == "Ana"
    assert body["email"] == "ana@x.com"

    identity = main.token_service.verify(body["token"])
    assert identity.gesseiro_id == body["gesseiroId"]
    assert identity.email == "ana@x.com"

    contractor = db_session.get(Contractor, body["gesseiroId"])
    assert contractor.instagram == "@anagesso"
    user = db_session.query(User).filter(User.email == "ana@x.com").one()
    assert user.gesseiro_id == contractor.id
    assert user.senha != "secret", "A senha não pode ser salva em texto plano"


def test_register_duplicate_email(client, ana):
    """O segundo cadastro com o mesmo email falha, mesmo com outros dados."""
    payload = {"nome": "Outra", "cidade": "Natal", "telefone": "999", "email": "ana@x.com", "senha": "x"}
    r = client.post("/api/cadastro-completo", json=payload)

    assert r.status_code == 400
    assert r.json() == {"erro": "Este email já está cadastrado"}


@pytest.mark.parametrize("missing", ["nome", "cidade", "telefone", "email", "senha"])
def test_register_requires_fields(client, db_session, missing):
    payload = {"nome": "Ana", "cidade": "Recife", "telefone": "123", "email": "ana@x.com", "senha": "secret"}
    payload.pop(missing)

    r = client.post("/api/cadastro-completo", json=payload)

    assert r.status_code == 400
    assert "erro" in r.json()
    assert db_session.query(Contractor).count() == 0


def test_register_rejects_blank_fields(client, db_session):
    payload = {"nome": "   ", "cidade": "Recife", "telefone": "123", "email": "ana@x.com", "senha": "secret"}
    r = client.post("/api/cadastro-completo", json=payload)

    assert r.status_code == 400
    assert db_session.query(Contractor).count() == 0


def test_login_success(client, ana):
    r = client.post("/api/login", json={"email": "ana@x.com", "senha": "secret"})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["gesseiroId"] == ana["gesseiroId"]
    assert body["nome"] == "Ana"
    assert body["email"] == "ana@x.com"
    assert "mensagem" not in body
    assert main.token_service.verify(body["token"]).gesseiro_id == ana["gesseiroId"]


def test_login_wrong_password_and_unknown_email_look_the_same(client, ana):
    wrong_password = client.post("/api/login", json={"email": "ana@x.com", "senha": "errada"})
    unknown_email = client.post("/api/login", json={"email": "ninguem@x.com", "senha": "secret"})

    assert wrong_password.status_code == 401
    assert unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"erro": "Email ou senha incorretos"}


def test_login_missing_fields(client):
    r = client.post("/api/login", json={"email": "ana@x.com"})
    assert r.status_code == 400


def test_register_rolls_back_when_commit_fails(client, db_session, monkeypatch):
    def failing_commit(self):
        raise OperationalError("INSERT INTO usuarios", {}, Exception("disco cheio"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    r = client.post(
        "/api/cadastro-completo",
        json={"nome": "Ana", "cidade": "Recife", "telefone": "123", "email": "ana@x.com", "senha": "secret"},
    )
    monkeypatch.undo()

    assert r.status_code == 500
    assert r.json() == {"erro": "Erro ao cadastrar gesseiro"}
    # o gesseiro já enviado com flush() não pode sobrar sem usuário
    assert db_session.query(Contractor).count() == 0
    assert db_session.query(User).count() == 0


def test_login_when_contractor_row_is_missing(client, ana):
    # usuário órfão: só é possível com as chaves estrangeiras desligadas
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        conn.execute(text("DELETE FROM gesseiros WHERE id = :id"), {"id": ana["gesseiroId"]})
        conn.commit()
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    r = client.post("/api/login", json={"email": "ana@x.com", "senha": "secret"})

    assert r.status_code == 500
    assert r.json() == {"erro": "Dados do gesseiro não encontrados"}
