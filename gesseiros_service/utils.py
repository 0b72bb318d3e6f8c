"""Funções de utilidade do serviço: hash de senhas e emissão/validação de tokens JWT."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

# Configuração do logger
logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifica uma senha em texto plano contra o hash armazenado."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        # Hash corrompido ou em formato desconhecido
        logger.warning(f"Falha ao verificar hash de senha: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Gera o hash bcrypt (com salt) de uma senha em texto plano."""
    return pwd_context.hash(password)


class InvalidTokenError(Exception):
    """Token com assinatura inválida, payload malformado ou expirado."""


@dataclass(frozen=True)
class TokenIdentity:
    """Identidade extraída de um token válido."""
    gesseiro_id: int
    email: str


class TokenService:
    """
    Emite e valida tokens Bearer (JWT) que carregam a identidade do gesseiro.

    A chave de assinatura é recebida no construtor; nada aqui lê o ambiente.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60 * 24 * 7):
        if not secret_key:
            raise ValueError("secret_key é obrigatória")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, gesseiro_id: int, email: str, now: Optional[datetime] = None) -> str:
        """
        Gera um token JWT para o gesseiro com expiração fixa a partir de agora.

        Args:
            gesseiro_id: ID do gesseiro dono da sessão (vai no claim 'sub').
            email: Email do usuário autenticado.
            now: Instante de emissão; usado nos testes para simular tokens antigos.

        Returns:
            String do JWT codificado.
        """
        issued_at = now or datetime.now(timezone.utc)
        to_encode: Dict = {
            "sub": str(gesseiro_id),
            "email": email,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenIdentity:
        """
        Decodifica e valida um token JWT.

        Raises:
            InvalidTokenError: assinatura inválida, token expirado ou payload sem 'sub'/'email'.
        """
        try:
            # python-jose já rejeita tokens com 'exp' vencido
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning(f"Falha na decodificação do token: {e}")
            raise InvalidTokenError("Token inválido") from e

        sub = payload.get("sub")
        email = payload.get("email")
        if payload.get("exp") is None or sub is None or not email:
            logger.warning("Token sem os claims obrigatórios ('sub', 'email', 'exp').")
            raise InvalidTokenError("Payload do token inválido")

        try:
            gesseiro_id = int(sub)
        except (TypeError, ValueError) as e:
            logger.warning(f"Claim 'sub' não é um ID válido: {sub!r}")
            raise InvalidTokenError("Payload do token inválido") from e

        return TokenIdentity(gesseiro_id=gesseiro_id, email=email)
