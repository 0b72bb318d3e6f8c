"""Modelos Pydantic (schemas) para validação de entrada/saída do serviço de gesseiros."""

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import DEFAULT_UNIT, DEFAULT_MAX_DISTANCE

# Campos obrigatórios não aceitam string vazia nem só espaços.
RequiredStr = Annotated[str, Field(min_length=1, pattern=r"\S")]


# --- Schemas de Autenticação ---

class RegistrationRequest(BaseModel):
    """Dados do cadastro completo: perfil do gesseiro + credenciais."""
    nome: RequiredStr
    cidade: RequiredStr
    telefone: RequiredStr
    email: RequiredStr
    instagram: Optional[str] = None
    descricao: Optional[str] = None
    senha: RequiredStr


class LoginRequest(BaseModel):
    email: RequiredStr
    senha: RequiredStr


class AuthResponse(BaseModel):
    """Resposta de login/cadastro com o token Bearer."""
    token: str
    gesseiroId: int
    nome: str
    email: str
    mensagem: Optional[str] = None


# --- Schemas de Gesseiro ---

class ContractorUpdate(BaseModel):
    nome: RequiredStr
    cidade: RequiredStr
    telefone: RequiredStr
    email: Optional[str] = None
    instagram: Optional[str] = None
    descricao: Optional[str] = None


class PhotoResponse(BaseModel):
    id: int
    gesseiro_id: int
    url_foto: str
    descricao: Optional[str] = None
    data_upload: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ServiceCreate(BaseModel):
    """Novo item de preço. Unidade e distância máxima têm valores padrão."""
    nome_servico: RequiredStr
    preco_com_material: float = Field(..., ge=0)
    preco_sem_material: float = Field(..., ge=0)
    unidade: Optional[str] = None
    distancia_maxima: Optional[int] = Field(None, ge=0)


class ServiceResponse(BaseModel):
    id: int
    gesseiro_id: int
    nome_servico: str
    preco_com_material: float
    preco_sem_material: float
    unidade: str = DEFAULT_UNIT
    distancia_maxima: int = DEFAULT_MAX_DISTANCE
    data_cadastro: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContractorResponse(BaseModel):
    id: int
    nome: str
    cidade: str
    telefone: str
    email: Optional[str] = None
    instagram: Optional[str] = None
    descricao: Optional[str] = None
    data_cadastro: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContractorListItem(ContractorResponse):
    """Gesseiro da listagem geral, com fotos e serviços agrupados."""
    fotos: List[PhotoResponse] = []
    servicos: List[ServiceResponse] = []


# --- Schemas de Mensagens ---

class MessageResponse(BaseModel):
    mensagem: str


class UpdateResponse(MessageResponse):
    id: int


class PhotoCreatedResponse(MessageResponse):
    foto: PhotoResponse


class ServiceCreatedResponse(MessageResponse):
    servico: ServiceResponse
