"""Define as tabelas 'gesseiros', 'usuarios', 'fotos' e 'servicos' usando SQLAlchemy ORM."""

from sqlalchemy import Column, Integer, String, Text, Float, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship
from db import Base

DEFAULT_UNIT = "m²"
DEFAULT_MAX_DISTANCE = 50


class Contractor(Base):
    """
    Modelo que representa a tabela 'gesseiros'.
    É a entidade raiz: usuários, fotos e serviços pertencem a um gesseiro.
    """
    __tablename__ = "gesseiros"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    nome = Column(String(255), nullable=False)
    cidade = Column(String(255), nullable=False, index=True)
    telefone = Column(String(50), nullable=False)
    email = Column(String(255))
    instagram = Column(String(255))
    descricao = Column(Text)
    data_cadastro = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Todos os filhos seguem a mesma política: removidos junto com o gesseiro.
    users = relationship("User", back_populates="contractor", cascade="all, delete-orphan", passive_deletes=True)
    photos = relationship("Photo", back_populates="contractor", cascade="all, delete-orphan", passive_deletes=True)
    services = relationship("ServicePrice", back_populates="contractor", cascade="all, delete-orphan", passive_deletes=True)


class User(Base):
    """Credenciais de acesso. O hash bcrypt fica em 'senha'; a senha em texto plano nunca é salva."""
    __tablename__ = "usuarios"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    senha = Column(String(255), nullable=False)
    gesseiro_id = Column(Integer, ForeignKey("gesseiros.id", ondelete="CASCADE"), nullable=False, index=True)
    data_cadastro = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    contractor = relationship("Contractor", back_populates="users")


class Photo(Base):
    __tablename__ = "fotos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    gesseiro_id = Column(Integer, ForeignKey("gesseiros.id", ondelete="CASCADE"), nullable=False, index=True)
    # Caminho relativo do arquivo, ex.: 'uploads/gesseiro-1700000000000-123.jpg'
    url_foto = Column(String(512), nullable=False)
    descricao = Column(Text)
    data_upload = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    contractor = relationship("Contractor", back_populates="photos")


class ServicePrice(Base):
    """Item da tabela de preços de um gesseiro (com e sem material)."""
    __tablename__ = "servicos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    gesseiro_id = Column(Integer, ForeignKey("gesseiros.id", ondelete="CASCADE"), nullable=False, index=True)
    nome_servico = Column(String(255), nullable=False)
    preco_com_material = Column(Float, nullable=False)
    preco_sem_material = Column(Float, nullable=False)
    unidade = Column(String(20), nullable=False, default=DEFAULT_UNIT, server_default=DEFAULT_UNIT)
    distancia_maxima = Column(Integer, nullable=False, default=DEFAULT_MAX_DISTANCE, server_default=str(DEFAULT_MAX_DISTANCE))
    data_cadastro = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    contractor = relationship("Contractor", back_populates="services")
