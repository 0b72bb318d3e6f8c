import logging
import time
from collections import defaultdict
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Depends, HTTPException, status, Request, Header, File, Form, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

# Importações locais
from config import settings
from db import get_db, init_db, SessionLocal
from models import Contractor, User, Photo, ServicePrice, DEFAULT_UNIT, DEFAULT_MAX_DISTANCE
from uploads import PhotoStorage, UploadError
from utils import get_password_hash, verify_password, TokenService, TokenIdentity, InvalidTokenError
import schemas

# Configura logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Cria tabelas se não existirem ao iniciar
init_db()

token_service = TokenService(
    secret_key=settings.secret_key,
    algorithm=settings.algorithm,
    expire_minutes=settings.access_token_expire_minutes,
)
photo_storage = PhotoStorage(settings.upload_dir, max_size=settings.max_upload_size)

# Inicializa FastAPI
app = FastAPI(
    title="Gesseiros Service",
    description="Cadastro, login, perfis, fotos e tabela de preços de gesseiros.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Métricas Prometheus ---
REQUEST_COUNT = Counter(
    "gesseiros_requests_total",
    "Total requests processed by Gesseiros Service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "gesseiros_request_latency_seconds",
    "Request latency in seconds for Gesseiros Service",
    ["endpoint"]
)
REGISTRATION_COUNT = Counter("gesseiros_registrations_total", "Cadastros completos realizados")
PHOTO_UPLOAD_COUNT = Counter("gesseiros_photo_uploads_total", "Fotos enviadas")


def endpoint_label(path: str) -> str:
    """Troca IDs numéricos por '{id}' para não explodir a cardinalidade das métricas."""
    return "/".join("{id}" if part.isdigit() else part for part in path.split("/"))


# --- Middleware para Métricas ---
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Exceção não tratada durante a requisição {request.method} {request.url.path}: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"erro": "Erro no servidor"})
    finally:
        latency = time.time() - start_time
        endpoint = endpoint_label(request.url.path)
        final_status_code = getattr(response, 'status_code', status_code)

        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response


# --- Manipuladores de erro: todo erro sai como {"erro": mensagem} ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"erro": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Requisição inválida em {request.url.path}: {exc.errors()}")
    detalhes = [
        {"campo": ".".join(str(p) for p in err.get("loc", ())[1:]), "mensagem": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"erro": "Campos obrigatórios ausentes ou inválidos", "detalhes": detalhes},
    )


# --- Dependências de Segurança ---

def get_token_service() -> TokenService:
    return token_service


def get_photo_storage() -> PhotoStorage:
    return photo_storage


def get_current_contractor(
    authorization: Optional[str] = Header(None),
    tokens: TokenService = Depends(get_token_service),
) -> TokenIdentity:
    """Extrai e valida o token do cabeçalho 'Authorization: Bearer <token>'."""
    if not authorization:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token não fornecido", headers={"WWW-Authenticate": "Bearer"})

    scheme, _, token_value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token_value.strip():
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token inválido", headers={"WWW-Authenticate": "Bearer"})

    try:
        return tokens.verify(token_value.strip())
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token inválido", headers={"WWW-Authenticate": "Bearer"})


def require_owner(
    gesseiro_id: int,
    identity: TokenIdentity = Depends(get_current_contractor),
    db: Session = Depends(get_db),
) -> TokenIdentity:
    """
    Guarda de autorização das rotas de escrita: o gesseiro do token
    precisa ser o mesmo gesseiro do caminho e o login do token ainda
    precisa existir no banco.
    """
    if identity.gesseiro_id != gesseiro_id:
        logger.warning(f"Gesseiro {identity.gesseiro_id} tentou alterar dados do gesseiro {gesseiro_id}.")
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Você não tem permissão para alterar os dados deste gesseiro!")

    user = db.query(User).filter(User.gesseiro_id == identity.gesseiro_id, User.email == identity.email).first()
    if user is None:
        logger.warning(f"Token do gesseiro {identity.gesseiro_id} ({identity.email}) não corresponde a nenhum login.")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token inválido", headers={"WWW-Authenticate": "Bearer"})
    return identity


def get_contractor_or_404(db: Session, gesseiro_id: int) -> Contractor:
    contractor = db.get(Contractor, gesseiro_id)
    if contractor is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Gesseiro não encontrado")
    return contractor


# --- Endpoints de Saúde e Métricas ---
@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Expõe as métricas da aplicação para o Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check():
    """Verifica a saúde do serviço e a conexão com o banco."""
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except SQLAlchemyError as e:
        logger.error(f"Health check falhou - erro de BD: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Erro de conexão com o banco de dados")
    return {"status": "ok", "service": "gesseiros_service", "database": "ok"}


# --- Endpoints de Autenticação ---

@app.post("/api/cadastro-completo", response_model=schemas.AuthResponse, tags=["Authentication"])
def register(
    data: schemas.RegistrationRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Cadastro completo: cria o gesseiro e o usuário dono dele na mesma transação
    e devolve um token já autenticado.
    """
    logger.info(f"Tentativa de cadastro para email: {data.email}")

    if db.query(User).filter(User.email == data.email).first():
        logger.warning(f"Cadastro recusado: email {data.email} já existe.")
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Este email já está cadastrado")

    hashed_password = get_password_hash(data.senha)
    contractor = Contractor(
        nome=data.nome,
        cidade=data.cidade,
        telefone=data.telefone,
        email=data.email,
        instagram=data.instagram or "",
        descricao=data.descricao,
    )

    try:
        db.add(contractor)
        db.flush()  # gera contractor.id antes do usuário referenciá-lo
        db.add(User(email=data.email, senha=hashed_password, gesseiro_id=contractor.id))
        db.commit()
        db.refresh(contractor)
    except IntegrityError:
        db.rollback()
        logger.warning(f"Cadastro recusado por integridade (email duplicado): {data.email}")
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Este email já está cadastrado")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro de BD no cadastro de {data.email}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao cadastrar gesseiro")

    REGISTRATION_COUNT.inc()
    logger.info(f"Cadastro completo realizado: gesseiro {contractor.id} ({data.email})")

    return {
        "mensagem": "Cadastro realizado com sucesso!",
        "token": tokens.issue(contractor.id, data.email),
        "gesseiroId": contractor.id,
        "nome": contractor.nome,
        "email": data.email,
    }


@app.post("/api/login", response_model=schemas.AuthResponse, response_model_exclude_none=True, tags=["Authentication"])
def login(
    credentials: schemas.LoginRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Autentica por email e senha. Email inexistente e senha errada
    recebem a mesma resposta para não revelar qual dos dois falhou.
    """
    logger.info(f"Tentativa de login para: {credentials.email}")
    user = db.query(User).filter(User.email == credentials.email).first()

    if not user or not verify_password(credentials.senha, user.senha):
        logger.warning(f"Login falhou para: {credentials.email}")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Email ou senha incorretos")

    contractor = db.get(Contractor, user.gesseiro_id)
    if contractor is None:
        logger.error(f"Usuário {user.id} aponta para gesseiro inexistente {user.gesseiro_id}.")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Dados do gesseiro não encontrados")

    logger.info(f"Login bem-sucedido para gesseiro {contractor.id}")
    return {
        "token": tokens.issue(contractor.id, user.email),
        "gesseiroId": contractor.id,
        "nome": contractor.nome,
        "email": user.email,
    }


# --- Endpoints de Gesseiros ---

@app.get("/api/gesseiros", response_model=List[schemas.ContractorListItem], tags=["Gesseiros"])
def list_contractors(cidade: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Lista os gesseiros (mais recentes primeiro) com suas fotos e serviços.
    Fotos e serviços são buscados em lote e agrupados por gesseiro.
    """
    query = db.query(Contractor)
    if cidade:
        pattern = cidade.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        query = query.filter(Contractor.cidade.ilike(f"%{pattern}%", escape="\\")).order_by(Contractor.nome)
    else:
        query = query.order_by(Contractor.data_cadastro.desc(), Contractor.id.desc())
    contractors = query.all()

    if not contractors:
        return []

    ids = [c.id for c in contractors]
    photos_by_contractor = defaultdict(list)
    for photo in db.query(Photo).filter(Photo.gesseiro_id.in_(ids)).order_by(Photo.data_upload.desc(), Photo.id.desc()):
        photos_by_contractor[photo.gesseiro_id].append(photo)

    services_by_contractor = defaultdict(list)
    for service in db.query(ServicePrice).filter(ServicePrice.gesseiro_id.in_(ids)).order_by(ServicePrice.data_cadastro.desc(), ServicePrice.id.desc()):
        services_by_contractor[service.gesseiro_id].append(service)

    return [
        schemas.ContractorListItem(
            **schemas.ContractorResponse.model_validate(c).model_dump(),
            fotos=[schemas.PhotoResponse.model_validate(p) for p in photos_by_contractor[c.id]],
            servicos=[schemas.ServiceResponse.model_validate(s) for s in services_by_contractor[c.id]],
        )
        for c in contractors
    ]


@app.get("/api/gesseiros/{gesseiro_id}", response_model=schemas.ContractorResponse, tags=["Gesseiros"])
def get_contractor(gesseiro_id: int, db: Session = Depends(get_db)):
    return get_contractor_or_404(db, gesseiro_id)


@app.put("/api/gesseiros/{gesseiro_id}", response_model=schemas.UpdateResponse, tags=["Gesseiros"])
def update_contractor(
    gesseiro_id: int,
    data: schemas.ContractorUpdate,
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
):
    try:
        changes = db.query(Contractor).filter(Contractor.id == gesseiro_id).update(
            data.model_dump(), synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro ao atualizar gesseiro {gesseiro_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao atualizar")

    if changes == 0:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Gesseiro não encontrado")

    logger.info(f"Gesseiro atualizado: {gesseiro_id}")
    return {"mensagem": "Gesseiro atualizado com sucesso!", "id": gesseiro_id}


@app.delete("/api/gesseiros/{gesseiro_id}", response_model=schemas.MessageResponse, tags=["Gesseiros"])
def delete_contractor(
    gesseiro_id: int,
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
    storage: PhotoStorage = Depends(get_photo_storage),
):
    """Remove o gesseiro; usuários, fotos e serviços saem em cascata."""
    contractor = get_contractor_or_404(db, gesseiro_id)
    photo_urls = [url for (url,) in db.query(Photo.url_foto).filter(Photo.gesseiro_id == gesseiro_id)]

    try:
        db.delete(contractor)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro ao deletar gesseiro {gesseiro_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao deletar")

    for url in photo_urls:
        storage.delete(url)

    logger.info(f"Gesseiro deletado - ID: {gesseiro_id} ({len(photo_urls)} fotos)")
    return {"mensagem": "Gesseiro deletado com sucesso!"}


# --- Endpoints de Fotos ---

@app.get("/api/gesseiros/{gesseiro_id}/fotos", response_model=List[schemas.PhotoResponse], tags=["Fotos"])
def list_photos(gesseiro_id: int, db: Session = Depends(get_db)):
    return (
        db.query(Photo)
        .filter(Photo.gesseiro_id == gesseiro_id)
        .order_by(Photo.data_upload.desc(), Photo.id.desc())
        .all()
    )


@app.post("/api/gesseiros/{gesseiro_id}/fotos", response_model=schemas.PhotoCreatedResponse, tags=["Fotos"])
def upload_photo(
    gesseiro_id: int,
    foto: Optional[UploadFile] = File(None),
    descricao: Optional[str] = Form(None),
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
    storage: PhotoStorage = Depends(get_photo_storage),
):
    """Recebe uma imagem (campo 'foto') com descrição opcional e registra seus metadados."""
    if foto is None or not foto.filename:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Nenhuma foto foi enviada")

    get_contractor_or_404(db, gesseiro_id)

    try:
        url_foto = storage.save(foto.file, foto.filename, foto.content_type)
    except UploadError as e:
        logger.warning(f"Upload recusado para gesseiro {gesseiro_id} ({foto.filename}): {e}")
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e))

    photo = Photo(gesseiro_id=gesseiro_id, url_foto=url_foto, descricao=descricao or "")
    try:
        db.add(photo)
        db.commit()
        db.refresh(photo)
    except SQLAlchemyError as e:
        db.rollback()
        storage.delete(url_foto)
        logger.error(f"Erro ao salvar metadados da foto do gesseiro {gesseiro_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao salvar foto")

    PHOTO_UPLOAD_COUNT.inc()
    logger.info(f"Foto adicionada - Gesseiro ID: {gesseiro_id} - Foto ID: {photo.id}")
    return {"mensagem": "Foto adicionada com sucesso!", "foto": photo}


@app.delete("/api/gesseiros/{gesseiro_id}/fotos/{foto_id}", response_model=schemas.MessageResponse, tags=["Fotos"])
def delete_photo(
    gesseiro_id: int,
    foto_id: int,
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
    storage: PhotoStorage = Depends(get_photo_storage),
):
    """Apaga a linha da foto e depois o arquivo; falha na remoção do arquivo só é registrada."""
    photo = db.query(Photo).filter(Photo.id == foto_id, Photo.gesseiro_id == gesseiro_id).first()
    if photo is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Foto não encontrada")

    url_foto = photo.url_foto
    try:
        db.delete(photo)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro ao deletar foto {foto_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao deletar foto")

    if not storage.delete(url_foto):
        logger.warning(f"Foto {foto_id} removida do banco, mas o arquivo {url_foto} permaneceu no disco.")

    logger.info(f"Foto deletada - ID: {foto_id}")
    return {"mensagem": "Foto deletada com sucesso!"}


# --- Endpoints de Serviços (tabela de preços) ---

@app.post("/api/gesseiros/{gesseiro_id}/servicos", response_model=schemas.ServiceCreatedResponse, tags=["Servicos"])
def create_service(
    gesseiro_id: int,
    data: schemas.ServiceCreate,
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
):
    get_contractor_or_404(db, gesseiro_id)

    service = ServicePrice(
        gesseiro_id=gesseiro_id,
        nome_servico=data.nome_servico,
        preco_com_material=data.preco_com_material,
        preco_sem_material=data.preco_sem_material,
        unidade=data.unidade or DEFAULT_UNIT,
        distancia_maxima=data.distancia_maxima or DEFAULT_MAX_DISTANCE,
    )
    try:
        db.add(service)
        db.commit()
        db.refresh(service)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro ao adicionar serviço para gesseiro {gesseiro_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao adicionar serviço")

    logger.info(f"Serviço adicionado: {service.nome_servico} (gesseiro {gesseiro_id})")
    return {"mensagem": "Serviço adicionado com sucesso!", "servico": service}


@app.get("/api/gesseiros/{gesseiro_id}/servicos", response_model=List[schemas.ServiceResponse], tags=["Servicos"])
def list_services(gesseiro_id: int, db: Session = Depends(get_db)):
    return (
        db.query(ServicePrice)
        .filter(ServicePrice.gesseiro_id == gesseiro_id)
        .order_by(ServicePrice.data_cadastro.desc(), ServicePrice.id.desc())
        .all()
    )


@app.delete("/api/gesseiros/{gesseiro_id}/servicos/{servico_id}", response_model=schemas.MessageResponse, tags=["Servicos"])
def delete_service(
    gesseiro_id: int,
    servico_id: int,
    identity: TokenIdentity = Depends(require_owner),
    db: Session = Depends(get_db),
):
    # filtra por id e gesseiro_id juntos
    try:
        deleted = db.query(ServicePrice).filter(
            ServicePrice.id == servico_id,
            ServicePrice.gesseiro_id == gesseiro_id,
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Erro ao deletar serviço {servico_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro ao deletar serviço")

    if deleted == 0:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Serviço não encontrado")

    logger.info(f"Serviço deletado - ID: {servico_id}")
    return {"mensagem": "Serviço deletado com sucesso!"}


# Arquivos enviados ficam públicos em /uploads/<nome>
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
