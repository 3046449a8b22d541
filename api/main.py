"""
FastAPI Application - API REST para SupportDesk
- Settings centralizado (Pydantic BaseSettings via config.py)
- Dependency Injection con Depends()
- HTTP Status Codes correctos + Error Handler global
- Async con asyncio.to_thread para operaciones bloqueantes

Endpoints:
- GET  /                                → Raíz informativa
- GET  /health                          → Health check
- POST /conversations                   → Iniciar conversación
- GET  /conversations                   → Conversaciones del tenant
- GET  /conversations/{thread_id}       → Status + transcript
- POST /conversations/{thread_id}/messages → Turno del agente
- POST /secrets                         → Guardar credencial de integración
- GET  /secrets/{service}               → ¿Credencial configurada?
"""

import asyncio
import sys
import time
import logging
from collections import OrderedDict
from pathlib import Path
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

# Agregar directorio raíz al path para imports
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api.config import Settings, get_settings
from api.models import (
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationResponse,
    ErrorResponse,
    HealthResponse,
    MessageInfo,
    MessageRequest,
    MessageResponse,
    SecretStatusResponse,
    SecretUpsertRequest,
    SecretUpsertResponse,
    StartConversationRequest,
)
from agent.conversation import ConversationManager, ConversationStatus
from agent.db_service import DBService
from agent.decision import DecisionProvider
from agent.handlers import ToolDeps, ToolRegistry
from agent.orchestrator import AgentOrchestrator
from agent.prompts import TURN_BUSY_REPLY, AgentConfig
from agent.secrets import SecretsService
from rag.query.responder import AnswerSynthesizer
from rag.query.retriever import KnowledgeRetriever, NamespaceError

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Message deduplication: el widget reintenta envíos con el mismo message_id
_MAX_SEEN = 500
_SEEN_TTL = 300  # 5 minutes
_seen_messages: OrderedDict[str, float] = OrderedDict()


def _is_duplicate_message(msg_id: str) -> bool:
    """Returns True if this message ID was already processed recently."""
    now = time.monotonic()
    # Purge expired entries
    while _seen_messages:
        oldest_key, oldest_time = next(iter(_seen_messages.items()))
        if now - oldest_time > _SEEN_TTL:
            _seen_messages.pop(oldest_key)
        else:
            break
    if msg_id in _seen_messages:
        return True
    _seen_messages[msg_id] = now
    # Cap size
    while len(_seen_messages) > _MAX_SEEN:
        _seen_messages.popitem(last=False)
    return False


def _forget_message(msg_id: str) -> None:
    """Olvida un message ID cuyo turno no llegó a procesarse."""
    _seen_messages.pop(msg_id, None)


# Dependency Injection
# Singletons inyectables via Depends() para facilitar testing

_db: DBService | None = None
_orchestrator: AgentOrchestrator | None = None
_secrets: SecretsService | None = None


def get_db(settings: Settings = Depends(get_settings)) -> DBService:
    """
    Dependency que provee el DBService (con schema aplicado).

    Permite override en tests via app.dependency_overrides[get_db].
    """
    global _db
    if _db is None:
        logger.info(f"Inicializando base de datos en {settings.db_full_path}")
        settings.db_full_path.parent.mkdir(parents=True, exist_ok=True)
        _db = DBService(settings.db_full_path)
        _db.init_schema()
    return _db


def get_orchestrator(settings: Settings = Depends(get_settings)) -> AgentOrchestrator:
    """
    Dependency que provee el AgentOrchestrator.

    Arma retriever, sintetizador, tools y proveedor de decisiones.
    Permite override en tests via app.dependency_overrides[get_orchestrator].
    """
    global _orchestrator
    if _orchestrator is None:
        db = get_db(settings)
        logger.info("Inicializando AgentOrchestrator...")

        deps = ToolDeps(
            db=db,
            conversations=ConversationManager(db),
            retriever=KnowledgeRetriever(
                settings.store_full_path,
                model_name=settings.EMBEDDING_MODEL,
                default_limit=settings.SEARCH_LIMIT,
            ),
            synthesizer=AnswerSynthesizer(
                api_key=settings.GROQ_API_KEY,
                model=settings.SYNTHESIS_MODEL,
                timeout=settings.LLM_TIMEOUT_SECONDS,
            ),
            search_limit=settings.SEARCH_LIMIT,
        )
        decider = DecisionProvider(
            api_key=settings.GROQ_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        _orchestrator = AgentOrchestrator(
            db=db,
            decider=decider,
            tools=ToolRegistry(deps),
            config=AgentConfig(name=settings.AGENT_NAME, tone=settings.AGENT_TONE),
            max_history=settings.MAX_HISTORY_MESSAGES,
            lock_timeout=settings.TURN_LOCK_TIMEOUT_SECONDS,
        )
        logger.info("AgentOrchestrator inicializado correctamente")
    return _orchestrator


def get_secrets_service(settings: Settings = Depends(get_settings)) -> SecretsService:
    """Dependency que provee el SecretsService."""
    global _secrets
    if _secrets is None:
        _secrets = SecretsService(get_db(settings), services=settings.SECRET_SERVICES)
    return _secrets


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler: pre-carga el orchestrator al startup."""
    logger.info("SupportDesk API iniciando...")
    try:
        settings = get_settings()
        get_orchestrator(settings)
        get_secrets_service(settings)
        logger.info("Orchestrator y servicios pre-cargados")
    except Exception as e:
        logger.error(f"Error inicializando orchestrator: {e}")

    yield
    logger.info("SupportDesk API cerrando...")


# FastAPI App

app = FastAPI(
    title="SupportDesk API",
    description="API REST para el agente de soporte multi-tenant",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Error de validación"},
        500: {"model": ErrorResponse, "description": "Error interno"},
    },
)

# CORS middleware (el widget se embebe en sitios de terceros)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global Error Handlers


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Errores de validación Pydantic → 422 con formato ErrorResponse."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            type="validation_error",
            title="Datos de entrada inválidos",
            status=422,
            detail=str(exc.errors()),
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException → ErrorResponse con el status original."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            type="http_error",
            title=exc.detail if isinstance(exc.detail, str) else "Error",
            status=exc.status_code,
            detail=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        ).model_dump(),
    )


@app.exception_handler(NamespaceError)
async def namespace_exception_handler(request: Request, exc: NamespaceError):
    """Violación de aislamiento entre tenants → 403."""
    logger.error(f"Violación de aislamiento en {request.url.path}: {exc}")
    return JSONResponse(
        status_code=403,
        content=ErrorResponse(
            type="tenant_isolation",
            title="Forbidden",
            status=403,
            detail="The requested resource does not belong to this organization.",
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Excepción no manejada → 500 genérico.

    Loguea el error real pero devuelve mensaje genérico al cliente
    para no filtrar detalles internos.
    """
    logger.error(f"Error no manejado en {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            type="internal_error",
            title="Error Interno",
            status=500,
            detail="Error interno del servidor. Intenta nuevamente más tarde.",
        ).model_dump(),
    )


# Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Endpoint raíz"""
    return {
        "message": "SupportDesk API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(settings: Settings = Depends(get_settings)):
    """
    Health check endpoint.

    Verifica el estado de:
    - Base de datos
    - Store de conocimiento por tenant
    - Groq API (via API key)
    """
    components = {}
    overall_status = "healthy"

    if settings.db_full_path.exists():
        components["database"] = "ok"
    else:
        components["database"] = "missing"
        overall_status = "degraded"

    store = settings.store_full_path
    if store.is_dir():
        namespaces = sum(1 for p in store.iterdir() if p.is_dir())
        components["knowledge_store"] = f"ok ({namespaces} namespaces)"
    else:
        components["knowledge_store"] = "missing"
        overall_status = "degraded"

    if settings.GROQ_API_KEY:
        components["groq_api"] = "ok"
    else:
        components["groq_api"] = "no_api_key"
        overall_status = "degraded"

    return HealthResponse(status=overall_status, version="1.0.0", components=components)


@app.post(
    "/conversations",
    response_model=ConversationResponse,
    status_code=201,
    tags=["Conversations"],
)
async def start_conversation(
    request: StartConversationRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    """Crea una conversación `unresolved` para el tenant."""
    conversation = await asyncio.to_thread(
        orchestrator.start_conversation, request.organization_id
    )
    logger.info(
        f"Conversación {conversation['thread_id']} creada para "
        f"{request.organization_id}"
    )
    return ConversationResponse(
        conversation_id=conversation["id"],
        organization_id=conversation["organization_id"],
        thread_id=conversation["thread_id"],
        status=conversation["status"],
    )


@app.get(
    "/conversations",
    response_model=ConversationListResponse,
    tags=["Conversations"],
)
async def list_conversations(
    organization_id: str = Query(..., min_length=1, pattern=r"^[A-Za-z0-9_\-]+$"),
    status: ConversationStatus | None = Query(None),
    db: DBService = Depends(get_db),
):
    """Lista las conversaciones del tenant, opcionalmente filtradas por status."""
    rows = await asyncio.to_thread(
        db.list_conversations, organization_id, status.value if status else None
    )
    return ConversationListResponse(
        organization_id=organization_id,
        conversations=[
            ConversationResponse(
                conversation_id=c["id"],
                organization_id=c["organization_id"],
                thread_id=c["thread_id"],
                status=c["status"],
            )
            for c in rows
        ],
    )


@app.get(
    "/conversations/{thread_id}",
    response_model=ConversationDetailResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Thread de otro tenant"},
        404: {"model": ErrorResponse, "description": "Conversación inexistente"},
    },
    tags=["Conversations"],
)
async def get_conversation(
    thread_id: str,
    organization_id: str = Query(..., min_length=1),
    db: DBService = Depends(get_db),
):
    """Devuelve el status y el transcript de una conversación del tenant."""
    conversation = await asyncio.to_thread(db.get_conversation_by_thread, thread_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation["organization_id"] != organization_id:
        raise NamespaceError(f"El thread {thread_id} pertenece a otro tenant")

    messages = await asyncio.to_thread(db.get_messages, thread_id)
    return ConversationDetailResponse(
        conversation_id=conversation["id"],
        organization_id=conversation["organization_id"],
        thread_id=conversation["thread_id"],
        status=conversation["status"],
        messages=[
            MessageInfo(
                role=m["role"],
                content=m["content"],
                tool_name=m.get("tool_name"),
                created_at=m["created_at"],
            )
            for m in messages
        ],
    )


@app.post(
    "/conversations/{thread_id}/messages",
    response_model=MessageResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Thread de otro tenant"},
        404: {"model": ErrorResponse, "description": "Conversación inexistente"},
    },
    tags=["Conversations"],
)
async def post_message(
    thread_id: str,
    request: MessageRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    """
    Procesa un mensaje del usuario a través del agente.

    **Flujo:**
    1. Deduplicación por message_id
    2. Turno del orchestrator (decisión, tools, persistencia)
    3. Status actualizado de la conversación

    **Errores posibles:**
    - 403: El thread pertenece a otro tenant
    - 404: El thread no existe
    """
    conversations = orchestrator.conversations
    conversation = await asyncio.to_thread(conversations.get_by_thread, thread_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation["organization_id"] != request.organization_id:
        raise NamespaceError(f"El thread {thread_id} pertenece a otro tenant")

    dedup_key = f"{thread_id}:{request.message_id}" if request.message_id else None
    if dedup_key and _is_duplicate_message(dedup_key):
        logger.info(f"Mensaje duplicado ignorado: {request.message_id}")
        return MessageResponse(
            thread_id=thread_id,
            reply="",
            status=conversation["status"],
            duplicate=True,
        )

    # Procesar a través del orchestrator (no bloquea event loop)
    try:
        reply = await asyncio.to_thread(
            orchestrator.handle_user_message,
            thread_id,
            request.message,
            request.organization_id,
        )
    except Exception:
        # El turno no se completó: el cliente puede reintentar con el mismo id
        if dedup_key:
            _forget_message(dedup_key)
        raise

    if dedup_key and reply == TURN_BUSY_REPLY:
        _forget_message(dedup_key)

    updated = await asyncio.to_thread(conversations.get_by_thread, thread_id)
    return MessageResponse(
        thread_id=thread_id,
        reply=reply,
        status=updated["status"] if updated else conversation["status"],
    )


@app.post(
    "/secrets",
    response_model=SecretUpsertResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Servicio no soportado"},
    },
    tags=["Secrets"],
)
async def upsert_secret(
    request: SecretUpsertRequest,
    secrets: SecretsService = Depends(get_secrets_service),
):
    """Guarda (o reemplaza) la credencial de una integración del tenant."""
    try:
        result = await asyncio.to_thread(
            secrets.upsert_secret,
            request.organization_id,
            request.service,
            request.value,
        )
    except NamespaceError:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SecretUpsertResponse(**result)


@app.get(
    "/secrets/{service}",
    response_model=SecretStatusResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Servicio no soportado"},
    },
    tags=["Secrets"],
)
async def get_secret_status(
    service: str,
    organization_id: str = Query(..., min_length=1),
    secrets: SecretsService = Depends(get_secrets_service),
):
    """Indica si el tenant tiene credencial para la integración. No expone el valor."""
    try:
        value = await asyncio.to_thread(secrets.get_secret, organization_id, service)
    except NamespaceError:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SecretStatusResponse(
        organization_id=organization_id,
        service=service,
        configured=value is not None,
    )


# Error Handler 404


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handler para 404"""
    detail = getattr(exc, "detail", None)
    if not isinstance(detail, str) or detail == "Not Found":
        detail = f"El endpoint '{request.url.path}' no existe."
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(
            type="not_found",
            title="No Encontrado",
            status=404,
            detail=detail,
        ).model_dump(),
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level="info",
    )
