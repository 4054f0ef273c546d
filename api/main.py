"""
FastAPI Application - API REST del orquestador de respuestas
- Settings centralizado (Pydantic BaseSettings via config.py)
- Dependency Injection con Depends()
- Errores del dominio → ErrorResponse con el status correcto
- Async con asyncio.to_thread para operaciones bloqueantes

Endpoints:
- GET   /                                          → Raíz informativa
- GET   /health                                    → Health check
- POST  /agents/{agent_id}/chat                    → Turno de chat
- GET   /agents/{agent_id}/conversations/{session} → Ventana + log de la sesión
- POST  /escalations/check                         → Evaluar reglas
- POST  /escalations                               → Crear escalación
- GET   /companies/{company_id}/escalations        → Listar escalaciones
- GET   /companies/{company_id}/escalations/stats  → Estadísticas
- GET   /escalations/{id}                          → Detalle
- POST  /escalations/{id}/assign                   → Asignar agente humano
- PATCH /escalations/{id}/status                   → Cambiar estado
- POST  /escalations/{id}/messages                 → Agregar mensaje
- POST  /human-agents                              → Alta de agente humano
- GET   /companies/{company_id}/human-agents       → Listar agentes humanos
- PATCH /human-agents/{id}/status                  → Cambiar estado
- GET   /human-agents/{id}/stats                   → Estadísticas del agente
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from agent.conversation import ConversationContextManager
from agent.db_service import DBService
from agent.errors import InvalidTransitionError, NotFoundError, ValidationError
from agent.escalation import EscalationEngine
from agent.locks import KeyedLock
from agent.models import Escalation, EscalationStatus
from agent.orchestrator import TurnOrchestrator
from agent.signals import TurnSignals, sentiment_score
from api.config import Settings, get_settings
from api.models import (
    AssignRequest,
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    ErrorResponse,
    EscalationCheckRequest,
    EscalationCheckResponse,
    EscalationCreateRequest,
    EscalationMessageRequest,
    EscalationOut,
    EscalationStatsResponse,
    HealthResponse,
    HumanAgentCreateRequest,
    HumanAgentOut,
    HumanAgentStatsResponse,
    HumanAgentStatusRequest,
    StatusUpdateRequest,
)
from rag.query.live_fetch import LiveFetcher
from rag.query.responder import GroqResponder
from rag.query.retriever import FAISSVectorSearch, KnowledgeRetriever
from rag.query.validator import MessageValidator

API_VERSION = "1.0.0"

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Dependency Injection
# Singletons inyectables via Depends() para facilitar testing

_locks = KeyedLock()
_db: Optional[DBService] = None
_engine: Optional[EscalationEngine] = None
_conversation: Optional[ConversationContextManager] = None
_orchestrator: Optional[TurnOrchestrator] = None


def get_db(settings: Settings = Depends(get_settings)) -> DBService:
    global _db
    if _db is None:
        _db = DBService(settings.db_full_path)
    return _db


def get_escalation_engine(db: DBService = Depends(get_db)) -> EscalationEngine:
    """Override en tests via app.dependency_overrides[get_escalation_engine]."""
    global _engine
    if _engine is None:
        _engine = EscalationEngine(db, locks=_locks)
    return _engine


def get_conversation_manager(
    settings: Settings = Depends(get_settings), db: DBService = Depends(get_db)
) -> ConversationContextManager:
    global _conversation
    if _conversation is None:
        _conversation = ConversationContextManager(
            db, window_size=settings.CONTEXT_WINDOW_SIZE, locks=_locks
        )
    return _conversation


def get_orchestrator(settings: Settings = Depends(get_settings)) -> TurnOrchestrator:
    """
    Dependency que provee el TurnOrchestrator.

    Carga el modelo de embeddings y crea el cliente Groq una sola vez.
    Permite override en tests via app.dependency_overrides[get_orchestrator].
    """
    global _orchestrator
    if _orchestrator is None:
        logger.info("Inicializando TurnOrchestrator...")
        db = get_db(settings)
        retriever = KnowledgeRetriever(
            vector_search=FAISSVectorSearch(
                settings.vector_store_path, settings.EMBEDDING_MODEL
            ),
            live_fetch=LiveFetcher(agent_lookup=db.get_agent),
            limit=settings.RETRIEVAL_LIMIT,
            similarity_threshold=settings.SIMILARITY_THRESHOLD,
            fallback_threshold=settings.FALLBACK_SCORE_THRESHOLD,
            fallback_max_urls=settings.FALLBACK_MAX_URLS,
            fallback_timeout_ms=int(settings.FALLBACK_TIMEOUT_SECONDS * 1000),
            max_fallback_snippets=settings.FALLBACK_MAX_SNIPPETS,
        )
        responder = GroqResponder(
            api_key=settings.GROQ_API_KEY,
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        _orchestrator = TurnOrchestrator(
            db=db,
            retriever=retriever,
            responder=responder,
            conversation=get_conversation_manager(settings, db),
            escalation=get_escalation_engine(db),
            validator=MessageValidator(max_length=settings.MAX_MESSAGE_LENGTH),
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            llm_timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        logger.info("TurnOrchestrator inicializado correctamente")
    return _orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler: pre-carga el orquestador al startup."""
    logger.info("API del orquestador iniciando...")
    try:
        settings = get_settings()
        logging.getLogger().setLevel(settings.LOG_LEVEL.upper())
        get_orchestrator(settings)
        logger.info("Orquestador pre-cargado")
    except Exception as e:
        logger.error(f"Error inicializando orquestador: {e}")

    yield
    logger.info("API del orquestador cerrando...")


# FastAPI App

app = FastAPI(
    title="Confidence-Tiered Response Orchestrator",
    description="API REST de agentes con confianza por tiers, herramientas y escalación humana",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Error de validación"},
        500: {"model": ErrorResponse, "description": "Error interno"},
    },
)

# CORS middleware (para desarrollo)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En producción, especificar dominios
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status: int, type_: str, title: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(
            type=type_, title=title, status=status, detail=detail
        ).model_dump(),
    )


# Global Error Handlers


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Errores de validación Pydantic → 422 con formato ErrorResponse."""
    return _error(422, "validation_error", "Datos de entrada inválidos", str(exc.errors()))


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError):
    """Request válido en forma pero no en contenido → 400."""
    return _error(400, "invalid_request", "Request Inválido", str(exc))


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return _error(404, "not_found", "No Encontrado", str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(409, "invalid_transition", "Transición Inválida", str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException → ErrorResponse con el status original."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, "http_error", detail, detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Excepción no manejada → 500 genérico.

    Loguea el error real pero devuelve mensaje genérico al cliente
    para no filtrar detalles internos.
    """
    logger.error(f"Error no manejado en {request.url.path}: {exc}", exc_info=True)
    return _error(
        500,
        "internal_error",
        "Error Interno",
        "Error interno del servidor. Intenta nuevamente más tarde.",
    )


def _escalation_out(engine: EscalationEngine, escalation: Escalation) -> EscalationOut:
    resolution = engine.resolution_time(escalation)
    return EscalationOut(
        **escalation.to_dict(),
        is_overdue=engine.is_overdue(escalation),
        resolution_time_seconds=(
            resolution.total_seconds() if resolution is not None else None
        ),
    )


# Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Endpoint raíz"""
    return {
        "message": "Confidence-Tiered Response Orchestrator API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    settings: Settings = Depends(get_settings), db: DBService = Depends(get_db)
):
    """
    Health check endpoint.

    Verifica el estado de:
    - Base de datos
    - Directorio de índices FAISS
    - Groq API (via API key)
    """
    components = {}
    overall_status = "healthy"

    if await asyncio.to_thread(db.ping):
        components["database"] = "ok"
    else:
        components["database"] = "error"
        overall_status = "unhealthy"

    if settings.vector_store_path.exists():
        components["vector_store"] = "ok"
    else:
        components["vector_store"] = "missing"
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    if settings.GROQ_API_KEY:
        components["groq_api"] = "ok"
    else:
        components["groq_api"] = "no_api_key"
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    return HealthResponse(status=overall_status, version=API_VERSION, components=components)


@app.post(
    "/agents/{agent_id}/chat",
    response_model=ChatResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Mensaje inválido"},
        404: {"model": ErrorResponse, "description": "Agente inexistente"},
    },
    tags=["Chat"],
)
async def chat(
    agent_id: str,
    request: ChatRequest,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """
    Procesa un turno de chat.

    **Flujo:**
    1. Validación del mensaje
    2. Recuperación de conocimiento + confianza (con fallback en vivo)
    3. Detección / ejecución de herramienta
    4. Respuesta del LLM con prompt según tier
    5. Evaluación de escalación
    """
    logger.info(f"[{request.session_id}] Chat para agente {agent_id}")

    result = await asyncio.to_thread(
        orchestrator.handle_turn,
        agent_id=agent_id,
        company_id=request.company_id,
        user_id=request.user_id,
        session_id=request.session_id,
        message=request.message,
    )

    payload = result.to_dict()
    if result.escalation is not None:
        payload["escalation"] = _escalation_out(engine, result.escalation)
    return ChatResponse(**payload)


@app.get(
    "/agents/{agent_id}/conversations/{session_id}",
    response_model=ConversationResponse,
    tags=["Chat"],
)
async def get_conversation(
    agent_id: str,
    session_id: str,
    conversation: ConversationContextManager = Depends(get_conversation_manager),
):
    """Ventana de trabajo, log durable y resumen guardado de la sesión."""
    context = await asyncio.to_thread(conversation.get, session_id)
    if context is None or context.agent_id != agent_id:
        raise NotFoundError(f"Sesión no encontrada: {session_id}")

    log = await asyncio.to_thread(conversation.full_log, session_id)
    return ConversationResponse(
        session_id=context.session_id,
        agent_id=context.agent_id,
        company_id=context.company_id,
        user_id=context.user_id,
        summary=context.summary,
        unresolved_count=context.unresolved_count,
        window=[m.to_dict() for m in context.messages],
        log=[m.to_dict() for m in log],
        updated_at=context.updated_at,
    )


@app.post("/escalations/check", response_model=EscalationCheckResponse, tags=["Escalations"])
async def check_escalation(
    request: EscalationCheckRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Evalúa las reglas de escalación sin crear nada."""
    sentiment = request.sentiment
    if sentiment is None:
        sentiment = sentiment_score(request.message)
    signals = TurnSignals(sentiment=sentiment, unresolved_count=request.unresolved_count)
    decision = engine.should_escalate(request.message, signals)
    return EscalationCheckResponse(**decision.to_dict())


@app.post(
    "/escalations",
    response_model=EscalationOut,
    status_code=201,
    tags=["Escalations"],
)
async def create_escalation(
    request: EscalationCreateRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Crea una escalación y la asigna al primer agente humano disponible."""
    escalation = await asyncio.to_thread(
        engine.create_escalation,
        session_id=request.session_id,
        company_id=request.company_id,
        reason=request.reason,
        priority=request.priority,
        agent_id=request.agent_id,
        user_id=request.user_id,
        description=request.description,
        metadata=request.metadata,
    )
    return _escalation_out(engine, escalation)


@app.get(
    "/companies/{company_id}/escalations",
    response_model=List[EscalationOut],
    tags=["Escalations"],
)
async def list_escalations(
    company_id: str,
    status: Optional[EscalationStatus] = Query(default=None),
    assigned_agent: Optional[str] = Query(default=None),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    escalations = await asyncio.to_thread(
        engine.list_escalations, company_id, status, assigned_agent
    )
    return [_escalation_out(engine, e) for e in escalations]


@app.get(
    "/companies/{company_id}/escalations/stats",
    response_model=EscalationStatsResponse,
    tags=["Escalations"],
)
async def escalation_stats(
    company_id: str, engine: EscalationEngine = Depends(get_escalation_engine)
):
    return await asyncio.to_thread(engine.company_stats, company_id)


@app.get("/escalations/{escalation_id}", response_model=EscalationOut, tags=["Escalations"])
async def get_escalation(
    escalation_id: str, engine: EscalationEngine = Depends(get_escalation_engine)
):
    escalation = await asyncio.to_thread(engine.get_escalation, escalation_id)
    return _escalation_out(engine, escalation)


@app.post(
    "/escalations/{escalation_id}/assign",
    response_model=EscalationOut,
    tags=["Escalations"],
)
async def assign_escalation(
    escalation_id: str,
    request: AssignRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    escalation = await asyncio.to_thread(
        engine.assign, escalation_id, request.assigned_agent
    )
    return _escalation_out(engine, escalation)


@app.patch(
    "/escalations/{escalation_id}/status",
    response_model=EscalationOut,
    tags=["Escalations"],
)
async def update_escalation_status(
    escalation_id: str,
    request: StatusUpdateRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    escalation = await asyncio.to_thread(
        engine.update_status, escalation_id, request.status, request.assigned_agent
    )
    return _escalation_out(engine, escalation)


@app.post(
    "/escalations/{escalation_id}/messages",
    response_model=EscalationOut,
    status_code=201,
    tags=["Escalations"],
)
async def add_escalation_message(
    escalation_id: str,
    request: EscalationMessageRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    escalation = await asyncio.to_thread(
        engine.add_message,
        escalation_id,
        request.content,
        request.sender,
        request.sender_type,
    )
    return _escalation_out(engine, escalation)


@app.post("/human-agents", response_model=HumanAgentOut, status_code=201, tags=["Human Agents"])
async def create_human_agent(
    request: HumanAgentCreateRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    availability = None
    if request.availability is not None:
        availability = {day: a.model_dump() for day, a in request.availability.items()}

    agent = await asyncio.to_thread(
        engine.create_human_agent,
        company_id=request.company_id,
        name=request.name,
        email=request.email,
        skills=request.skills,
        max_concurrent_chats=request.max_concurrent_chats,
        availability=availability,
        status=request.status,
    )
    return agent.to_dict()


@app.get(
    "/companies/{company_id}/human-agents",
    response_model=List[HumanAgentOut],
    tags=["Human Agents"],
)
async def list_human_agents(
    company_id: str, engine: EscalationEngine = Depends(get_escalation_engine)
):
    agents = await asyncio.to_thread(engine.list_human_agents, company_id)
    return [a.to_dict() for a in agents]


@app.patch(
    "/human-agents/{human_agent_id}/status",
    response_model=HumanAgentOut,
    tags=["Human Agents"],
)
async def update_human_agent_status(
    human_agent_id: str,
    request: HumanAgentStatusRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    agent = await asyncio.to_thread(
        engine.update_human_agent_status, human_agent_id, request.status
    )
    return agent.to_dict()


@app.get(
    "/human-agents/{human_agent_id}/stats",
    response_model=HumanAgentStatsResponse,
    tags=["Human Agents"],
)
async def human_agent_stats(
    human_agent_id: str, engine: EscalationEngine = Depends(get_escalation_engine)
):
    return await asyncio.to_thread(engine.agent_stats, human_agent_id)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
