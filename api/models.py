"""
Pydantic models para validación de requests/responses.

Define schemas tipados para todos los endpoints de la API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from agent.models import EscalationPriority, EscalationStatus, HumanAgentStatus


# Error Response (RFC 7807 simplificado)


class ErrorResponse(BaseModel):
    """
    Modelo de error estructurado inspirado en RFC 7807.

    Se usa como response_model en todos los errores para garantizar
    un formato consistente y predecible para los consumidores de la API.
    """

    type: str = Field(
        ..., description="Categoría del error (ej: 'validation_error', 'not_found')"
    )
    title: str = Field(..., description="Título breve del error")
    status: int = Field(..., description="Código HTTP del error")
    detail: str = Field(..., description="Descripción legible del error")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "invalid_transition",
                    "title": "Transición Inválida",
                    "status": 409,
                    "detail": "Escalación esc_1: 'resolve' no es válido desde 'pending'",
                }
            ]
        }
    }


# Chat


class ChatRequest(BaseModel):
    """Request de un turno de chat (el texto se valida en el orquestador)"""

    company_id: str = Field(..., description="Empresa dueña del agente", min_length=1)
    session_id: str = Field(..., description="ID de la sesión de chat", min_length=1)
    user_id: Optional[str] = Field(default=None, description="ID del usuario final")
    message: str = Field(..., description="Mensaje del usuario")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "company_id": "acme",
                    "session_id": "sess-42",
                    "user_id": "user-7",
                    "message": "What is your refund policy?",
                }
            ]
        }
    }


class MessageOut(BaseModel):
    role: str
    content: str
    timestamp: datetime


class EscalationMessageOut(BaseModel):
    content: str
    sender: str
    sender_type: str
    timestamp: datetime


class EscalationOut(BaseModel):
    """Escalación con campos derivados (SLA y tiempo de resolución)"""

    id: str
    session_id: str
    company_id: str
    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    reason: str
    description: Optional[str] = None
    priority: EscalationPriority
    status: EscalationStatus
    assigned_agent: Optional[str] = None
    messages: List[EscalationMessageOut] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    is_overdue: bool = False
    resolution_time_seconds: Optional[float] = None


class ChatResponse(BaseModel):
    """Response de un turno de chat"""

    success: bool = Field(..., description="Siempre True si hubo respuesta")
    reply: str = Field(..., description="Respuesta del agente")
    session_id: str
    confidence_tier: str = Field(..., description="none | low | medium | high")
    confidence_score: float = Field(..., description="Score efectivo de confianza")
    knowledge_used: bool
    tools_executed: bool
    triggered_tools: List[str] = Field(default_factory=list)
    tool_error: Optional[str] = None
    fallback_used: bool = False
    escalation: Optional[EscalationOut] = None
    escalation_created: bool = False
    processing_time: Optional[float] = Field(
        None, description="Tiempo de procesamiento en segundos"
    )


class ConversationResponse(BaseModel):
    """Ventana de trabajo + log durable de una sesión"""

    session_id: str
    agent_id: str
    company_id: str
    user_id: Optional[str] = None
    summary: Optional[str] = None
    unresolved_count: int = 0
    window: List[MessageOut]
    log: List[MessageOut]
    updated_at: datetime


# Escalations


class EscalationCheckRequest(BaseModel):
    """Evaluación de reglas sin crear la escalación"""

    message: str = Field(..., min_length=1)
    sentiment: Optional[float] = Field(
        default=None, ge=-1.0, le=1.0, description="Si falta se calcula del mensaje"
    )
    unresolved_count: int = Field(default=0, ge=0)


class EscalationCheckResponse(BaseModel):
    should_escalate: bool
    reason: Optional[str] = None
    priority: Optional[EscalationPriority] = None
    rule_id: Optional[str] = None


class EscalationCreateRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    company_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    priority: EscalationPriority = EscalationPriority.MEDIUM
    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AssignRequest(BaseModel):
    assigned_agent: str = Field(..., min_length=1, description="ID del agente humano")


class StatusUpdateRequest(BaseModel):
    status: EscalationStatus
    assigned_agent: Optional[str] = Field(
        default=None, description="Requerido cuando status = assigned"
    )


class EscalationMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    sender: str = Field(..., min_length=1)
    sender_type: str = Field(..., description="agent | customer | system")


class EscalationStatsResponse(BaseModel):
    company_id: str
    total: int
    by_status: Dict[str, int]
    pending: int
    resolved: int
    overdue: int
    average_resolution_seconds: Optional[float] = None


# Human agents


class DayAvailability(BaseModel):
    start: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    end: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    available: bool = True


class HumanAgentCreateRequest(BaseModel):
    company_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    skills: List[str] = Field(default_factory=list)
    max_concurrent_chats: int = Field(default=3, ge=1, le=50)
    availability: Optional[Dict[str, DayAvailability]] = None
    status: HumanAgentStatus = HumanAgentStatus.OFFLINE


class HumanAgentStatusRequest(BaseModel):
    status: HumanAgentStatus


class HumanAgentOut(BaseModel):
    id: str
    company_id: str
    name: str
    email: str
    status: HumanAgentStatus
    skills: List[str]
    max_concurrent_chats: int
    current_chats: int
    availability: Dict[str, Dict[str, Any]]
    created_at: datetime
    updated_at: datetime


class HumanAgentStatsResponse(BaseModel):
    agent_id: str
    name: str
    status: HumanAgentStatus
    total_escalations: int
    resolved_escalations: int
    pending_escalations: int
    average_resolution_seconds: Optional[float] = None
    current_load: float


class HealthResponse(BaseModel):
    """Response del health check"""

    status: str = Field(..., description="Estado del servicio")
    version: str = Field(..., description="Versión de la API")
    components: Dict[str, str] = Field(..., description="Estado de componentes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "1.0.0",
                    "components": {
                        "database": "ok",
                        "vector_store": "ok (122 vectors)",
                        "groq_api": "ok",
                    },
                }
            ]
        }
    }
