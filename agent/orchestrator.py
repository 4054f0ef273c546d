"""
Orchestrator — Punto de entrada de cada turno de chat.

Flujo:
1. Validar el mensaje entrante (única falla visible como 4xx)
2. Cargar el agente y guardar el mensaje del usuario
3. Recuperar conocimiento (vector + fallback en vivo) y calcular confianza
4. Detectar herramientas y ejecutar como máximo una
5. Armar el system prompt según el tier y llamar al LLM
6. Guardar la respuesta y actualizar el contador de turnos sin resolver
7. Evaluar reglas de escalación y, si corresponde, escalar la sesión
"""

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from agent.conversation import ConversationContextManager
from agent.db_service import DBService
from agent.errors import (
    LLMError,
    NotFoundError,
    OrchestratorError,
    ToolExecutionError,
    ToolValidationError,
)
from agent.escalation import EscalationDecision, EscalationEngine, NO_ESCALATION
from agent.models import AgentProfile, Escalation, Message, Role
from agent.signals import TurnSignals
from agent.tools import (
    ToolExecutor,
    ToolTriggerDetector,
    build_tool_parameters,
    format_tool_result,
)
from rag.query.confidence import ConfidenceResult, ConfidenceTier
from rag.query.prompt import PromptAssembler
from rag.query.retriever import KnowledgeRetriever
from rag.query.validator import MessageValidator

logger = logging.getLogger(__name__)

APOLOGY_REPLY = (
    "I apologize, but I'm having trouble processing your request right now."
)

_RESOLVING_TIERS = (ConfidenceTier.MEDIUM, ConfidenceTier.HIGH)


@dataclass
class TurnResult:
    """Respuesta final del turno + metadata de observabilidad."""

    session_id: str
    reply: str
    confidence: ConfidenceResult
    knowledge_used: bool
    tools_executed: bool
    triggered_tools: List[str] = field(default_factory=list)
    tool_result: Optional[Dict[str, Any]] = None
    tool_error: Optional[str] = None
    fallback_used: bool = False
    llm_failed: bool = False
    decision: EscalationDecision = NO_ESCALATION
    escalation: Optional[Escalation] = None
    escalation_created: bool = False
    usage: Dict[str, int] = field(default_factory=dict)
    processing_time: float = 0.0

    @property
    def confidence_tier(self) -> ConfidenceTier:
        return self.confidence.tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "reply": self.reply,
            "session_id": self.session_id,
            "confidence_tier": self.confidence.tier.value,
            "confidence_score": round(self.confidence.score, 4),
            "knowledge_used": self.knowledge_used,
            "tools_executed": self.tools_executed,
            "triggered_tools": list(self.triggered_tools),
            "tool_error": self.tool_error,
            "fallback_used": self.fallback_used,
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "escalation_created": self.escalation_created,
            "processing_time": round(self.processing_time, 3),
        }


class TurnOrchestrator:
    """Secuencia retrieval → tools → prompt → LLM → contexto → escalación."""

    def __init__(
        self,
        db: DBService,
        retriever: KnowledgeRetriever,
        responder,
        conversation: ConversationContextManager,
        escalation: EscalationEngine,
        tool_detector: ToolTriggerDetector = None,
        tool_executor: ToolExecutor = None,
        prompt_assembler: PromptAssembler = None,
        validator: MessageValidator = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        llm_timeout: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._db = db
        self._retriever = retriever
        self._responder = responder
        self._conversation = conversation
        self._escalation = escalation
        self._detector = tool_detector or ToolTriggerDetector()
        self._executor = tool_executor or ToolExecutor()
        self._assembler = prompt_assembler or PromptAssembler()
        self._validator = validator or MessageValidator()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.llm_timeout = llm_timeout
        self._clock = clock

        logger.info("TurnOrchestrator inicializado")

    # Entry point

    def handle_turn(
        self,
        agent_id: str,
        company_id: str,
        user_id: Optional[str],
        session_id: str,
        message: str,
    ) -> TurnResult:
        """
        Procesa un mensaje del usuario y devuelve la respuesta del agente.

        Raises:
            ValidationError: mensaje vacío / demasiado largo o ids faltantes
            NotFoundError: el agente no existe para la empresa, o la sesión es de otro agente
        """
        start_time = time.time()

        self._validator.validate_ids(
            agent_id=agent_id, company_id=company_id, session_id=session_id
        )
        text = self._validator.validate(message)

        agent = self._db.get_agent(agent_id, company_id)
        if agent is None:
            raise NotFoundError(f"Agente no encontrado: {agent_id} ({company_id})")

        logger.info(f"[{session_id}] Mensaje: {text[:60]}")

        # Falla si la sesión es de otro agente o empresa
        context, is_new_session = self._conversation.open_turn(
            session_id,
            Message(role=Role.USER, content=text, timestamp=self._clock()),
            agent_id=agent_id,
            company_id=company_id,
            user_id=user_id,
        )

        # 1. Conocimiento
        retrieval = self._retriever.retrieve(agent_id, company_id, text)

        # 2. Herramientas (como máximo una por turno)
        triggered = self._detector.detect(text, agent.enabled_tools)
        tool_text, tool_result, tool_error = self._run_tool(
            triggered, agent, session_id, user_id, text
        )

        # 3. Prompt + LLM
        system_prompt = self._assembler.assemble(
            agent,
            retrieval.confidence,
            knowledge_context=retrieval.context_text(),
            tool_results=tool_text,
        )
        llm_messages = [{"role": Role.SYSTEM.value, "content": system_prompt}]
        llm_messages.extend(m.as_llm_message() for m in context.messages)

        reply, usage, llm_failed = self._complete(session_id, llm_messages)

        self._conversation.append(
            session_id,
            Message(role=Role.ASSISTANT, content=reply, timestamp=self._clock()),
        )

        # 4. Señales + escalación
        unresolved = self._update_unresolved(session_id, retrieval.confidence, llm_failed)
        signals = TurnSignals.from_message(text, unresolved)
        decision = self._escalation.should_escalate(text, signals)
        escalation, created = self._escalate(
            session_id, agent, user_id, text, decision, signals
        )

        self._record_usage(agent, is_new_session)

        result = TurnResult(
            session_id=session_id,
            reply=reply,
            confidence=retrieval.confidence,
            knowledge_used=retrieval.has_knowledge,
            tools_executed=bool(tool_result and tool_result.get("success")),
            triggered_tools=triggered,
            tool_result=tool_result,
            tool_error=tool_error,
            fallback_used=retrieval.fallback_used,
            llm_failed=llm_failed,
            decision=decision,
            escalation=escalation,
            escalation_created=created,
            usage=usage,
            processing_time=time.time() - start_time,
        )
        logger.info(
            f"[{session_id}] tier={result.confidence_tier.value} "
            f"tools={triggered[:1]} escalation={escalation.id if escalation else None} "
            f"({result.processing_time:.2f}s)"
        )
        return result

    # Pasos del turno

    def _run_tool(
        self,
        triggered: List[str],
        agent: AgentProfile,
        session_id: str,
        user_id: Optional[str],
        text: str,
    ):
        """Ejecuta la primera herramienta detectada. Devuelve (texto, resultado, error)."""
        if not triggered:
            return "", None, None

        tool_id = triggered[0]
        params = build_tool_parameters(
            tool_id, text, session_id, user_id, registry=self._executor.registry
        )
        context = {
            "agent_id": agent.agent_id,
            "company_id": agent.company_id,
            "user_id": user_id,
            "agent": agent,
        }

        try:
            result = self._executor.execute(tool_id, params, context)
        except ToolValidationError as e:
            logger.info(f"[{session_id}] Herramienta {tool_id} no ejecutada: {e}")
            return "", None, str(e)
        except ToolExecutionError as e:
            logger.warning(f"[{session_id}] Herramienta {tool_id} falló: {e}", exc_info=True)
            return "", None, str(e)

        if not result.get("success"):
            return "", result, result.get("message") or "Tool reported failure"
        return format_tool_result(tool_id, result), result, None

    def _complete(self, session_id: str, messages: List[Dict[str, str]]):
        try:
            completion = self._responder.complete(
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.llm_timeout,
            )
        except LLMError as e:
            logger.error(f"[{session_id}] LLM falló, se responde con disculpa: {e}")
            return APOLOGY_REPLY, {}, True
        return completion["content"], completion.get("usage") or {}, False

    def _update_unresolved(
        self, session_id: str, confidence: ConfidenceResult, llm_failed: bool
    ) -> int:
        if llm_failed or confidence.tier == ConfidenceTier.NONE:
            return self._conversation.mark_unresolved(session_id)
        if confidence.tier in _RESOLVING_TIERS:
            return self._conversation.mark_resolved(session_id)
        return self._conversation.unresolved_count(session_id)

    def _escalate(
        self,
        session_id: str,
        agent: AgentProfile,
        user_id: Optional[str],
        text: str,
        decision: EscalationDecision,
        signals: TurnSignals,
    ):
        if not decision.should_escalate:
            return None, False

        try:
            report = self._conversation.conversation_report(session_id, decision.reason)
            return self._escalation.escalate_session(
                session_id=session_id,
                company_id=agent.company_id,
                decision=decision,
                agent_id=agent.agent_id,
                user_id=user_id,
                description=report["summary"],
                metadata={
                    "rule_id": decision.rule_id,
                    "key_points": report["keyPoints"],
                    "message_count": report["messageCount"],
                    "signals": signals.to_dict(),
                    "trigger_message": text,
                },
            )
        except (OrchestratorError, sqlite3.Error) as e:
            logger.error(f"[{session_id}] No se pudo escalar: {e}", exc_info=True)
            return None, False

    def _record_usage(self, agent: AgentProfile, is_new_session: bool) -> None:
        try:
            self._db.record_usage(
                agent.agent_id, agent.company_id, is_new_session, self._clock()
            )
        except sqlite3.Error as e:
            logger.warning(f"No se pudieron actualizar estadísticas de {agent.agent_id}: {e}")
