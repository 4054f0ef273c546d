"""
Conversation Context Manager — Ventana acotada por sesión + log durable.

Dos capas separadas:
- Ventana de trabajo (conversation_contexts): las N entradas más recientes,
  es lo que se le manda al LLM. Se recorta FIFO en cada append.
- Log durable (conversation_messages): todos los mensajes, nunca se recorta.

Los append sobre una misma sesión se serializan con KeyedLock.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agent.db_service import DBService
from agent.errors import NotFoundError
from agent.locks import KeyedLock
from agent.models import ConversationContext, Message, Role

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 10
SUMMARY_QUOTE_CHARS = 100
MAX_KEY_POINTS = 5

ISSUE_KEYWORDS = ("problem", "issue", "error", "can't", "unable", "help", "fix", "broken")
URGENCY_KEYWORDS = ("urgent", "asap", "immediately", "frustrated", "angry")
URGENCY_POINT = "Customer appears urgent/frustrated"
DEFAULT_KEY_POINT = "General inquiry or support request"
EMPTY_SUMMARY = "No conversation history available."


def _quote(text: str) -> str:
    suffix = "..." if len(text) > SUMMARY_QUOTE_CHARS else ""
    return f'"{text[:SUMMARY_QUOTE_CHARS]}{suffix}"'


def build_summary(messages: Sequence[Message], escalation_reason: str = None) -> str:
    """Resumen en texto de una conversación (para el agente humano)."""
    if not messages:
        return EMPTY_SUMMARY

    total = len(messages)
    summary = f"Customer had {total} message exchange{'s' if total > 1 else ''}. "

    user_messages = [m for m in messages if m.role == Role.USER]
    if user_messages:
        summary += f"Initial request: {_quote(user_messages[0].content)}. "
        if len(user_messages) > 1:
            summary += f"Latest message: {_quote(user_messages[-1].content)}. "

    if escalation_reason:
        summary += f"Escalation reason: {escalation_reason}. "

    summary += "Customer needs human assistance to resolve their issue."
    return summary


def key_points(messages: Sequence[Message]) -> List[str]:
    """
    Puntos clave de los mensajes del usuario.

    Como máximo 5, sin duplicados; si nada matchea devuelve un punto genérico.
    """
    points: List[str] = []
    for message in messages:
        if message.role != Role.USER:
            continue
        content = message.content.lower()

        for keyword in ISSUE_KEYWORDS:
            if keyword in content and not any(keyword in p for p in points):
                points.append(f"Customer mentioned: {keyword}")

        for keyword in URGENCY_KEYWORDS:
            if keyword in content and not any("urgent" in p for p in points):
                points.append(URGENCY_POINT)

    return points[:MAX_KEY_POINTS] or [DEFAULT_KEY_POINT]


class ConversationContextManager:
    """Gestiona la ventana de trabajo y el log durable de cada sesión."""

    def __init__(
        self,
        db: DBService,
        window_size: int = DEFAULT_WINDOW_SIZE,
        locks: KeyedLock = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if window_size < 1:
            raise ValueError(f"window_size debe ser >= 1 (recibido {window_size})")
        self._db = db
        self.window_size = window_size
        self._locks = locks or KeyedLock()
        self._clock = clock

    def get(self, session_id: str) -> Optional[ConversationContext]:
        return self._db.get_context(session_id)

    def append(
        self,
        session_id: str,
        message: Message,
        agent_id: str = None,
        company_id: str = None,
        user_id: str = None,
    ) -> ConversationContext:
        """
        Agrega un mensaje a la sesión (crea el contexto en el primer uso).

        Args:
            session_id: ID de la sesión
            message: Mensaje a agregar
            agent_id / company_id: requeridos al crear; si vienen con una
                sesión existente deben coincidir con sus dueños
            user_id: solo se usa al crear

        Returns:
            El contexto ya recortado a window_size

        Raises:
            NotFoundError: la sesión pertenece a otro agente o empresa
        """
        context, _ = self.open_turn(session_id, message, agent_id, company_id, user_id)
        return context

    def open_turn(
        self,
        session_id: str,
        message: Message,
        agent_id: str = None,
        company_id: str = None,
        user_id: str = None,
    ) -> Tuple[ConversationContext, bool]:
        """Como append, pero además indica si la sesión se creó en esta llamada."""
        with self._locks.hold(f"session:{session_id}"):
            now = self._clock()
            context = self._db.get_context(session_id)
            created = context is None
            if created:
                if not agent_id or not company_id:
                    raise ValueError(
                        f"[{session_id}] agent_id y company_id son requeridos para crear la sesión"
                    )
                context = ConversationContext(
                    session_id=session_id,
                    agent_id=agent_id,
                    company_id=company_id,
                    user_id=user_id,
                    messages=[],
                    summary=None,
                    unresolved_count=0,
                    created_at=now,
                    updated_at=now,
                )
                logger.info(f"[{session_id}] Nueva sesión para agente {agent_id}")
            elif (agent_id and agent_id != context.agent_id) or (
                company_id and company_id != context.company_id
            ):
                logger.warning(
                    f"[{session_id}] Sesión de {context.agent_id}/{context.company_id} "
                    f"usada por {agent_id}/{company_id}"
                )
                raise NotFoundError(
                    f"Sesión no encontrada para el agente {agent_id}: {session_id}"
                )

            context.messages.append(message)
            evicted = len(context.messages) - self.window_size
            if evicted > 0:
                context.messages = context.messages[evicted:]
                logger.debug(f"[{session_id}] {evicted} mensaje(s) fuera de la ventana")
            context.updated_at = now

            self._db.save_context(context)
            self._db.add_message(session_id, message)
            return context, created

    def history(self, session_id: str, limit: int = None) -> List[Message]:
        """Los `limit` mensajes más recientes de la ventana."""
        context = self._db.get_context(session_id)
        if context is None:
            return []
        if limit is None:
            return list(context.messages)
        if limit <= 0:
            return []
        return context.messages[-limit:]

    def full_log(self, session_id: str) -> List[Message]:
        return self._db.get_messages(session_id)

    def summarize(self, session_id: str, escalation_reason: str = None) -> str:
        """Resumen del log durable; queda guardado en el contexto."""
        summary = build_summary(self._db.get_messages(session_id), escalation_reason)
        self._db.update_summary(session_id, summary, self._clock())
        return summary

    def key_points(self, messages: Sequence[Message]) -> List[str]:
        return key_points(messages)

    def conversation_report(
        self, session_id: str, escalation_reason: str = None
    ) -> Dict[str, Any]:
        """Resumen + puntos clave + métricas del log durable."""
        messages = self._db.get_messages(session_id)
        summary = build_summary(messages, escalation_reason)
        self._db.update_summary(session_id, summary, self._clock())

        duration = 0.0
        if len(messages) > 1:
            duration = (messages[-1].timestamp - messages[0].timestamp).total_seconds()

        return {
            "summary": summary,
            "keyPoints": key_points(messages),
            "messageCount": len(messages),
            "durationSeconds": duration,
        }

    def mark_unresolved(self, session_id: str) -> int:
        """Suma un turno sin resolver; devuelve el nuevo contador."""
        with self._locks.hold(f"session:{session_id}"):
            context = self._db.get_context(session_id)
            if context is None:
                return 0
            count = context.unresolved_count + 1
            self._db.set_unresolved_count(session_id, count, self._clock())
            return count

    def mark_resolved(self, session_id: str) -> int:
        with self._locks.hold(f"session:{session_id}"):
            if self._db.get_context(session_id) is None:
                return 0
            self._db.set_unresolved_count(session_id, 0, self._clock())
            return 0

    def unresolved_count(self, session_id: str) -> int:
        context = self._db.get_context(session_id)
        return context.unresolved_count if context else 0
