"""
Escalation Engine — Reglas de escalación + ciclo de vida + agentes humanos.

Este módulo:
1. Evalúa reglas en orden fijo (la primera que se cumple gana)
2. Crea escalaciones y las asigna al primer agente humano disponible
3. Valida cada transición del ciclo de vida:
       pending → assigned → in_progress → resolved
       (cualquier estado no terminal) → closed
4. Calcula SLA, tiempos de resolución y estadísticas

Las transiciones sobre una misma escalación se serializan con KeyedLock
y además se escriben con chequeo del estado esperado.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from agent.db_service import DBService
from agent.errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from agent.locks import KeyedLock
from agent.models import (
    TERMINAL_STATUSES,
    Escalation,
    EscalationMessage,
    EscalationPriority,
    EscalationStatus,
    HumanAgent,
    HumanAgentStatus,
)
from agent.signals import TurnSignals

logger = logging.getLogger(__name__)


HUMAN_REQUEST_KEYWORDS = ("speak to human", "agent", "manager", "supervisor", "human", "person")
TECHNICAL_KEYWORDS = ("error", "bug", "issue", "problem", "not working", "broken")
TECHNICAL_MIN_LENGTH = 100
UNRESOLVED_LIMIT = 3
NEGATIVE_SENTIMENT_LIMIT = -0.5

DEFAULT_SLA_HOURS: Mapping[EscalationPriority, int] = MappingProxyType(
    {
        EscalationPriority.URGENT: 1,
        EscalationPriority.HIGH: 4,
        EscalationPriority.MEDIUM: 24,
        EscalationPriority.LOW: 72,
    }
)
FALLBACK_SLA_HOURS = 24

SENDER_TYPES = frozenset({"agent", "customer", "system"})

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_MAX_CONCURRENT_CHATS = 3


def default_availability() -> Dict[str, Dict[str, Any]]:
    """Lunes a viernes 09:00-17:00; fin de semana no disponible."""
    availability = {
        day: {"start": "09:00", "end": "17:00", "available": True} for day in WEEKDAYS[:5]
    }
    for day in WEEKDAYS[5:]:
        availability[day] = {"start": "10:00", "end": "14:00", "available": False}
    return availability


# Reglas


@dataclass(frozen=True)
class EscalationRule:
    id: str
    reason: str
    priority: EscalationPriority
    predicate: Callable[[str, TurnSignals], bool]


@dataclass(frozen=True)
class EscalationDecision:
    should_escalate: bool
    reason: Optional[str] = None
    priority: Optional[EscalationPriority] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_escalate": self.should_escalate,
            "reason": self.reason,
            "priority": self.priority.value if self.priority else None,
            "rule_id": self.rule_id,
        }


def _contains_any(message: str, keywords: Sequence[str]) -> bool:
    text = message.lower()
    return any(keyword in text for keyword in keywords)


DEFAULT_ESCALATION_RULES = (
    EscalationRule(
        id="negative_sentiment",
        reason="negative sentiment",
        priority=EscalationPriority.HIGH,
        predicate=lambda message, signals: signals.sentiment < NEGATIVE_SENTIMENT_LIMIT,
    ),
    EscalationRule(
        id="human_request",
        reason="human-request keyword",
        priority=EscalationPriority.MEDIUM,
        predicate=lambda message, signals: _contains_any(message, HUMAN_REQUEST_KEYWORDS),
    ),
    EscalationRule(
        id="unresolved_queries",
        reason="unresolved queries",
        priority=EscalationPriority.MEDIUM,
        predicate=lambda message, signals: signals.unresolved_count >= UNRESOLVED_LIMIT,
    ),
    EscalationRule(
        id="technical_issue",
        reason="complex technical issue",
        priority=EscalationPriority.HIGH,
        predicate=lambda message, signals: (
            _contains_any(message, TECHNICAL_KEYWORDS)
            and len(message) > TECHNICAL_MIN_LENGTH
        ),
    ),
)

NO_ESCALATION = EscalationDecision(should_escalate=False)


class EscalationEngine:
    """Decide, crea y gestiona escalaciones a agentes humanos."""

    def __init__(
        self,
        db: DBService,
        rules: Sequence[EscalationRule] = DEFAULT_ESCALATION_RULES,
        sla_hours: Mapping[EscalationPriority, int] = DEFAULT_SLA_HOURS,
        locks: KeyedLock = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._db = db
        self.rules = tuple(rules)
        self.sla_hours = sla_hours
        self._locks = locks or KeyedLock()
        self._clock = clock

    # ─────────────────────────────────────────
    # Reglas y SLA
    # ─────────────────────────────────────────

    def should_escalate(
        self, message: str, signals: Optional[TurnSignals] = None
    ) -> EscalationDecision:
        """Evalúa las reglas en orden; la primera que se cumple gana."""
        signals = signals or TurnSignals()
        text = message or ""
        for rule in self.rules:
            if rule.predicate(text, signals):
                logger.info(f"Regla de escalación '{rule.id}' ({rule.priority.value})")
                return EscalationDecision(
                    should_escalate=True,
                    reason=rule.reason,
                    priority=rule.priority,
                    rule_id=rule.id,
                )
        return NO_ESCALATION

    def is_overdue(self, escalation: Escalation, now: datetime = None) -> bool:
        if escalation.status in TERMINAL_STATUSES:
            return False
        now = now or self._clock()
        hours = (now - escalation.created_at).total_seconds() / 3600
        return hours > self.sla_hours.get(escalation.priority, FALLBACK_SLA_HOURS)

    @staticmethod
    def resolution_time(escalation: Escalation) -> Optional[timedelta]:
        if escalation.resolved_at is None:
            return None
        return escalation.resolved_at - escalation.created_at

    # ─────────────────────────────────────────
    # Consultas
    # ─────────────────────────────────────────

    def get_escalation(self, escalation_id: str) -> Escalation:
        escalation = self._db.get_escalation(escalation_id)
        if escalation is None:
            raise NotFoundError(f"Escalación no encontrada: {escalation_id}")
        return escalation

    def list_escalations(
        self,
        company_id: str,
        status: Optional[EscalationStatus] = None,
        assigned_agent: Optional[str] = None,
    ) -> List[Escalation]:
        return self._db.list_escalations(company_id, status, assigned_agent)

    def open_escalation_for(self, session_id: str) -> Optional[Escalation]:
        return self._db.find_open_escalation(session_id)

    def available_agents(self, company_id: str, now: datetime = None) -> List[HumanAgent]:
        """
        Agentes humanos que pueden tomar una escalación ahora.

        Online, con capacidad libre y dentro de la ventana de disponibilidad del día.
        """
        now = now or self._clock()
        day = WEEKDAYS[now.weekday()]
        current_time = now.strftime("%H:%M")

        available = []
        for agent in self._db.list_human_agents(company_id):
            if agent.status != HumanAgentStatus.ONLINE:
                continue
            if agent.current_chats >= agent.max_concurrent_chats:
                continue
            window = agent.availability.get(day)
            if not window or not window.get("available"):
                continue
            if window.get("start", "00:00") <= current_time <= window.get("end", "23:59"):
                available.append(agent)
        return available

    # ─────────────────────────────────────────
    # Creación
    # ─────────────────────────────────────────

    def create_escalation(
        self,
        session_id: str,
        company_id: str,
        reason: str,
        priority: EscalationPriority = EscalationPriority.MEDIUM,
        agent_id: str = None,
        user_id: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
    ) -> Escalation:
        """
        Crea una escalación y la asigna al primer agente humano disponible.

        Si no hay agentes disponibles queda en pending.
        """
        if not session_id or not company_id or not reason:
            raise ValidationError("session_id, company_id y reason son requeridos")

        now = self._clock()
        escalation = Escalation(
            id=f"esc_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            company_id=company_id,
            agent_id=agent_id,
            user_id=user_id,
            reason=reason,
            description=description,
            priority=EscalationPriority(priority),
            status=EscalationStatus.PENDING,
            assigned_agent=None,
            messages=[],
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )

        with self._locks.hold(f"escalation:{escalation.id}"):
            self._db.insert_escalation(escalation)
            logger.info(
                f"[{session_id}] Escalación {escalation.id} creada "
                f"({reason}, {escalation.priority.value})"
            )
            self._auto_assign(escalation, now)

        return self.get_escalation(escalation.id)

    def escalate_session(
        self,
        session_id: str,
        company_id: str,
        decision: EscalationDecision,
        agent_id: str = None,
        user_id: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
    ) -> tuple:
        """
        Abre una escalación para la sesión salvo que ya haya una abierta.

        Returns:
            (Escalation, creada: bool)
        """
        with self._locks.hold(f"session-escalation:{session_id}"):
            existing = self._db.find_open_escalation(session_id)
            if existing is not None:
                logger.info(f"[{session_id}] Ya existe escalación abierta {existing.id}")
                return existing, False

            escalation = self.create_escalation(
                session_id=session_id,
                company_id=company_id,
                reason=decision.reason,
                priority=decision.priority or EscalationPriority.MEDIUM,
                agent_id=agent_id,
                user_id=user_id,
                description=description,
                metadata=metadata,
            )
            return escalation, True

    def _auto_assign(self, escalation: Escalation, now: datetime) -> None:
        for candidate in self.available_agents(escalation.company_id, now):
            if not self._db.try_increment_chats(candidate.id, now):
                continue
            self._db.update_escalation_state(
                escalation.id,
                expected_status=EscalationStatus.PENDING,
                status=EscalationStatus.ASSIGNED,
                assigned_agent=candidate.id,
                now=now,
            )
            logger.info(f"Escalación {escalation.id} asignada a {candidate.id}")
            return
        logger.info(f"Escalación {escalation.id} sin agentes disponibles: queda pending")

    # ─────────────────────────────────────────
    # Ciclo de vida
    # ─────────────────────────────────────────

    def _write_state(
        self,
        escalation: Escalation,
        action: str,
        status: EscalationStatus,
        assigned_agent: Optional[str],
        now: datetime,
        resolved_at: Optional[datetime] = None,
    ) -> None:
        written = self._db.update_escalation_state(
            escalation.id,
            expected_status=escalation.status,
            status=status,
            assigned_agent=assigned_agent,
            now=now,
            resolved_at=resolved_at,
        )
        if not written:
            current = self.get_escalation(escalation.id)
            raise InvalidTransitionError(escalation.id, current.status.value, action)

    def _require(
        self, escalation: Escalation, action: str, allowed: Sequence[EscalationStatus]
    ) -> None:
        if escalation.status not in allowed:
            raise InvalidTransitionError(escalation.id, escalation.status.value, action)

    def assign(self, escalation_id: str, human_agent_id: str) -> Escalation:
        """pending → assigned (requiere agente humano con capacidad)."""
        if not human_agent_id:
            raise ValidationError("assigned_agent es requerido para asignar")

        with self._locks.hold(f"escalation:{escalation_id}"):
            escalation = self.get_escalation(escalation_id)
            self._require(escalation, "assign", (EscalationStatus.PENDING,))

            agent = self._db.get_human_agent(human_agent_id)
            if agent is None or agent.company_id != escalation.company_id:
                raise NotFoundError(f"Agente humano no encontrado: {human_agent_id}")

            now = self._clock()
            if not self._db.try_increment_chats(agent.id, now):
                raise ValidationError(f"El agente {agent.id} no tiene capacidad libre")

            try:
                self._write_state(
                    escalation, "assign", EscalationStatus.ASSIGNED, agent.id, now
                )
            except InvalidTransitionError:
                self._db.decrement_chats(agent.id, now)
                raise

            logger.info(f"Escalación {escalation_id} asignada a {agent.id}")
        return self.get_escalation(escalation_id)

    def start(self, escalation_id: str) -> Escalation:
        """assigned → in_progress."""
        with self._locks.hold(f"escalation:{escalation_id}"):
            escalation = self.get_escalation(escalation_id)
            self._require(escalation, "start", (EscalationStatus.ASSIGNED,))
            self._write_state(
                escalation,
                "start",
                EscalationStatus.IN_PROGRESS,
                escalation.assigned_agent,
                self._clock(),
            )
            logger.info(f"Escalación {escalation_id} en progreso")
        return self.get_escalation(escalation_id)

    def resolve(self, escalation_id: str) -> Escalation:
        """in_progress → resolved; libera el chat del agente."""
        with self._locks.hold(f"escalation:{escalation_id}"):
            escalation = self.get_escalation(escalation_id)
            self._require(escalation, "resolve", (EscalationStatus.IN_PROGRESS,))
            now = self._clock()
            self._write_state(
                escalation,
                "resolve",
                EscalationStatus.RESOLVED,
                escalation.assigned_agent,
                now,
                resolved_at=now,
            )
            if escalation.assigned_agent:
                self._db.decrement_chats(escalation.assigned_agent, now)
            logger.info(f"Escalación {escalation_id} resuelta")
        return self.get_escalation(escalation_id)

    def close(self, escalation_id: str) -> Escalation:
        """Cualquier estado no terminal → closed."""
        with self._locks.hold(f"escalation:{escalation_id}"):
            escalation = self.get_escalation(escalation_id)
            self._require(
                escalation,
                "close",
                (
                    EscalationStatus.PENDING,
                    EscalationStatus.ASSIGNED,
                    EscalationStatus.IN_PROGRESS,
                ),
            )
            now = self._clock()
            self._write_state(
                escalation, "close", EscalationStatus.CLOSED, escalation.assigned_agent, now
            )
            if escalation.assigned_agent:
                self._db.decrement_chats(escalation.assigned_agent, now)
            logger.info(f"Escalación {escalation_id} cerrada")
        return self.get_escalation(escalation_id)

    def update_status(
        self,
        escalation_id: str,
        status: EscalationStatus,
        assigned_agent: str = None,
    ) -> Escalation:
        """Cambio de estado genérico, mapeado a la operación del ciclo de vida."""
        status = EscalationStatus(status)
        if status == EscalationStatus.ASSIGNED:
            return self.assign(escalation_id, assigned_agent)
        if status == EscalationStatus.IN_PROGRESS:
            return self.start(escalation_id)
        if status == EscalationStatus.RESOLVED:
            return self.resolve(escalation_id)
        if status == EscalationStatus.CLOSED:
            return self.close(escalation_id)

        escalation = self.get_escalation(escalation_id)
        raise InvalidTransitionError(escalation_id, escalation.status.value, status.value)

    def add_message(
        self, escalation_id: str, content: str, sender: str, sender_type: str
    ) -> Escalation:
        """Agrega un mensaje al hilo; no se escribe sobre escalaciones terminales."""
        if not content or not content.strip():
            raise ValidationError("El mensaje está vacío")
        if sender_type not in SENDER_TYPES:
            raise ValidationError(f"sender_type inválido: {sender_type}")

        with self._locks.hold(f"escalation:{escalation_id}"):
            escalation = self.get_escalation(escalation_id)
            if escalation.is_terminal:
                raise InvalidTransitionError(
                    escalation_id, escalation.status.value, "add_message"
                )
            self._db.add_escalation_message(
                escalation_id,
                EscalationMessage(
                    content=content.strip(),
                    sender=sender,
                    sender_type=sender_type,
                    timestamp=self._clock(),
                ),
            )
        return self.get_escalation(escalation_id)

    # ─────────────────────────────────────────
    # Agentes humanos
    # ─────────────────────────────────────────

    def create_human_agent(
        self,
        company_id: str,
        name: str,
        email: str,
        skills: List[str] = None,
        max_concurrent_chats: int = DEFAULT_MAX_CONCURRENT_CHATS,
        availability: Dict[str, Dict[str, Any]] = None,
        status: HumanAgentStatus = HumanAgentStatus.OFFLINE,
    ) -> HumanAgent:
        if not company_id or not name or not email:
            raise ValidationError("name, email y company_id son requeridos")
        if max_concurrent_chats < 1:
            raise ValidationError("max_concurrent_chats debe ser >= 1")

        now = self._clock()
        agent = HumanAgent(
            id=f"ha_{uuid.uuid4().hex[:12]}",
            company_id=company_id,
            name=name,
            email=email,
            status=HumanAgentStatus(status),
            skills=list(skills or []),
            max_concurrent_chats=max_concurrent_chats,
            current_chats=0,
            availability=availability or default_availability(),
            created_at=now,
            updated_at=now,
        )
        self._db.create_human_agent(agent)
        logger.info(f"Agente humano {agent.id} creado para {company_id}")
        return agent

    def get_human_agent(self, human_agent_id: str) -> HumanAgent:
        agent = self._db.get_human_agent(human_agent_id)
        if agent is None:
            raise NotFoundError(f"Agente humano no encontrado: {human_agent_id}")
        return agent

    def list_human_agents(self, company_id: str) -> List[HumanAgent]:
        return self._db.list_human_agents(company_id)

    def update_human_agent_status(
        self, human_agent_id: str, status: HumanAgentStatus
    ) -> HumanAgent:
        status = HumanAgentStatus(status)
        if not self._db.update_human_agent_status(human_agent_id, status, self._clock()):
            raise NotFoundError(f"Agente humano no encontrado: {human_agent_id}")
        logger.info(f"Agente humano {human_agent_id} → {status.value}")
        return self.get_human_agent(human_agent_id)

    def release_agent(self, human_agent_id: str) -> HumanAgent:
        """Libera un chat del agente (nunca baja de 0)."""
        self.get_human_agent(human_agent_id)
        self._db.decrement_chats(human_agent_id, self._clock())
        return self.get_human_agent(human_agent_id)

    # ─────────────────────────────────────────
    # Estadísticas
    # ─────────────────────────────────────────

    def _average_resolution_seconds(self, escalations: Sequence[Escalation]) -> Optional[float]:
        times = [
            t.total_seconds()
            for t in (self.resolution_time(e) for e in escalations)
            if t is not None
        ]
        if not times:
            return None
        return sum(times) / len(times)

    def company_stats(self, company_id: str) -> Dict[str, Any]:
        escalations = self._db.list_escalations(company_id)
        now = self._clock()
        by_status = {status.value: 0 for status in EscalationStatus}
        for escalation in escalations:
            by_status[escalation.status.value] += 1

        return {
            "company_id": company_id,
            "total": len(escalations),
            "by_status": by_status,
            "pending": by_status[EscalationStatus.PENDING.value],
            "resolved": by_status[EscalationStatus.RESOLVED.value],
            "overdue": sum(1 for e in escalations if self.is_overdue(e, now)),
            "average_resolution_seconds": self._average_resolution_seconds(escalations),
        }

    def agent_stats(self, human_agent_id: str) -> Dict[str, Any]:
        agent = self.get_human_agent(human_agent_id)
        escalations = self._db.list_escalations_for_agent(human_agent_id)
        return {
            "agent_id": agent.id,
            "name": agent.name,
            "status": agent.status.value,
            "total_escalations": len(escalations),
            "resolved_escalations": sum(
                1 for e in escalations if e.status == EscalationStatus.RESOLVED
            ),
            "pending_escalations": sum(1 for e in escalations if not e.is_terminal),
            "average_resolution_seconds": self._average_resolution_seconds(escalations),
            "current_load": agent.current_chats / agent.max_concurrent_chats,
        }
