"""
DB Service — Capa de acceso a datos del orquestador.

Encapsula TODAS las operaciones SQLite en métodos tipados,
evitando SQL inline disperso en el orquestador / motor de escalaciones.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from agent.models import (
    AgentProfile,
    ConversationContext,
    Escalation,
    EscalationMessage,
    EscalationPriority,
    EscalationStatus,
    HumanAgent,
    HumanAgentStatus,
    Message,
)

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class DBService:
    """Servicio de acceso a datos SQLite para el orquestador."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    # helpers

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def ping(self) -> bool:
        """True si la base responde (health check)."""
        try:
            with self._conn() as conn:
                conn.execute("SELECT 1 FROM agents LIMIT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Base de datos no disponible: {e}")
            return False

    # Agents

    def get_agent(self, agent_id: str, company_id: str) -> Optional[AgentProfile]:
        """Perfil del agente (AgentLookup)."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE agent_id = ? AND company_id = ?",
                (agent_id, company_id),
            ).fetchone()
        if row is None:
            return None
        return AgentProfile(
            agent_id=row["agent_id"],
            company_id=row["company_id"],
            name=row["name"],
            personality=row["personality"],
            description=row["description"],
            industry=row["industry"] or "general",
            enabled_tools=json.loads(row["enabled_tools"]),
            knowledge_urls=json.loads(row["knowledge_urls"]),
        )

    def get_agent_usage(self, agent_id: str, company_id: str) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT total_messages, total_conversations, last_used
                FROM agents WHERE agent_id = ? AND company_id = ?
                """,
                (agent_id, company_id),
            ).fetchone()
            return dict(row) if row else None

    def record_usage(
        self, agent_id: str, company_id: str, new_conversation: bool, now: datetime
    ) -> None:
        """Incrementa contadores de uso del agente."""
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE agents SET
                    total_messages = total_messages + 1,
                    total_conversations = total_conversations + ?,
                    last_used = ?
                WHERE agent_id = ? AND company_id = ?
                """,
                (1 if new_conversation else 0, _ts(now), agent_id, company_id),
            )
            conn.commit()

    # Conversation contexts (ventana acotada)

    def get_context(self, session_id: str) -> Optional[ConversationContext]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversation_contexts WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return ConversationContext(
            session_id=row["session_id"],
            agent_id=row["agent_id"],
            company_id=row["company_id"],
            user_id=row["user_id"],
            messages=[Message.from_dict(m) for m in json.loads(row["messages"])],
            summary=row["summary"],
            unresolved_count=row["unresolved_count"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def save_context(self, context: ConversationContext) -> None:
        """Crea o actualiza la ventana de la sesión."""
        messages_json = json.dumps(
            [m.to_dict() for m in context.messages], ensure_ascii=False
        )
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO conversation_contexts
                    (session_id, agent_id, company_id, user_id, messages, summary,
                     unresolved_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    messages = excluded.messages,
                    summary = excluded.summary,
                    unresolved_count = excluded.unresolved_count,
                    updated_at = excluded.updated_at
                """,
                (
                    context.session_id,
                    context.agent_id,
                    context.company_id,
                    context.user_id,
                    messages_json,
                    context.summary,
                    context.unresolved_count,
                    _ts(context.created_at),
                    _ts(context.updated_at),
                ),
            )
            conn.commit()

    def update_summary(self, session_id: str, summary: str, now: datetime) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE conversation_contexts SET summary = ?, updated_at = ? WHERE session_id = ?",
                (summary, _ts(now), session_id),
            )
            conn.commit()

    def set_unresolved_count(self, session_id: str, count: int, now: datetime) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE conversation_contexts SET unresolved_count = ?, updated_at = ?
                WHERE session_id = ?
                """,
                (count, _ts(now), session_id),
            )
            conn.commit()

    # Conversation log (durable)

    def add_message(self, session_id: str, message: Message) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages (session_id, role, content, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (session_id, message.role.value, message.content, _ts(message.timestamp)),
            )
            conn.commit()

    def get_messages(self, session_id: str) -> List[Message]:
        """Log completo, más viejo primero."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT role, content, timestamp FROM conversation_messages
                WHERE session_id = ? ORDER BY id
                """,
                (session_id,),
            ).fetchall()
        return [Message.from_dict(dict(r)) for r in rows]

    # Human agents

    def _row_to_human_agent(self, row: sqlite3.Row) -> HumanAgent:
        return HumanAgent(
            id=row["id"],
            company_id=row["company_id"],
            name=row["name"],
            email=row["email"],
            status=HumanAgentStatus(row["status"]),
            skills=json.loads(row["skills"]),
            max_concurrent_chats=row["max_concurrent_chats"],
            current_chats=row["current_chats"],
            availability=json.loads(row["availability"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def create_human_agent(self, agent: HumanAgent) -> HumanAgent:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO human_agents
                    (id, company_id, name, email, status, skills, max_concurrent_chats,
                     current_chats, availability, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    agent.id,
                    agent.company_id,
                    agent.name,
                    agent.email,
                    agent.status.value,
                    json.dumps(agent.skills),
                    agent.max_concurrent_chats,
                    agent.current_chats,
                    json.dumps(agent.availability),
                    _ts(agent.created_at),
                    _ts(agent.updated_at),
                ),
            )
            conn.commit()
        return agent

    def get_human_agent(self, agent_id: str) -> Optional[HumanAgent]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM human_agents WHERE id = ?", (agent_id,)
            ).fetchone()
        return self._row_to_human_agent(row) if row else None

    def list_human_agents(self, company_id: str) -> List[HumanAgent]:
        """Agentes humanos de la empresa, en orden de alta."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM human_agents WHERE company_id = ? ORDER BY created_at, id",
                (company_id,),
            ).fetchall()
        return [self._row_to_human_agent(r) for r in rows]

    def update_human_agent_status(
        self, agent_id: str, status: HumanAgentStatus, now: datetime
    ) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "UPDATE human_agents SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _ts(now), agent_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def try_increment_chats(self, agent_id: str, now: datetime) -> bool:
        """Suma un chat solo si el agente tiene capacidad libre."""
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE human_agents
                SET current_chats = current_chats + 1, updated_at = ?
                WHERE id = ? AND current_chats < max_concurrent_chats
                """,
                (_ts(now), agent_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def decrement_chats(self, agent_id: str, now: datetime) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE human_agents
                SET current_chats = MAX(current_chats - 1, 0), updated_at = ?
                WHERE id = ?
                """,
                (_ts(now), agent_id),
            )
            conn.commit()

    # Escalations

    def _row_to_escalation(
        self, conn: sqlite3.Connection, row: sqlite3.Row
    ) -> Escalation:
        messages = conn.execute(
            """
            SELECT content, sender, sender_type, timestamp FROM escalation_messages
            WHERE escalation_id = ? ORDER BY id
            """,
            (row["id"],),
        ).fetchall()
        return Escalation(
            id=row["id"],
            session_id=row["session_id"],
            company_id=row["company_id"],
            agent_id=row["agent_id"],
            user_id=row["user_id"],
            reason=row["reason"],
            description=row["description"],
            priority=EscalationPriority(row["priority"]),
            status=EscalationStatus(row["status"]),
            assigned_agent=row["assigned_agent"],
            messages=[
                EscalationMessage(
                    content=m["content"],
                    sender=m["sender"],
                    sender_type=m["sender_type"],
                    timestamp=_dt(m["timestamp"]),
                )
                for m in messages
            ],
            metadata=json.loads(row["metadata"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            resolved_at=_dt(row["resolved_at"]),
        )

    def insert_escalation(self, escalation: Escalation) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO escalations
                    (id, session_id, company_id, agent_id, user_id, reason, description,
                     priority, status, assigned_agent, metadata, created_at, updated_at,
                     resolved_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    escalation.id,
                    escalation.session_id,
                    escalation.company_id,
                    escalation.agent_id,
                    escalation.user_id,
                    escalation.reason,
                    escalation.description,
                    escalation.priority.value,
                    escalation.status.value,
                    escalation.assigned_agent,
                    json.dumps(escalation.metadata, ensure_ascii=False),
                    _ts(escalation.created_at),
                    _ts(escalation.updated_at),
                    _ts(escalation.resolved_at),
                ),
            )
            for message in escalation.messages:
                self._insert_escalation_message(conn, escalation.id, message)
            conn.commit()

    def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM escalations WHERE id = ?", (escalation_id,)
            ).fetchone()
            return self._row_to_escalation(conn, row) if row else None

    def find_open_escalation(self, session_id: str) -> Optional[Escalation]:
        """Escalación no terminal de la sesión (la más reciente)."""
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT * FROM escalations
                WHERE session_id = ? AND status NOT IN ('resolved', 'closed')
                ORDER BY created_at DESC LIMIT 1
                """,
                (session_id,),
            ).fetchone()
            return self._row_to_escalation(conn, row) if row else None

    def list_escalations(
        self,
        company_id: str,
        status: Optional[EscalationStatus] = None,
        assigned_agent: Optional[str] = None,
    ) -> List[Escalation]:
        """Escalaciones de la empresa, más recientes primero."""
        query = "SELECT * FROM escalations WHERE company_id = ?"
        params: list = [company_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if assigned_agent is not None:
            query += " AND assigned_agent = ?"
            params.append(assigned_agent)
        query += " ORDER BY created_at DESC"

        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_escalation(conn, r) for r in rows]

    def list_escalations_for_agent(self, human_agent_id: str) -> List[Escalation]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM escalations WHERE assigned_agent = ? ORDER BY created_at DESC",
                (human_agent_id,),
            ).fetchall()
            return [self._row_to_escalation(conn, r) for r in rows]

    def update_escalation_state(
        self,
        escalation_id: str,
        expected_status: EscalationStatus,
        status: EscalationStatus,
        assigned_agent: Optional[str],
        now: datetime,
        resolved_at: Optional[datetime] = None,
    ) -> bool:
        """
        Cambia estado / agente asignado solo si el estado actual es el esperado.

        Returns:
            False si otro proceso ya cambió el estado (no se escribió nada)
        """
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE escalations
                SET status = ?, assigned_agent = ?, updated_at = ?, resolved_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    status.value,
                    assigned_agent,
                    _ts(now),
                    _ts(resolved_at),
                    escalation_id,
                    expected_status.value,
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    def _insert_escalation_message(
        self, conn: sqlite3.Connection, escalation_id: str, message: EscalationMessage
    ) -> None:
        conn.execute(
            """
            INSERT INTO escalation_messages
                (escalation_id, content, sender, sender_type, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                escalation_id,
                message.content,
                message.sender,
                message.sender_type,
                _ts(message.timestamp),
            ),
        )

    def add_escalation_message(
        self, escalation_id: str, message: EscalationMessage
    ) -> None:
        with self._conn() as conn:
            self._insert_escalation_message(conn, escalation_id, message)
            conn.execute(
                "UPDATE escalations SET updated_at = ? WHERE id = ?",
                (_ts(message.timestamp), escalation_id),
            )
            conn.commit()
