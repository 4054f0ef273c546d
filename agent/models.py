"""
Modelos de dominio del agente.

Dataclasses que viajan entre el DBService, el motor de escalaciones
y el orquestador. La serialización a JSON de la API vive en api/models.py.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class EscalationStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


TERMINAL_STATUSES = frozenset({EscalationStatus.RESOLVED, EscalationStatus.CLOSED})


class EscalationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class HumanAgentStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"
    AWAY = "away"


@dataclass(frozen=True)
class Message:
    """Un mensaje de la conversación."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, str]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Message":
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )

    def as_llm_message(self) -> Dict[str, str]:
        """Formato {role, content} que espera el LLM."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class ConversationContext:
    """Ventana de trabajo acotada de una sesión."""

    session_id: str
    agent_id: str
    company_id: str
    user_id: Optional[str]
    messages: List[Message]
    summary: Optional[str]
    unresolved_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class AgentProfile:
    """Metadata del agente que consume el orquestador (AgentLookup)."""

    agent_id: str
    company_id: str
    name: str
    personality: str
    description: Optional[str] = None
    industry: str = "general"
    enabled_tools: List[str] = field(default_factory=list)
    knowledge_urls: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class HumanAgent:
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

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class EscalationMessage:
    content: str
    sender: str
    sender_type: str
    timestamp: datetime


@dataclass
class Escalation:
    id: str
    session_id: str
    company_id: str
    agent_id: Optional[str]
    user_id: Optional[str]
    reason: str
    description: Optional[str]
    priority: EscalationPriority
    status: EscalationStatus
    assigned_agent: Optional[str]
    messages: List[EscalationMessage]
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "company_id": self.company_id,
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "assigned_agent": self.assigned_agent,
            "messages": [
                {
                    "content": m.content,
                    "sender": m.sender,
                    "sender_type": m.sender_type,
                    "timestamp": m.timestamp.isoformat(),
                }
                for m in self.messages
            ],
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
