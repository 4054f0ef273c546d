"""
Tests para los modelos de dominio (agent/models.py) y los modelos Pydantic de la API.

Cubre:
- Serialización de Message y Escalation
- Estados terminales
- Validación de requests (campos requeridos, rangos, patrones)
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from agent.models import (
    Escalation,
    EscalationPriority,
    EscalationStatus,
    Message,
    Role,
)
from api.models import (
    ChatRequest,
    DayAvailability,
    ErrorResponse,
    EscalationCheckRequest,
    EscalationCreateRequest,
    HumanAgentCreateRequest,
)

NOW = datetime(2026, 3, 4, 10, 0, 0)


def _escalation(status=EscalationStatus.PENDING):
    return Escalation(
        id="esc_1",
        session_id="s-1",
        company_id="acme",
        agent_id="support-bot",
        user_id=None,
        reason="human-request keyword",
        description=None,
        priority=EscalationPriority.MEDIUM,
        status=status,
        assigned_agent=None,
        messages=[],
        metadata={"rule_id": "human_request"},
        created_at=NOW,
        updated_at=NOW,
    )


class TestMessage:
    def test_round_trip(self):
        message = Message(role=Role.USER, content="hola", timestamp=NOW)
        assert Message.from_dict(message.to_dict()) == message

    def test_llm_format(self):
        message = Message(role=Role.ASSISTANT, content="hi", timestamp=NOW)
        assert message.as_llm_message() == {"role": "assistant", "content": "hi"}


class TestEscalation:
    @pytest.mark.parametrize(
        "status,terminal",
        [
            (EscalationStatus.PENDING, False),
            (EscalationStatus.IN_PROGRESS, False),
            (EscalationStatus.RESOLVED, True),
            (EscalationStatus.CLOSED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert _escalation(status).is_terminal is terminal

    def test_to_dict(self):
        data = _escalation().to_dict()
        assert data["status"] == "pending"
        assert data["priority"] == "medium"
        assert data["created_at"] == "2026-03-04T10:00:00"
        assert data["resolved_at"] is None


class TestApiModels:
    def test_chat_request_valido(self):
        req = ChatRequest(company_id="acme", session_id="s-1", message="Hola")
        assert req.user_id is None

    def test_chat_request_sin_company(self):
        with pytest.raises(ValidationError):
            ChatRequest(session_id="s-1", message="Hola")

    def test_chat_request_no_limita_largo(self):
        # El largo lo valida el orquestador (400), no Pydantic
        req = ChatRequest(company_id="acme", session_id="s-1", message="x" * 5000)
        assert len(req.message) == 5000

    def test_sentiment_fuera_de_rango(self):
        with pytest.raises(ValidationError):
            EscalationCheckRequest(message="hola", sentiment=-1.5)

    def test_create_escalation_default_priority(self):
        req = EscalationCreateRequest(session_id="s", company_id="acme", reason="x")
        assert req.priority == EscalationPriority.MEDIUM

    def test_invalid_priority(self):
        with pytest.raises(ValidationError):
            EscalationCreateRequest(
                session_id="s", company_id="acme", reason="x", priority="critical"
            )

    def test_day_availability_pattern(self):
        with pytest.raises(ValidationError):
            DayAvailability(start="9am", end="17:00")

    def test_human_agent_max_chats(self):
        with pytest.raises(ValidationError):
            HumanAgentCreateRequest(
                company_id="acme", name="Eve", email="eve@acme.test", max_concurrent_chats=0
            )

    def test_error_response(self):
        err = ErrorResponse(type="not_found", title="No Encontrado", status=404, detail="x")
        assert err.model_dump()["status"] == 404
