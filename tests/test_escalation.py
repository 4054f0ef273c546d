"""
Tests para agent/escalation.py — Reglas, ciclo de vida y agentes humanos.

Usa DB real temporal (seed: ha-alice online siempre, ha-bruno offline
en horario de oficina) y un FakeClock para SLA y disponibilidad.
"""

import threading

import pytest

from agent.errors import InvalidTransitionError, NotFoundError, ValidationError
from agent.escalation import default_availability
from agent.models import EscalationPriority, EscalationStatus, HumanAgentStatus
from agent.signals import TurnSignals


def _create(engine, session_id="s-1", company_id="acme", priority=EscalationPriority.MEDIUM):
    return engine.create_escalation(
        session_id=session_id,
        company_id=company_id,
        reason="human-request keyword",
        priority=priority,
    )


# Reglas


class TestRules:
    def test_negative_sentiment_wins_over_keywords(self, engine):
        decision = engine.should_escalate(
            "I hate this, let me talk to a human", TurnSignals(sentiment=-1.0)
        )
        assert decision.rule_id == "negative_sentiment"
        assert decision.priority == EscalationPriority.HIGH

    def test_sentiment_threshold_is_strict(self, engine):
        decision = engine.should_escalate("ok", TurnSignals(sentiment=-0.5))
        assert decision.should_escalate is False

    def test_human_request(self, engine):
        decision = engine.should_escalate("Can I speak to a supervisor?")
        assert decision.reason == "human-request keyword"
        assert decision.priority == EscalationPriority.MEDIUM

    def test_refund_demand_with_agent_keyword(self, engine):
        message = "I want a refund now, agent!"
        decision = engine.should_escalate(message, TurnSignals.from_message(message))
        assert decision.rule_id == "human_request"
        assert decision.priority == EscalationPriority.MEDIUM

    def test_unresolved_queries(self, engine):
        assert engine.should_escalate("hmm", TurnSignals(unresolved_count=2)).should_escalate is False
        decision = engine.should_escalate("hmm", TurnSignals(unresolved_count=3))
        assert decision.reason == "unresolved queries"

    def test_technical_issue_needs_long_message(self, engine):
        assert engine.should_escalate("error 500").should_escalate is False
        long_message = (
            "When I open the checkout page I always get an error 500 and the payment "
            "form stays blank, I tried two browsers already"
        )
        assert len(long_message) > 100
        decision = engine.should_escalate(long_message)
        assert decision.rule_id == "technical_issue"
        assert decision.priority == EscalationPriority.HIGH

    def test_no_rule(self, engine):
        decision = engine.should_escalate("What are your opening hours?")
        assert decision.should_escalate is False
        assert decision.to_dict()["priority"] is None


# Creación y auto-asignación


class TestCreation:
    def test_auto_assigns_available_agent(self, engine):
        escalation = _create(engine)
        assert escalation.id.startswith("esc_")
        assert escalation.status == EscalationStatus.ASSIGNED
        assert escalation.assigned_agent == "ha-alice"
        assert engine.get_human_agent("ha-alice").current_chats == 1

    def test_stays_pending_without_agents(self, engine):
        escalation = _create(engine, company_id="healthco")
        assert escalation.status == EscalationStatus.PENDING
        assert escalation.assigned_agent is None

    def test_stays_pending_when_agents_are_full(self, engine):
        for i in range(3):
            _create(engine, session_id=f"s-{i}")
        fourth = _create(engine, session_id="s-4")
        assert fourth.status == EscalationStatus.PENDING
        assert engine.get_human_agent("ha-alice").current_chats == 3

    def test_requires_reason(self, engine):
        with pytest.raises(ValidationError):
            engine.create_escalation(session_id="s-1", company_id="acme", reason="")

    def test_one_open_escalation_per_session(self, engine):
        decision = engine.should_escalate("I need a human")
        first, created = engine.escalate_session("s-1", "acme", decision)
        second, created_again = engine.escalate_session("s-1", "acme", decision)
        assert created is True
        assert created_again is False
        assert second.id == first.id

    def test_new_escalation_after_close(self, engine):
        decision = engine.should_escalate("I need a human")
        first, _ = engine.escalate_session("s-1", "acme", decision)
        engine.close(first.id)
        second, created = engine.escalate_session("s-1", "acme", decision)
        assert created is True
        assert second.id != first.id

    def test_get_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_escalation("esc_missing")


# Ciclo de vida


class TestLifecycle:
    def test_full_lifecycle(self, engine, clock):
        escalation = _create(engine)
        engine.start(escalation.id)
        clock.advance(minutes=30)
        resolved = engine.resolve(escalation.id)

        assert resolved.status == EscalationStatus.RESOLVED
        assert resolved.resolved_at == clock.now
        assert engine.resolution_time(resolved).total_seconds() == 1800
        assert engine.get_human_agent("ha-alice").current_chats == 0

    def test_manual_assign(self, engine):
        escalation = _create(engine, company_id="healthco")
        agent = engine.create_human_agent("healthco", "Nora", "nora@healthco.test")
        assigned = engine.assign(escalation.id, agent.id)
        assert assigned.status == EscalationStatus.ASSIGNED
        assert assigned.assigned_agent == agent.id

    def test_assign_without_capacity(self, engine):
        agent = engine.create_human_agent(
            "healthco", "Nora", "nora@healthco.test", max_concurrent_chats=1
        )
        first = _create(engine, session_id="s-1", company_id="healthco")
        second = _create(engine, session_id="s-2", company_id="healthco")
        engine.assign(first.id, agent.id)
        with pytest.raises(ValidationError):
            engine.assign(second.id, agent.id)
        assert engine.get_escalation(second.id).status == EscalationStatus.PENDING

    def test_assign_agent_from_other_company(self, engine):
        escalation = _create(engine, company_id="healthco")
        with pytest.raises(NotFoundError):
            engine.assign(escalation.id, "ha-alice")

    def test_assign_requires_agent(self, engine):
        escalation = _create(engine, company_id="healthco")
        with pytest.raises(ValidationError):
            engine.assign(escalation.id, "")

    def test_assign_twice_is_invalid(self, engine):
        escalation = _create(engine)
        with pytest.raises(InvalidTransitionError):
            engine.assign(escalation.id, "ha-alice")

    @pytest.mark.parametrize("action", ["start", "resolve"])
    def test_invalid_from_pending(self, engine, action):
        escalation = _create(engine, company_id="healthco")
        with pytest.raises(InvalidTransitionError) as exc_info:
            getattr(engine, action)(escalation.id)
        assert exc_info.value.current == "pending"

    def test_terminal_cannot_be_closed(self, engine):
        escalation = _create(engine)
        engine.close(escalation.id)
        with pytest.raises(InvalidTransitionError):
            engine.close(escalation.id)

    def test_close_releases_agent(self, engine):
        escalation = _create(engine)
        closed = engine.close(escalation.id)
        assert closed.status == EscalationStatus.CLOSED
        assert closed.resolved_at is None
        assert engine.get_human_agent("ha-alice").current_chats == 0

    def test_update_status_to_pending_is_invalid(self, engine):
        escalation = _create(engine)
        with pytest.raises(InvalidTransitionError):
            engine.update_status(escalation.id, EscalationStatus.PENDING)

    def test_update_status_maps_to_lifecycle(self, engine):
        escalation = _create(engine)
        updated = engine.update_status(escalation.id, "in_progress")
        assert updated.status == EscalationStatus.IN_PROGRESS

    def test_concurrent_resolve_only_once(self, engine):
        escalation = _create(engine)
        engine.start(escalation.id)
        outcomes = []

        def worker():
            try:
                engine.resolve(escalation.id)
                outcomes.append("ok")
            except InvalidTransitionError:
                outcomes.append("invalid")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["invalid", "invalid", "invalid", "ok"]
        assert engine.get_human_agent("ha-alice").current_chats == 0


# Mensajes


class TestMessages:
    def test_add_message(self, engine):
        escalation = _create(engine)
        updated = engine.add_message(escalation.id, " Hi, I'm Alice ", "ha-alice", "agent")
        assert updated.messages[0].content == "Hi, I'm Alice"
        assert updated.messages[0].sender_type == "agent"

    def test_invalid_sender_type(self, engine):
        escalation = _create(engine)
        with pytest.raises(ValidationError):
            engine.add_message(escalation.id, "hola", "bot", "robot")

    def test_terminal_escalation_rejects_messages(self, engine):
        escalation = _create(engine)
        engine.close(escalation.id)
        with pytest.raises(InvalidTransitionError):
            engine.add_message(escalation.id, "hola", "user-1", "customer")


# SLA y estadísticas


class TestSla:
    def test_urgent_overdue_after_one_hour(self, engine, clock):
        escalation = _create(engine, priority=EscalationPriority.URGENT)
        clock.advance(minutes=59)
        assert engine.is_overdue(escalation) is False
        clock.advance(minutes=2)
        assert engine.is_overdue(escalation) is True

    def test_medium_not_overdue_after_two_hours(self, engine, clock):
        escalation = _create(engine)
        clock.advance(hours=2)
        assert engine.is_overdue(escalation) is False

    def test_terminal_never_overdue(self, engine, clock):
        escalation = engine.close(_create(engine, priority=EscalationPriority.URGENT).id)
        clock.advance(days=3)
        assert engine.is_overdue(escalation) is False

    def test_company_stats(self, engine, clock):
        first = _create(engine, session_id="s-1", priority=EscalationPriority.URGENT)
        second = _create(engine, session_id="s-2")
        engine.start(second.id)
        clock.advance(hours=2)
        engine.resolve(second.id)

        stats = engine.company_stats("acme")

        assert stats["total"] == 2
        assert stats["by_status"]["resolved"] == 1
        assert stats["by_status"]["assigned"] == 1
        assert stats["overdue"] == 1
        assert stats["average_resolution_seconds"] == 7200
        assert engine.get_escalation(first.id).status == EscalationStatus.ASSIGNED

    def test_agent_stats(self, engine):
        _create(engine, session_id="s-1")
        _create(engine, session_id="s-2")
        stats = engine.agent_stats("ha-alice")
        assert stats["total_escalations"] == 2
        assert stats["pending_escalations"] == 2
        assert stats["resolved_escalations"] == 0
        assert stats["current_load"] == pytest.approx(2 / 3)


# Agentes humanos


class TestHumanAgents:
    def test_create_defaults(self, engine):
        agent = engine.create_human_agent("acme", "Eve", "eve@acme.test")
        assert agent.id.startswith("ha_")
        assert agent.status == HumanAgentStatus.OFFLINE
        assert agent.max_concurrent_chats == 3
        assert agent.availability == default_availability()
        assert agent.availability["saturday"]["available"] is False

    def test_create_requires_email(self, engine):
        with pytest.raises(ValidationError):
            engine.create_human_agent("acme", "Eve", "")

    def test_available_agents_respects_status_and_hours(self, engine, clock):
        assert [a.id for a in engine.available_agents("acme")] == ["ha-alice"]

        engine.update_human_agent_status("ha-bruno", HumanAgentStatus.ONLINE)
        assert [a.id for a in engine.available_agents("acme")] == ["ha-alice", "ha-bruno"]

        clock.advance(hours=10)  # miércoles 20:00
        assert [a.id for a in engine.available_agents("acme")] == ["ha-alice"]

    def test_update_status_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_human_agent_status("ghost", HumanAgentStatus.ONLINE)

    def test_release_agent_floor(self, engine):
        assert engine.release_agent("ha-alice").current_chats == 0
