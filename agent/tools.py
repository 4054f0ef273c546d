"""
Tools - Detección por keywords y ejecución de herramientas del agente.

Este módulo:
1. Tabla ordenada de triggers (tool_id → keywords); el orden es el contrato
2. ToolTriggerDetector: devuelve todas las herramientas habilitadas que matchean
3. ToolExecutor: valida parámetros requeridos y despacha al handler
4. build_tool_parameters: arma parámetros a partir del mensaje del turno

Los handlers son simulados: devuelven un id de operación y un mensaje.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from agent.errors import ToolExecutionError, ToolValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolTrigger:
    tool_id: str
    keywords: frozenset


def _trigger(tool_id: str, *keywords: str) -> ToolTrigger:
    return ToolTrigger(tool_id=tool_id, keywords=frozenset(keywords))


# Orden fijo: la primera herramienta que matchea es la que se ejecuta
DEFAULT_TOOL_TRIGGERS = (
    _trigger("onedrive", "save", "store", "document", "file"),
    _trigger("slack", "message", "notify", "team", "channel"),
    _trigger("email", "send", "email", "notify"),
    _trigger("ticket", "ticket", "support", "issue", "problem"),
    _trigger("callback", "call", "callback", "phone", "schedule"),
    _trigger("docs", "documentation", "help", "guide", "manual"),
    _trigger("update", "update", "modify", "change", "edit"),
    _trigger("refund", "refund", "return", "money", "payment"),
    _trigger("escalate", "escalate", "manager", "supervisor", "urgent"),
    _trigger("survey", "survey", "feedback", "rating", "review"),
)


class ToolTriggerDetector:
    """Matching por substring (case-insensitive) sobre las herramientas habilitadas"""

    def __init__(self, triggers: Sequence[ToolTrigger] = DEFAULT_TOOL_TRIGGERS):
        self.triggers = tuple(triggers)

    def detect(self, message: str, enabled_tools: Iterable[str]) -> List[str]:
        """
        Detecta herramientas disparadas por el mensaje.

        Args:
            message: Texto del usuario
            enabled_tools: IDs habilitados para el agente

        Returns:
            Lista de tool_ids en el orden de la tabla (puede ser vacía)
        """
        enabled = set(enabled_tools or [])
        text = (message or "").lower()
        return [
            trigger.tool_id
            for trigger in self.triggers
            if trigger.tool_id in enabled
            and any(keyword in text for keyword in trigger.keywords)
        ]


# ─────────────────────────────────────────────
# Handlers simulados
# ─────────────────────────────────────────────

ToolHandler = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


def _operation_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def _onedrive(params, context):
    file_id = _operation_id("FILE")
    return {
        "success": True,
        "message": f"Saved '{params['filename']}' to OneDrive",
        "data": {"file_id": file_id, "filename": params["filename"]},
    }


def _slack(params, context):
    return {
        "success": True,
        "message": f"Message posted to {params['channel']}",
        "data": {"message_id": _operation_id("SLACK"), "channel": params["channel"]},
    }


def _email(params, context):
    return {
        "success": True,
        "message": f"Email sent to {params['to']}",
        "data": {"email_id": _operation_id("MAIL"), "to": params["to"]},
    }


def _ticket(params, context):
    ticket_id = _operation_id("TKT")
    return {
        "success": True,
        "message": f"Support ticket {ticket_id} created with {params['priority']} priority",
        "data": {"ticket_id": ticket_id, "priority": params["priority"]},
    }


def _callback(params, context):
    callback_id = _operation_id("CB")
    return {
        "success": True,
        "message": f"Callback scheduled for {params['preferred_time']}",
        "data": {"callback_id": callback_id, "phone": params["customer_phone"]},
    }


def _docs(params, context):
    return {
        "success": True,
        "message": f"{params['document_type']} documentation sent to {params['recipient']}",
        "data": {"delivery_id": _operation_id("DOC")},
    }


def _update(params, context):
    return {
        "success": True,
        "message": f"Updated {params['field']} for customer {params['customer_id']}",
        "data": {"update_id": _operation_id("UPD"), "field": params["field"]},
    }


def _refund(params, context):
    refund_id = _operation_id("REF")
    return {
        "success": True,
        "message": f"Refund of {params['amount']} requested for order {params['order_id']}",
        "data": {"refund_id": refund_id, "order_id": params["order_id"]},
    }


def _escalate(params, context):
    return {
        "success": True,
        "message": f"Issue escalated with {params['priority']} priority",
        "data": {"escalation_ref": _operation_id("ESC")},
    }


def _survey(params, context):
    return {
        "success": True,
        "message": f"{params['survey_type']} survey sent",
        "data": {"survey_id": _operation_id("SRV")},
    }


@dataclass(frozen=True)
class ToolSpec:
    tool_id: str
    name: str
    description: str
    handler: ToolHandler
    required_params: tuple = ()
    optional_params: tuple = ()

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.tool_id,
            "name": self.name,
            "description": self.description,
            "requiredParams": list(self.required_params),
            "optionalParams": list(self.optional_params),
        }


DEFAULT_TOOL_REGISTRY: Mapping[str, ToolSpec] = MappingProxyType(
    {
        spec.tool_id: spec
        for spec in (
            ToolSpec("onedrive", "OneDrive", "Save documents to OneDrive", _onedrive,
                     ("content", "filename"), ("folder",)),
            ToolSpec("slack", "Slack", "Post a message to a Slack channel", _slack,
                     ("message", "channel")),
            ToolSpec("email", "Email", "Send an email", _email,
                     ("to", "subject", "body"), ("cc",)),
            ToolSpec("ticket", "Support Ticket", "Create a support ticket", _ticket,
                     ("title", "description", "priority"), ("category",)),
            ToolSpec("callback", "Callback", "Schedule a phone callback", _callback,
                     ("customer_phone", "preferred_time"), ("notes",)),
            ToolSpec("docs", "Documentation", "Send documentation to a recipient", _docs,
                     ("document_type", "recipient")),
            ToolSpec("update", "Update Record", "Update a customer record", _update,
                     ("customer_id", "field", "value")),
            ToolSpec("refund", "Refund", "Request a refund for an order", _refund,
                     ("order_id", "amount", "reason")),
            ToolSpec("escalate", "Escalate", "Escalate the issue to a supervisor", _escalate,
                     ("issue_type", "priority", "description")),
            ToolSpec("survey", "Survey", "Send a satisfaction survey", _survey,
                     ("customer_id", "survey_type")),
        )
    }
)


class ToolExecutor:
    """Valida y ejecuta herramientas del registro"""

    def __init__(self, registry: Mapping[str, ToolSpec] = DEFAULT_TOOL_REGISTRY):
        self.registry = registry

    def validate(self, tool_id: str, params: Dict[str, Any]) -> ToolSpec:
        """
        Verifica que la herramienta exista y que estén los parámetros requeridos.

        Raises:
            ToolValidationError: herramienta desconocida o parámetro faltante
        """
        spec = self.registry.get(tool_id)
        if spec is None:
            raise ToolValidationError(tool_id, f"Herramienta desconocida: {tool_id}")

        missing = [
            name for name in spec.required_params
            if params.get(name) is None or params.get(name) == ""
        ]
        if missing:
            raise ToolValidationError(
                tool_id, f"Faltan parámetros requeridos: {', '.join(missing)}"
            )
        return spec

    def execute(
        self, tool_id: str, params: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Ejecuta una herramienta.

        Args:
            tool_id: ID de la herramienta
            params: Parámetros ya derivados
            context: {agent_id, company_id, user_id, agent}

        Returns:
            Dict {success, message?, data?}

        Raises:
            ToolValidationError: antes de despachar
            ToolExecutionError: si el handler lanza
        """
        spec = self.validate(tool_id, params)
        try:
            result = spec.handler(params, context)
        except Exception as e:
            raise ToolExecutionError(tool_id, str(e)) from e

        logger.info(f"Herramienta {tool_id} ejecutada (success={result.get('success')})")
        return result

    def available_tools(self, enabled_tools: Iterable[str]) -> List[Dict[str, Any]]:
        return [
            self.registry[tool_id].describe()
            for tool_id in enabled_tools or []
            if tool_id in self.registry
        ]


def format_tool_result(tool_id: str, result: Dict[str, Any]) -> str:
    """Texto que se inyecta en el prompt como resultado de herramienta."""
    return f"[Tool executed: {tool_id}] {result.get('message') or 'Action completed'}"


# ─────────────────────────────────────────────
# Derivación de parámetros
# ─────────────────────────────────────────────

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_AMOUNT_PATTERN = re.compile(
    r"(?:\$\s?(\d+(?:[.,]\d{1,2})?))|(?:\b(\d+(?:[.,]\d{1,2})?)\s?(?:usd|dollars|eur|euros)\b)",
    re.IGNORECASE,
)
_ORDER_PATTERN = re.compile(
    r"\border\s*(?:#|no\.?|number|id)?\s*:?\s*#?([A-Z]*-?\d[\w-]*)", re.IGNORECASE
)
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s().-]{7,}\d")
_TIME_PATTERN = re.compile(
    r"\b(?:tomorrow|today|tonight|next week|next \w+day|later today|"
    r"(?:at\s+)?\d{1,2}(?::\d{2})?\s?(?:am|pm))\b",
    re.IGNORECASE,
)
_CHANNEL_PATTERN = re.compile(r"(?<!\w)#([a-z][\w-]*)", re.IGNORECASE)
_URGENT_WORDS = ("urgent", "asap", "immediately", "emergency")

TITLE_MAX_CHARS = 60


def extract_entities(message: str) -> Dict[str, str]:
    """Entidades simples presentes en el mensaje (primera ocurrencia)."""
    text = message or ""
    entities = {}

    email = _EMAIL_PATTERN.search(text)
    if email:
        entities["email"] = email.group(0)

    order = _ORDER_PATTERN.search(text)
    if order:
        entities["order_id"] = order.group(1)

    amount = _AMOUNT_PATTERN.search(text)
    if amount:
        entities["amount"] = (amount.group(1) or amount.group(2)).replace(",", ".")

    phone = _PHONE_PATTERN.search(text)
    if phone:
        entities["phone"] = phone.group(0).strip()

    when = _TIME_PATTERN.search(text)
    if when:
        entities["time"] = when.group(0)

    channel = _CHANNEL_PATTERN.search(text)
    if channel:
        entities["channel"] = f"#{channel.group(1)}"

    return entities


def build_tool_parameters(
    tool_id: str,
    message: str,
    session_id: str,
    user_id: Optional[str] = None,
    registry: Mapping[str, ToolSpec] = DEFAULT_TOOL_REGISTRY,
) -> Dict[str, Any]:
    """
    Deriva los parámetros de una herramienta a partir del turno.

    Los parámetros de texto libre toman el mensaje; el resto sale de
    entidades del mensaje o del turno. Lo que no se puede derivar queda
    ausente y la validación lo reporta.
    """
    entities = extract_entities(message)
    lowered = (message or "").lower()
    title = message.strip()[:TITLE_MAX_CHARS]
    priority = "urgent" if any(w in lowered for w in _URGENT_WORDS) else "medium"

    derived = {
        "content": message,
        "message": message,
        "body": message,
        "description": message,
        "reason": message,
        "filename": f"conversation-{session_id}.txt",
        "channel": entities.get("channel", "#support"),
        "to": entities.get("email"),
        "subject": title,
        "title": title,
        "priority": priority,
        "customer_phone": entities.get("phone"),
        "preferred_time": entities.get("time"),
        "document_type": "general",
        "recipient": entities.get("email") or user_id,
        "customer_id": user_id,
        "order_id": entities.get("order_id"),
        "amount": entities.get("amount"),
        "issue_type": "customer_request",
        "survey_type": "satisfaction",
    }

    spec = registry.get(tool_id)
    if spec is None:
        return {}

    names = spec.required_params + spec.optional_params
    return {name: derived[name] for name in names if derived.get(name) is not None}
