"""
Errores del orquestador.

Taxonomía usada en todo el sistema:
- ValidationError: request entrante inválido → se aborta el turno (400)
- ToolValidationError: faltan parámetros requeridos de una herramienta
- RetrievalError / ToolExecutionError / LLMError: se recuperan localmente
- NotFoundError / InvalidTransitionError: errores de la API de gestión
"""


class OrchestratorError(Exception):
    """Base de todos los errores del orquestador."""


class ValidationError(OrchestratorError):
    """El request entrante no es válido (ej: mensaje vacío)."""


class ToolValidationError(ValidationError):
    """Parámetros de herramienta inválidos o herramienta desconocida."""

    def __init__(self, tool_id: str, message: str):
        super().__init__(message)
        self.tool_id = tool_id


class RetrievalError(OrchestratorError):
    """Falló la búsqueda vectorial o el live fetch."""


class ToolExecutionError(OrchestratorError):
    """El handler de una herramienta lanzó una excepción."""

    def __init__(self, tool_id: str, message: str):
        super().__init__(message)
        self.tool_id = tool_id


class LLMError(OrchestratorError):
    """La llamada al LLM falló o superó el timeout."""


class NotFoundError(OrchestratorError):
    """No existe el recurso solicitado."""


class InvalidTransitionError(OrchestratorError):
    """Transición de estado no permitida para una escalación."""

    def __init__(self, escalation_id: str, current: str, action: str):
        super().__init__(
            f"Escalación {escalation_id}: '{action}' no es válido desde '{current}'"
        )
        self.escalation_id = escalation_id
        self.current = current
        self.action = action
