"""
Validator - Valida el mensaje entrante antes de cualquier llamada externa.

Rechaza mensajes vacíos o demasiado largos con ValidationError.
Es la única falla que el usuario ve como error 4xx.
"""

import logging

from agent.errors import ValidationError

logger = logging.getLogger(__name__)


class MessageValidator:
    """Valida el texto del mensaje del usuario"""

    def __init__(self, max_length: int = 2000):
        self.max_length = max_length

    def validate(self, message: str) -> str:
        """
        Devuelve el mensaje sin espacios extremos.

        Raises:
            ValidationError: si está vacío o supera max_length
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("El mensaje está vacío")

        text = message.strip()
        if len(text) > self.max_length:
            logger.warning(f"Mensaje rechazado: {len(text)} caracteres")
            raise ValidationError(
                f"El mensaje supera el máximo de {self.max_length} caracteres"
            )
        return text

    def validate_ids(self, **ids: str) -> None:
        """Los identificadores del turno tampoco pueden estar vacíos."""
        for name, value in ids.items():
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Falta el campo requerido: {name}")
