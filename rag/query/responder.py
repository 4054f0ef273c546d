"""
Responder - Capacidad de completion LLM (Groq API).

Este módulo:
1. Integra con Groq API para generación de texto
2. Recibe la lista de mensajes ya armada (system + historial + usuario)
3. Aplica timeout por llamada
4. Convierte cualquier falla en LLMError (el orquestador la recupera)
"""

import logging
from typing import Any, Dict, List, Optional

from groq import Groq

from agent.errors import LLMError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"


class GroqResponder:
    """Completion de chat usando Groq LLM API"""

    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: float = 30.0,
        client: Optional[Groq] = None,
    ):
        """
        Inicializa el responder con Groq client.

        Args:
            api_key: API key de Groq (requerida si no se pasa client)
            model: Modelo a usar (default: llama-3.3-70b-versatile)
            temperature: Temperatura por defecto
            max_tokens: Máximo de tokens por respuesta
            timeout: Timeout en segundos por llamada
            client: Cliente Groq ya construido (tests)
        """
        if client is None and not api_key:
            raise ValueError(
                "GROQ_API_KEY no encontrada. "
                "Crea un archivo .env con tu API key de https://console.groq.com/keys"
            )

        self.client = client or Groq(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        logger.info(f"Groq Responder inicializado (modelo: {self.model})")

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = None,
        max_tokens: int = None,
        timeout: float = None,
    ) -> Dict[str, Any]:
        """
        Genera una respuesta para la lista de mensajes.

        Args:
            messages: Lista de {role, content}
            temperature: Override de temperatura
            max_tokens: Override de tokens máximos
            timeout: Override del timeout (segundos)

        Returns:
            Dict con:
            - success: True
            - content: texto de la respuesta
            - usage: tokens consumidos (prompt/completion/total)

        Raises:
            LLMError: si la API falla, supera el timeout o devuelve vacío
        """
        try:
            chat_completion = self.client.chat.completions.create(
                messages=messages,
                model=self.model,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                timeout=timeout or self.timeout,
            )
        except Exception as e:
            logger.error(f"Error al generar respuesta: {e}")
            raise LLMError(str(e)) from e

        if not chat_completion.choices:
            raise LLMError("El LLM no devolvió opciones")

        content = chat_completion.choices[0].message.content or ""
        # Limpiar comillas envolventes que el LLM a veces agrega
        content = content.strip().strip('"“”')
        if not content:
            raise LLMError("El LLM devolvió una respuesta vacía")

        usage = {}
        if chat_completion.usage is not None:
            usage = {
                "prompt_tokens": chat_completion.usage.prompt_tokens,
                "completion_tokens": chat_completion.usage.completion_tokens,
                "total_tokens": chat_completion.usage.total_tokens,
            }

        return {"success": True, "content": content, "usage": usage}
