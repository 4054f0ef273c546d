"""
Agent — Capa de orquestación del asistente.

Sobre el pipeline de conocimiento (rag/query) agrega:
- Ventana de conversación acotada + log durable por sesión
- Detección y ejecución de herramientas por keywords
- Reglas de escalación y ciclo de vida de escalaciones
- Gestión de agentes humanos
- El orquestador que secuencia todo en cada turno
"""
