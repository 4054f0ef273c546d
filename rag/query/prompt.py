"""
Prompt Assembler - Construye el system prompt de cada turno.

Secciones, en este orden:
1. Identidad / personalidad del agente
2. Prioridad de la base de conocimiento
3. Instrucción según el tier de confianza
4. Pasajes de conocimiento (o aviso de que no hay)
5. Resultados de herramientas (si hubo)
6. Guías de la industria
7. Directivas finales

Composición determinística de strings: no hay llamada al LLM acá.
"""

from types import MappingProxyType
from typing import Mapping, Optional

from agent.models import AgentProfile
from rag.query.confidence import ConfidenceResult, ConfidenceTier


DEFAULT_INDUSTRY = "general"

INDUSTRY_GUIDELINES: Mapping[str, str] = MappingProxyType(
    {
        "healthcare": "Ensure all information comes from verified sources. Never provide medical advice without proper disclaimers. Always recommend consulting healthcare professionals for medical concerns.",
        "finance": "Be precise with financial information. Always recommend consulting qualified professionals for investment advice. Emphasize the importance of professional financial guidance.",
        "ecommerce": "Focus on product information, policies, and customer service from your knowledge base. Be clear about return/refund policies and shipping information.",
        "events": "Provide specific event details, ticket information, and venue policies from your knowledge base. Include relevant dates, times, and location information.",
        "education": "Reference official curriculum, policies, and procedures from your knowledge base. Guide users to appropriate educational resources and support services.",
        "support": "Follow established troubleshooting procedures from your knowledge base. Escalate complex issues appropriately and provide clear next steps.",
        "technology": "Provide technical information from your knowledge base. Be clear about system requirements, compatibility, and technical limitations.",
        "retail": "Focus on product details, availability, pricing, and customer service policies from your knowledge base. Provide accurate inventory and shipping information.",
        "hospitality": "Provide information about services, amenities, policies, and local recommendations from your knowledge base. Include relevant contact information and hours.",
        "general": "Use your knowledge base as the primary source for all domain-specific information. Be helpful and accurate while maintaining your personality.",
    }
)

_TIER_TEMPLATES: Mapping[ConfidenceTier, str] = MappingProxyType(
    {
        ConfidenceTier.HIGH: (
            "You have HIGH-CONFIDENCE knowledge about this topic "
            "({count} relevant sources, {percent}% match). Use this knowledge as "
            "your primary source and respond with authority while maintaining "
            "your personality."
        ),
        ConfidenceTier.MEDIUM: (
            "You have PARTIAL knowledge about this topic "
            "({count} relevant sources, {percent}% match). Provide what you know "
            "in your own voice and acknowledge any gaps naturally."
        ),
        ConfidenceTier.LOW: (
            "You have LIMITED knowledge about this topic "
            "({count} relevant sources, {percent}% match). Share what's relevant "
            "in your personality and suggest alternatives."
        ),
        ConfidenceTier.NONE: (
            "You have NO SPECIFIC KNOWLEDGE about this topic "
            "({count} relevant sources, {percent}% match). Be honest about "
            "limitations in your own voice and offer related help or suggest "
            "contacting support."
        ),
    }
)

_KNOWLEDGE_PRIORITY = """KNOWLEDGE BASE PRIORITY:
- ALWAYS prioritize information from your knowledge base over general knowledge
- If you have relevant knowledge, use it as your primary source
- If knowledge is insufficient, clearly state limitations
- Maintain your personality while being factually accurate"""

_NO_KNOWLEDGE = (
    "NO RELEVANT KNOWLEDGE FOUND - Be honest about limitations while staying in character."
)


class PromptAssembler:
    """Arma el system prompt a partir del agente, la confianza y el contexto"""

    def __init__(
        self,
        industry_guidelines: Mapping[str, str] = None,
        tier_templates: Mapping[ConfidenceTier, str] = None,
    ):
        self._guidelines = industry_guidelines or INDUSTRY_GUIDELINES
        self._templates = tier_templates or _TIER_TEMPLATES

    def confidence_instructions(self, confidence: ConfidenceResult) -> str:
        template = self._templates[confidence.tier]
        return template.format(
            count=confidence.source_count,
            percent=f"{confidence.score * 100:.0f}",
        )

    def industry_guidelines(self, industry: Optional[str]) -> str:
        """Guías de la industria; cae a 'general' si la clave no existe."""
        key = (industry or DEFAULT_INDUSTRY).lower()
        if key in self._guidelines:
            return self._guidelines[key]
        return self._guidelines.get(DEFAULT_INDUSTRY, "")

    def assemble(
        self,
        agent: AgentProfile,
        confidence: ConfidenceResult,
        knowledge_context: str = "",
        tool_results: str = "",
    ) -> str:
        """
        Construye el system prompt completo.

        Args:
            agent: Persona del agente (name, personality, description, industry)
            confidence: Resultado del scoring (tier efectivo)
            knowledge_context: Pasajes ya formateados ("" si no hay)
            tool_results: Texto con resultado de herramientas ("" si no hubo)
        """
        sections = [
            f"You are {agent.name}, an AI assistant with the following personality:\n"
            f"{agent.personality}"
        ]

        if agent.description:
            sections.append(f"Description: {agent.description}")

        sections.append(_KNOWLEDGE_PRIORITY)
        sections.append(self.confidence_instructions(confidence))

        if knowledge_context:
            sections.append(
                "RELEVANT KNOWLEDGE FROM YOUR KNOWLEDGE BASE:\n"
                f"{knowledge_context}\n\n"
                "IMPORTANT: This knowledge is specific to your domain. Use it to "
                "provide accurate answers while maintaining your personality."
            )
        else:
            sections.append(_NO_KNOWLEDGE)

        if tool_results:
            sections.append(f"TOOL EXECUTION RESULTS:\n{tool_results}")

        sections.append(
            f"INDUSTRY GUIDELINES:\n{self.industry_guidelines(agent.industry)}"
        )

        sections.append(
            "RESPONSE GUIDELINES:\n"
            "- If you have knowledge base content: Use it confidently while staying true to your personality\n"
            "- If knowledge is partial: Acknowledge limitations in your own voice\n"
            "- If no knowledge: Be honest about limitations and offer related help\n"
            f"- Always maintain your {agent.personality} personality\n"
            "- Follow industry guidelines while staying in character\n\n"
            "Respond to the user's message in character, using your personality "
            "and prioritizing the provided knowledge."
        )

        return "\n\n".join(sections)
