"""Fact extraction from conversations using LLM."""

import json
import logging
import re
from typing import Any

from ..llm_client import LLMClient
from .models import ExtractedFact

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 50
MAX_CONFIDENCE = 100
MIN_VALUE_LENGTH = 4
MAX_VALUE_LENGTH = 500
KEY_SLUG_LENGTH = 30

# Only the most recent turns are sent to the LLM
MAX_TURNS = 20
EXTRACTION_TEMPERATURE = 0.3
EXTRACTION_MAX_TOKENS = 800

# Phrases that suggest a message carries something worth remembering
IMPORTANT_KEYWORDS = [
    # personal
    "mi nombre", "me llamo", "soy", "mi apellido",
    "trabajo en", "trabajo como", "mi empresa", "mi compañía",
    "vivo en", "estoy en", "mi ubicación",
    # technical / professional
    "estoy construyendo", "estoy desarrollando", "mi proyecto",
    "uso", "utilizo", "trabajo con", "prefiero",
    "mi stack", "tecnología", "framework",
    # decisions
    "decidí", "voy a usar", "elegí", "opté por",
    "voy a implementar", "mejor usar",
    # preferences
    "me gusta", "no me gusta", "quiero", "necesito", "busco",
    # business
    "mi startup", "mi negocio", "e-commerce", "saas",
    "mis usuarios", "mis clientes",
]

EXTRACTION_PROMPT = """Eres un asistente que extrae información importante de conversaciones.

Analiza la conversación y extrae SOLO hechos persistentes y relevantes sobre el usuario.

Categorías:
- personal: nombre, empresa, cargo, ubicación, zona horaria
- technical: lenguajes, frameworks, herramientas y servicios que usa
- preferences: estilo de respuesta preferido, formatos, lo que le gusta o no
- project: qué está construyendo, tipo de aplicación, objetivos, audiencia
- decisions: tecnologías elegidas, enfoques adoptados o descartados

Reglas:
1. Solo información PERSISTENTE, útil en futuras conversaciones
2. No extraigas preguntas puntuales ni estados temporales
3. No extraigas datos sensibles (contraseñas, API keys, tokens)
4. "key" es un identificador corto y descriptivo (ej: "tech_stack_nextjs")
5. "value" es claro y conciso
6. "confidence" va de 0 a 100 según qué tan seguro estás del hecho

Retorna SOLO JSON válido:
{
  "facts": [
    {"key": "identificador", "value": "descripción del hecho", "category": "personal|technical|preferences|project|decisions", "confidence": 85}
  ]
}

Si no hay hechos importantes, retorna {"facts": []}"""


def has_important_information(content: str) -> bool:
    """Check whether a message contains any important-information keyword."""
    lowered = content.lower()
    return any(keyword in lowered for keyword in IMPORTANT_KEYWORDS)


def should_extract_facts(messages: list[dict[str, Any]]) -> bool:
    """Decide whether a conversation is worth running extraction on.

    Requires at least 3 user messages, one of the last 3 of which
    contains an important-information keyword.
    """
    user_messages = [m for m in messages if m.get("role") == "user"]
    if len(user_messages) < 3:
        return False

    return any(
        has_important_information(str(m.get("content", "")))
        for m in user_messages[-3:]
    )


def is_valid_fact(fact: ExtractedFact) -> bool:
    """Check an extracted fact against the quality thresholds."""
    return bool(
        fact.key
        and fact.value
        and fact.category
        and fact.confidence >= MIN_CONFIDENCE
        and MIN_VALUE_LENGTH <= len(fact.value) <= MAX_VALUE_LENGTH
    )


def validate_facts(facts: list[ExtractedFact]) -> list[ExtractedFact]:
    """Keep only the facts that pass is_valid_fact."""
    valid = [fact for fact in facts if is_valid_fact(fact)]
    if len(valid) < len(facts):
        logger.debug("Discarded %d invalid facts", len(facts) - len(valid))
    return valid


def generate_key(category: str, value: str) -> str:
    """Build the upsert key for a fact.

    Repeated mentions of the same fact differing only in case or
    punctuation map to the same key.

    Example:
        generate_key("technical", "Usa Next.js") == "technical_usa_nextjs"
    """
    cleaned = re.sub(r"[^a-z0-9\s]", "", value.lower())
    slug = re.sub(r"\s+", "_", cleaned)[:KEY_SLUG_LENGTH]
    return f"{category}_{slug}"


class FactExtractor:
    """Extracts facts from conversations using LLM."""

    def __init__(self, llm: LLMClient) -> None:
        """Initialize the extractor.

        Args:
            llm: The LLMClient used for extraction calls.
        """
        self.llm = llm

    async def extract(self, messages: list[dict[str, Any]]) -> list[ExtractedFact]:
        """Extract facts from a conversation.

        Args:
            messages: The conversation messages, oldest first.

        Returns:
            Valid extracted facts, empty if none found or on error.
        """
        if not messages:
            return []

        conversation_text = self._format_conversation(messages[-MAX_TURNS:])
        if not conversation_text:
            return []

        try:
            content = await self.llm.complete(
                f"CONVERSACIÓN:\n\n{conversation_text}",
                system=EXTRACTION_PROMPT,
                temperature=EXTRACTION_TEMPERATURE,
                max_tokens=EXTRACTION_MAX_TOKENS,
                json_mode=True,
            )
        except Exception as e:
            logger.warning("Fact extraction failed: %s", e)
            return []

        return validate_facts(self._parse_response(content))

    def _format_conversation(self, messages: list[dict[str, Any]]) -> str:
        """Format messages into a readable conversation string."""
        lines = []
        for msg in messages:
            role = msg.get("role", "unknown")
            content = msg.get("content", "")
            if role == "user":
                lines.append(f"Usuario: {content}")
            elif role == "assistant":
                lines.append(f"Asistente: {content}")
            # Skip system and tool messages
        return "\n\n".join(lines)

    def _parse_response(self, content: str) -> list[ExtractedFact]:
        """Parse LLM response into facts.

        Args:
            content: The raw LLM response.

        Returns:
            List of facts, empty on parse error.
        """
        json_str = content.strip()
        if json_str.startswith("```"):
            # The LLM might wrap the JSON in a markdown code block
            lines = [line for line in json_str.split("\n") if not line.startswith("```")]
            json_str = "\n".join(lines)

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse extraction response: %s", e)
            return []

        if not isinstance(data, dict) or not isinstance(data.get("facts"), list):
            logger.warning("Invalid response structure: missing 'facts' list")
            return []

        facts = []
        for item in data["facts"]:
            fact = self._parse_item(item)
            if fact is None:
                logger.warning("Skipping invalid fact item: %s", item)
                continue
            facts.append(fact)

        return facts

    def _parse_item(self, item: Any) -> ExtractedFact | None:
        if not isinstance(item, dict):
            return None

        try:
            confidence = int(item.get("confidence", 0))
        except (TypeError, ValueError, OverflowError):
            return None

        return ExtractedFact(
            key=str(item.get("key") or ""),
            value=str(item.get("value") or ""),
            category=str(item.get("category") or ""),
            confidence=min(max(confidence, 0), MAX_CONFIDENCE),
        )
