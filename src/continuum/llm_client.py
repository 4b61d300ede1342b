"""LLM client used for fact extraction.

This module provides the LLMClient Protocol and a Groq implementation,
so the memory system can call the LLM without depending on a specific
provider.
"""

from typing import Any, Protocol

from groq import AsyncGroq

DEFAULT_MODEL = "llama-3.1-70b-versatile"


class LLMClient(Protocol):
    """Protocol for LLM completions."""

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Complete a prompt and return the text response."""
        ...


class GroqLLMClient:
    """LLMClient implementation that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq
        from continuum.llm_client import GroqLLMClient

        groq = AsyncGroq(api_key="...")
        llm = GroqLLMClient(groq, model="llama-3.1-70b-versatile")
        text = await llm.complete("...", system="...", json_mode=True)
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = DEFAULT_MODEL,
    ) -> None:
        """Initialize the Groq LLM client wrapper.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
        """
        self._client = client
        self._model = model

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Complete a prompt and return the text response.

        Args:
            prompt: The user prompt to complete.
            system: Optional system prompt to set context.
            temperature: Sampling temperature, provider default if None.
            max_tokens: Cap on the response size, provider default if None.
            json_mode: Ask the provider for a JSON object response.

        Returns:
            The LLM's text response.
        """
        messages: list[dict[str, Any]] = []

        if system:
            messages.append({"role": "system", "content": system})

        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)

        return response.choices[0].message.content or ""

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model
