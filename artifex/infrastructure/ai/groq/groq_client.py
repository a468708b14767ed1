"""Concrete implementation of the AIModel interface using the Groq API.

Hides the specifics of the Groq client library and translates requests/
responses between the domain model and the Groq API format.
"""

import asyncio
import logging
import time
from typing import Any, List, Optional

from groq import Groq as GroqSDKClient

# Domain Layer Imports
from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import ChatMessage, StructuredAIResponse
from artifex.domain.models.common import FallbackChain, TokenUsage
from artifex.domain.models.errors import ConfigurationError
from artifex.infrastructure.config.settings import get_groq_api_key, get_model_chain

logger = logging.getLogger(__name__)


class GroqClient(AIModel):
    """Groq implementation of the AIModel interface."""

    provider_name = "Groq"

    def __init__(
        self,
        api_key: Optional[str] = None,
        models: Optional[FallbackChain] = None,
        client: Optional[Any] = None,
    ):
        """Initializes the Groq client.

        Args:
            api_key: Groq API key. Read from settings (GROQ_API_KEY) if None.
            models: Ordered model chain; the first entry is the default model.
            client: Pre-built SDK client, mainly for tests.
        """
        self._models = tuple(models) if models else get_model_chain("groq")
        if client is not None:
            self.client = client
        else:
            effective_api_key = api_key or get_groq_api_key()
            if not effective_api_key:
                raise ConfigurationError("Groq API key not provided and not found in settings (GROQ_API_KEY).")
            self.client = GroqSDKClient(api_key=effective_api_key, max_retries=0)

        self.model = self._models[0]
        logger.info(f"GroqClient initialized. Model chain: {', '.join(self._models)}")

    @property
    def fallback_models(self) -> FallbackChain:
        return self._models

    def _parse_groq_response(self, response: Any) -> StructuredAIResponse:
        try:
            choice = response.choices[0]
            token_usage = None
            if response.usage:
                # Map Groq's usage structure to our domain model
                token_usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                    total_tokens=response.usage.total_tokens
                )
            return StructuredAIResponse(
                content=choice.message.content or "",
                token_usage=token_usage,
                model_name=response.model,
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse Groq response structure: {e}", exc_info=True)
            raise ValueError(f"Invalid response structure from Groq: {e}") from e

    async def send_messages(self, messages: List[ChatMessage], model: Optional[str] = None) -> StructuredAIResponse:
        """Sends messages to one Groq model asynchronously."""
        target = model or self.model
        logger.debug(f"Sending {len(messages)} messages to Groq model: {target}")
        start_time = time.perf_counter()
        try:
            # The official Groq SDK client is synchronous
            chat_completion = await asyncio.to_thread(
                self.client.chat.completions.create,
                messages=messages,
                model=target,
            )
        except Exception as e:
            logger.warning(f"Groq call to {target} failed: {type(e).__name__} - {e}")
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        structured_response = self._parse_groq_response(chat_completion)
        structured_response.latency_ms = latency_ms
        logger.debug(f"Received response from Groq in {latency_ms:.2f}ms. Usage: {structured_response.token_usage}")
        return structured_response
