"""Concrete implementation of the AIModel interface using the OpenAI API.

Hides the specifics of the OpenAI client library and translates requests/
responses between the domain model and the OpenAI API format. SDK errors
are logged and re-raised as they are; retrying and classification happen
in the resilience layer.
"""

import asyncio
import logging
import time
from typing import Any, List, Optional

from openai import OpenAI

# Domain Layer Imports
from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import ChatMessage, StructuredAIResponse
from artifex.domain.models.common import FallbackChain, TokenUsage
from artifex.domain.models.errors import ConfigurationError
from artifex.infrastructure.config.settings import get_model_chain, get_openai_api_key

logger = logging.getLogger(__name__)


class GptClient(AIModel):
    """OpenAI implementation of the AIModel interface."""

    provider_name = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        models: Optional[FallbackChain] = None,
        client: Optional[Any] = None,
    ):
        """Initializes the OpenAI client.

        Args:
            api_key: OpenAI API key. Read from settings (OPENAI_API_KEY) if None.
            models: Ordered model chain; the first entry is the default model.
            client: Pre-built SDK client, mainly for tests.
        """
        self._models = tuple(models) if models else get_model_chain("openai")
        if client is not None:
            self.client = client
        else:
            effective_api_key = api_key or get_openai_api_key()
            if not effective_api_key:
                raise ConfigurationError("OpenAI API key not provided and not found in settings (OPENAI_API_KEY).")
            # The SDK's own retries are disabled: ApiRetryService owns backoff.
            self.client = OpenAI(api_key=effective_api_key, max_retries=0)

        self.model = self._models[0]
        logger.info(f"GptClient initialized. Model chain: {', '.join(self._models)}")

    @property
    def fallback_models(self) -> FallbackChain:
        return self._models

    def _parse_openai_response(self, response: Any) -> StructuredAIResponse:
        """Parses the response object from OpenAI API call."""
        try:
            choice = response.choices[0]
            content = choice.message.content or ""

            token_usage = None
            if response.usage:
                token_usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                    total_tokens=response.usage.total_tokens
                )

            return StructuredAIResponse(
                content=content,
                token_usage=token_usage,
                model_name=response.model, # Actual model used
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse OpenAI response structure: {e}", exc_info=True)
            logger.debug(f"Raw OpenAI response object: {response}")
            raise ValueError(f"Invalid response structure from OpenAI: {e}") from e

    async def send_messages(self, messages: List[ChatMessage], model: Optional[str] = None) -> StructuredAIResponse:
        """Sends messages to one OpenAI model asynchronously."""
        target = model or self.model
        logger.debug(f"Sending {len(messages)} messages to OpenAI model: {target}")
        start_time = time.perf_counter()
        try:
            # Use asyncio.to_thread for the synchronous SDK call
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=target,
                messages=messages,
            )
        except Exception as e:
            logger.warning(f"OpenAI call to {target} failed: {type(e).__name__} - {e}")
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        structured_response = self._parse_openai_response(response)
        structured_response.latency_ms = latency_ms
        logger.debug(f"Received response from OpenAI in {latency_ms:.2f}ms. Usage: {structured_response.token_usage}")
        return structured_response
