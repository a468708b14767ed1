"""Interface for AI Language Models (LLMs).

Defines the contract for sending messages to different AI providers
(e.g., OpenAI GPT, Groq Llama). The model is chosen per call so the
fallback orchestrator can walk a chain of candidates on one client.
"""

import abc
from typing import List, Optional

# Import relevant domain models
from ..models.ai import ChatMessage, StructuredAIResponse
from ..models.common import FallbackChain


class AIModel(abc.ABC):
    """Abstract Base Class for AI language model interactions."""

    provider_name: str = "AI"

    @abc.abstractmethod
    async def send_messages(
        self, messages: List[ChatMessage], model: Optional[str] = None
    ) -> StructuredAIResponse:
        """Sends a list of messages to the AI model asynchronously.

        Args:
            messages: A list of ChatMessage objects representing the conversation.
            model: The model to target; the client default if None.

        Returns:
            A StructuredAIResponse containing the AI's reply and metadata.

        Raises:
            Exception: The provider SDK's own exception, left untouched so the
                error classifier can inspect its status and message.
        """
        pass

    @property
    @abc.abstractmethod
    def fallback_models(self) -> FallbackChain:
        """The ordered model chain tried for text generation."""
        pass
