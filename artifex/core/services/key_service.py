"""Credential checks for the AI provider and GitHub."""

import logging
from typing import Callable, List, Optional

from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import ChatMessage, KeyValidationResult
from artifex.domain.models.errors import ErrorKind
from artifex.infrastructure.github.github_client import GitHubClient
from artifex.infrastructure.resilience.error_classifier import classify

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str], AIModel]

CHECK_PROMPT = 'Say "ok"'


class KeyService:
    """Validates user-supplied credentials with a single, unretried test call."""

    def __init__(self, model_factory: ModelFactory, github_client: Optional[GitHubClient] = None):
        """
        Args:
            model_factory: Builds an AIModel bound to the key being checked.
            github_client: Client used for GitHub token checks.
        """
        self.model_factory = model_factory
        self.github_client = github_client

    async def validate_ai_key(self, key: str) -> KeyValidationResult:
        """Sends one tiny prompt with `key`.

        A limited key is reported valid, with a note that it works once the
        limit resets.
        """
        try:
            model = self.model_factory(key)
            messages: List[ChatMessage] = [ChatMessage(role="user", content=CHECK_PROMPT)]
            # The cheapest model of the chain is enough to prove the key works.
            await model.send_messages(messages, model=model.fallback_models[-1])
            return KeyValidationResult(valid=True)
        except Exception as e:
            classification = classify(e)
            logger.info(f"AI key check failed with {classification.kind.value}")
            if classification.kind is ErrorKind.AUTH_INVALID:
                return KeyValidationResult(valid=False, error="This API key is invalid. Please check it and try again.")
            if classification.kind.is_limit:
                return KeyValidationResult(
                    valid=True,
                    error="Key is valid but has hit its rate limit. It will work once the limit resets.",
                )
            return KeyValidationResult(
                valid=False,
                error=f"Could not verify key: {classification.message or 'Unknown error'}",
            )

    async def validate_github_token(self, token: str) -> KeyValidationResult:
        if self.github_client is None:
            return KeyValidationResult(valid=False, error="GitHub client is not configured.")
        return await self.github_client.validate_token(token)
