import os
from unittest.mock import MagicMock, patch

import pytest

from artifex.domain.models.errors import ConfigurationError
from artifex.infrastructure.ai.groq.groq_client import GroqClient
from artifex.infrastructure.config import settings
from artifex.infrastructure.config.settings import DEFAULT_MODEL_CHAINS


@pytest.fixture
def mock_groq_client():
    mock_client = MagicMock()
    mock_choice = MagicMock()
    mock_choice.message.content = None
    completion = MagicMock()
    completion.choices = [mock_choice]
    completion.usage.prompt_tokens = 3
    completion.usage.completion_tokens = 4
    completion.usage.total_tokens = 7
    completion.model = "llama-3.1-8b-instant"
    mock_client.chat.completions.create.return_value = completion
    return mock_client


@patch('artifex.infrastructure.ai.groq.groq_client.GroqSDKClient')
def test_groq_client_init_uses_default_chain(mock_constructor, monkeypatch):
    monkeypatch.delenv("ARTIFEX_AI_GROQ_MODELS", raising=False)
    monkeypatch.setattr(settings, "_config", {})

    client = GroqClient(api_key="gsk_test")

    mock_constructor.assert_called_once_with(api_key="gsk_test", max_retries=0)
    assert client.fallback_models == DEFAULT_MODEL_CHAINS["groq"]
    assert client.model == DEFAULT_MODEL_CHAINS["groq"][0]
    assert client.provider_name == "Groq"


@patch('artifex.infrastructure.ai.groq.groq_client.GroqSDKClient')
def test_groq_client_init_no_key(mock_constructor, monkeypatch):
    monkeypatch.setattr(settings, "_config", {})
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ConfigurationError, match="GROQ_API_KEY"):
            GroqClient()
    mock_constructor.assert_not_called()


@pytest.mark.asyncio
async def test_send_messages_maps_empty_content(mock_groq_client):
    client = GroqClient(models=("llama-3.3-70b-versatile", "llama-3.1-8b-instant"), client=mock_groq_client)

    response = await client.send_messages([{'role': 'user', 'content': 'hi'}], model="llama-3.1-8b-instant")

    assert response.content == ""
    assert response.model_name == "llama-3.1-8b-instant"
    assert response.token_usage['total_tokens'] == 7
    assert mock_groq_client.chat.completions.create.call_args.kwargs['model'] == "llama-3.1-8b-instant"


@pytest.mark.asyncio
async def test_send_messages_reraises_sdk_errors(mock_groq_client):
    mock_groq_client.chat.completions.create.side_effect = ConnectionError("connection reset by peer")
    client = GroqClient(models=("llama-3.3-70b-versatile",), client=mock_groq_client)

    with pytest.raises(ConnectionError):
        await client.send_messages([{'role': 'user', 'content': 'hi'}])
