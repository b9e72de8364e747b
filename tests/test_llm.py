"""Tests for the LLM module."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from tenacity import wait_none

from knowledge_search.config import settings
from knowledge_search.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMProviderNotConfiguredError,
    LLMRateLimitError,
    LLMResponseError,
)
from knowledge_search.rag.factory import get_available_providers, get_llm, get_provider
from knowledge_search.rag.llm import BaseLLM, ChatMessage
from knowledge_search.rag.providers.openai import OpenAILLM


def mock_http_client(mock_client_class, response=None, error=None, method="post"):
    mock_client = AsyncMock()
    call = AsyncMock(return_value=response, side_effect=error)
    setattr(mock_client, method, call)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


def chat_response(content="Olá!", status_code=200, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(OpenAILLM.chat.retry, "wait", wait_none())


class TestOpenAILLM:
    """Tests for OpenAILLM."""

    def test_init_defaults(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        llm = OpenAILLM()
        assert llm.api_key == "sk-test"
        assert llm.model == settings.OPENAI_CHAT_MODEL
        assert llm.provider_name == "openai"

    def test_base_url_trailing_slash_removed(self):
        llm = OpenAILLM(api_key="sk-test", base_url="http://localhost:8080/v1/")
        assert llm.base_url == "http://localhost:8080/v1"

    @pytest.mark.asyncio
    async def test_is_available(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        assert await OpenAILLM().is_available() is False
        assert await OpenAILLM(api_key="sk-test").is_available() is True

    @pytest.mark.asyncio
    async def test_generate_success(self):
        """System and user messages are sent in order."""
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class, chat_response("Resposta"))

            llm = OpenAILLM(api_key="sk-test", model="gpt-test")
            result = await llm.generate("Pergunta", system="Sistema", max_tokens=50)

        assert result == "Resposta"
        call = mock_client.post.call_args
        assert call.args[0].endswith("/chat/completions")
        payload = call.kwargs["json"]
        assert payload["model"] == "gpt-test"
        assert payload["max_tokens"] == 50
        assert payload["messages"] == [
            {"role": "system", "content": "Sistema"},
            {"role": "user", "content": "Pergunta"},
        ]
        assert call.kwargs["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_chat_without_key(self):
        llm = OpenAILLM(api_key="")
        llm.api_key = ""
        with pytest.raises(LLMAuthenticationError):
            await llm.chat([ChatMessage(role="user", content="hi")])

    @pytest.mark.asyncio
    async def test_invalid_key(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, chat_response(status_code=401))
            with pytest.raises(LLMAuthenticationError):
                await OpenAILLM(api_key="sk-bad").generate("hi")

    @pytest.mark.asyncio
    async def test_server_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, chat_response(status_code=500))
            with pytest.raises(LLMResponseError) as exc_info:
                await OpenAILLM(api_key="sk-test").generate("hi")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        response = chat_response()
        response.json.return_value = {"choices": []}
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, response)
            with pytest.raises(LLMResponseError):
                await OpenAILLM(api_key="sk-test").generate("hi")

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, no_retry_wait):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(
                mock_client_class, chat_response(status_code=429, headers={"retry-after": "3"})
            )
            with pytest.raises(LLMRateLimitError) as exc_info:
                await OpenAILLM(api_key="sk-test").generate("hi")

        assert exc_info.value.retry_after == 3.0
        assert mock_client.post.call_count == 3

    @pytest.mark.asyncio
    async def test_connection_error_then_success(self, no_retry_wait):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)
            mock_client.post.side_effect = [httpx.ConnectError("refused"), chat_response("ok")]

            result = await OpenAILLM(api_key="sk-test").generate("hi")

        assert result == "ok"
        assert mock_client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_maps_to_connection_error(self, no_retry_wait):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, error=httpx.ReadTimeout("slow"))
            with pytest.raises(LLMConnectionError):
                await OpenAILLM(api_key="sk-test").generate("hi")

    @pytest.mark.asyncio
    async def test_check_health(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, MagicMock(status_code=200), method="get")
            assert await OpenAILLM(api_key="sk-test").check_health() is True

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, error=httpx.ConnectError("down"), method="get")
            assert await OpenAILLM(api_key="sk-test").check_health() is False

    @pytest.mark.asyncio
    async def test_check_health_without_key(self):
        llm = OpenAILLM(api_key="")
        llm.api_key = ""
        assert await llm.check_health() is False


class TestLLMFactory:
    """Tests for the provider registry."""

    def test_openai_registered(self):
        assert "openai" in get_available_providers()

    def test_get_provider(self):
        assert isinstance(get_provider("OpenAI"), OpenAILLM)

    def test_unknown_provider(self):
        with pytest.raises(LLMProviderNotConfiguredError):
            get_provider("nonexistent")

    @pytest.mark.asyncio
    async def test_get_llm_with_key(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        llm = await get_llm()
        assert isinstance(llm, BaseLLM)
        assert llm.provider_name == "openai"

    @pytest.mark.asyncio
    async def test_get_llm_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        with pytest.raises(LLMProviderNotConfiguredError):
            await get_llm()
