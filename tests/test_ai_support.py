"""
Tests for the AI support chat: routing, context retrieval and answers.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from core.ai_support import (
    FALLBACK_RESPONSE,
    SUPPORT_AGENT,
    TICKET_AGENT,
    AISupportService,
    RouterAgent,
)
from core.schemas import SearchResult
from tests.factories import make_article


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def chat_client():
    client = Mock()
    client.model = "gpt-test"
    client.complete = AsyncMock(return_value="Click 'Forgot password' on the login page.")
    return client


@pytest.fixture
def settings():
    with patch("core.ai_support.get_chat_settings") as chat_settings, patch(
        "core.ai_support.get_helpdesk_settings"
    ) as helpdesk_settings, patch("core.ai_support.Tokenizer") as tokenizer:
        chat_settings.return_value = Mock(MAX_CONTEXT_TOKENS=6000, ROUTER_MODEL="gpt-router")
        helpdesk_settings.return_value = Mock(
            CHAT_MATCH_THRESHOLD=0.7, CHAT_MATCH_COUNT=3, ARTICLE_URL_PREFIX="/articles/"
        )
        tokenizer.return_value.truncate.side_effect = lambda text, max_tokens: text
        yield helpdesk_settings.return_value


class TestRouterAgent:
    """Test message routing"""

    def test_routes_to_ticket_agent(self, chat_client):
        chat_client.complete.return_value = '{"agent": "TICKET_AGENT", "reason": "billing dispute"}'
        router = RouterAgent(chat_client)

        decision = run(router.route("I was charged twice"))

        assert decision == {"agent": TICKET_AGENT, "reason": "billing dispute"}
        assert chat_client.complete.call_args[1]["temperature"] == 0

    def test_empty_message(self, chat_client):
        decision = run(RouterAgent(chat_client).route("   "))

        assert decision["agent"] == SUPPORT_AGENT
        chat_client.complete.assert_not_called()

    def test_invalid_json_defaults_to_support(self, chat_client):
        chat_client.complete.return_value = "TICKET_AGENT please"
        decision = run(RouterAgent(chat_client).route("help"))

        assert decision["agent"] == SUPPORT_AGENT
        assert "Invalid router response" in decision["reason"]

    def test_unknown_agent_defaults_to_support(self, chat_client):
        chat_client.complete.return_value = '{"agent": "SALES_AGENT"}'
        decision = run(RouterAgent(chat_client).route("pricing?"))

        assert decision["agent"] == SUPPORT_AGENT

    def test_model_failure_defaults_to_support(self, chat_client):
        chat_client.complete.side_effect = RuntimeError("Rate limit hit after 3 retries")
        decision = run(RouterAgent(chat_client).route("help"))

        assert decision["agent"] == SUPPORT_AGENT


class TestAISupportService:
    """Test answer generation"""

    @pytest.fixture
    def embeddings_service(self):
        service = Mock()
        service.search_similar_content.return_value = [
            SearchResult(
                id=1,
                title="Resetting your password",
                content="Open the login page and click 'Forgot password'.",
                url="/articles/resetting-your-password",
                article_id=None,
                similarity=0.91,
            )
        ]
        return service

    @pytest.fixture
    def article_client(self):
        return Mock()

    def test_answer_with_semantic_context(self, settings, chat_client, embeddings_service, article_client):
        service = AISupportService(embeddings_service, article_client, chat_client)

        result = run(service.generate_response("How do I reset my password?"))

        assert result["content"].startswith("Click")
        assert result["sources"] == [
            {"title": "Resetting your password", "url": "/articles/resetting-your-password"}
        ]
        embeddings_service.search_similar_content.assert_called_once_with(
            "How do I reset my password?", threshold=0.7, limit=3
        )
        messages = chat_client.complete.call_args[0][0]
        assert "Resetting your password" in messages[1]["content"]
        assert messages[-1] == {"role": "user", "content": "How do I reset my password?"}
        article_client.search_articles.assert_not_called()

    def test_history_is_forwarded(self, settings, chat_client, embeddings_service, article_client):
        service = AISupportService(embeddings_service, article_client, chat_client)
        history = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello! How can I help?"},
        ]

        run(service.generate_response("Password help", history))

        messages = chat_client.complete.call_args[0][0]
        assert [m["role"] for m in messages] == ["system", "system", "user", "assistant", "user"]

    def test_falls_back_to_fulltext(self, settings, chat_client, embeddings_service, article_client):
        embeddings_service.search_similar_content.side_effect = RuntimeError("embedding API down")
        article = make_article()
        article_client.search_articles.return_value = ([Mock(article=article)], 1)
        service = AISupportService(embeddings_service, article_client, chat_client)

        result = run(service.generate_response("reset password"))

        assert result["sources"] == [{"title": article.title, "url": f"/articles/{article.slug}"}]

    def test_no_context_when_everything_fails(self, settings, chat_client, embeddings_service, article_client):
        embeddings_service.search_similar_content.side_effect = ConnectionError("db down")
        article_client.search_articles.side_effect = ConnectionError("db down")
        service = AISupportService(embeddings_service, article_client, chat_client)

        result = run(service.generate_response("reset password"))

        assert result["sources"] == []
        chat_client.complete.assert_awaited_once()

    def test_empty_reply_uses_fallback(self, settings, chat_client, embeddings_service, article_client):
        chat_client.complete.return_value = ""
        service = AISupportService(embeddings_service, article_client, chat_client)

        assert run(service.generate_response("hello"))["content"] == FALLBACK_RESPONSE

    def test_empty_message_rejected(self, settings, chat_client, embeddings_service, article_client):
        service = AISupportService(embeddings_service, article_client, chat_client)

        with pytest.raises(ValueError, match="empty"):
            run(service.generate_response("  "))

    def test_should_create_ticket(self, settings, chat_client, embeddings_service, article_client):
        service = AISupportService(embeddings_service, article_client, chat_client)

        chat_client.complete.return_value = "True"
        assert run(service.should_create_ticket("My account was hacked"))

        chat_client.complete.return_value = "false"
        assert not run(service.should_create_ticket("What are your opening hours?"))

        assert not run(service.should_create_ticket(""))
