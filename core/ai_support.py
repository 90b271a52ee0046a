"""
AI support chat.

RouterAgent decides whether a message can be answered from the knowledge
base (SUPPORT_AGENT) or needs a human (TICKET_AGENT). AISupportService
answers with retrieved knowledge base context and decides whether a ticket
should be opened.
"""

from openai import (
    AsyncOpenAI,
    APIError,
    APITimeoutError,
    RateLimitError,
    AuthenticationError,
)
from typing import Any, Dict, List, Optional
from core.config import get_chat_settings, get_helpdesk_settings
from core.tokenizer import Tokenizer
import asyncio
import json
import logging

logger = logging.getLogger(__name__)

SUPPORT_AGENT = "SUPPORT_AGENT"
TICKET_AGENT = "TICKET_AGENT"
AGENTS = (SUPPORT_AGENT, TICKET_AGENT)

FALLBACK_RESPONSE = "I apologize, but I was unable to generate a response."

ROUTER_SYSTEM_PROMPT = """You are a router agent responsible for analyzing customer messages and deciding who should handle them.
Available agents:
1. SUPPORT_AGENT - Questions that can be answered from help articles: how-tos, product information, troubleshooting steps
2. TICKET_AGENT - Issues that need a human: account-specific problems, outages, bug reports, billing disputes, complaints

Respond only with JSON: {"agent": "AGENT_NAME", "reason": "brief explanation"}"""

SUPPORT_SYSTEM_PROMPT = """You are a helpful customer support AI assistant.
Your goal is to help users by:
1. Answering their questions using the knowledge base
2. Pointing them to relevant articles
3. Suggesting a support ticket when the issue needs a human
Be friendly and professional. If the knowledge base does not cover the question, say so instead of guessing."""

TICKET_DECISION_PROMPT = (
    "Analyze if this customer message requires creating a support ticket. "
    "Return true if the issue needs human support, false if it can be handled by AI or documentation."
)


class ChatCompletionClient:
    """
    Thin async wrapper around chat completions with retry and backoff.

    Rate limits, timeouts and 5xx responses are retried with exponential
    backoff; authentication and other client errors are not.
    """

    max_retries = 3
    retry_delay = 1  # seconds

    def __init__(self, model: Optional[str] = None):
        try:
            settings = get_chat_settings()

            if not settings.MODEL:
                raise ValueError("CHAT_MODEL is not configured")
            if not settings.COMPLETION_TOKENS or settings.COMPLETION_TOKENS <= 0:
                raise ValueError("CHAT_COMPLETION_TOKENS must be a positive integer")

            self.model = model or settings.MODEL
            self.temperature = settings.TEMPERATURE
            self.completion_tokens = settings.COMPLETION_TOKENS

            try:
                api_key = settings.API_KEY.get_secret_value()
                if not api_key:
                    raise ValueError("CHAT_API_KEY is empty")

                client_kwargs = {"api_key": api_key}
                if settings.BASE_URL:
                    client_kwargs["base_url"] = settings.BASE_URL
                self.client = AsyncOpenAI(**client_kwargs)
            except Exception as e:
                raise RuntimeError(f"Failed to initialize OpenAI chat client: {str(e)}") from e

        except Exception as e:
            logger.error(f"Failed to initialize ChatCompletionClient: {str(e)}")
            raise

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Run a chat completion and return the message text ("" if empty).

        Raises:
            RuntimeError: If the API keeps failing or rejects the request
        """
        for attempt in range(self.max_retries):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or self.completion_tokens,
                )

                if not response or not getattr(response, "choices", None):
                    raise ValueError("Invalid response structure: missing 'choices'")

                content = response.choices[0].message.content
                return (content or "").strip()

            except AuthenticationError as e:
                logger.error(f"Authentication failed: {str(e)}")
                raise RuntimeError("OpenAI authentication failed. Check CHAT_API_KEY") from e

            except (RateLimitError, APITimeoutError) as e:
                reason = "Rate limit hit" if isinstance(e, RateLimitError) else "API timeout"
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"{reason} (attempt {attempt + 1}/{self.max_retries}), retrying in {wait_time}s"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise RuntimeError(f"{reason} after {self.max_retries} retries") from e

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code and 500 <= status_code < 600 and attempt < self.max_retries - 1:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Server error {status_code}, retrying in {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"API error: {str(e)}")
                raise RuntimeError(f"OpenAI API error: {str(e)}") from e

            except ValueError as e:
                logger.error(f"Invalid completion response: {str(e)}")
                raise RuntimeError(f"Invalid completion response: {str(e)}") from e

        raise RuntimeError(f"Chat completion failed after {self.max_retries} attempts")


class RouterAgent:
    """
    Route a customer message to SUPPORT_AGENT or TICKET_AGENT.

    Never raises for model problems: anything unexpected routes to
    SUPPORT_AGENT with the reason explaining why.
    """

    def __init__(self, chat_client: Optional[ChatCompletionClient] = None):
        self.chat_client = chat_client or ChatCompletionClient(model=get_chat_settings().ROUTER_MODEL)

    async def route(self, message: str) -> Dict[str, str]:
        if not message or not message.strip():
            return {"agent": SUPPORT_AGENT, "reason": "No user message found, defaulting to support agent"}

        try:
            reply = await self.chat_client.complete(
                [
                    {"role": "system", "content": ROUTER_SYSTEM_PROMPT},
                    {"role": "user", "content": message.strip()},
                ],
                temperature=0,
                max_tokens=200,
            )
        except RuntimeError as e:
            logger.warning(f"Router call failed, defaulting to support agent: {e}")
            return {"agent": SUPPORT_AGENT, "reason": "Router unavailable, defaulting to support agent"}

        try:
            decision = json.loads(reply)
        except json.JSONDecodeError:
            logger.warning(f"Router returned invalid JSON: {reply[:100]}")
            return {"agent": SUPPORT_AGENT, "reason": "Invalid router response, defaulting to support agent"}

        agent = decision.get("agent") if isinstance(decision, dict) else None
        if agent not in AGENTS:
            return {"agent": SUPPORT_AGENT, "reason": f"Unknown agent '{agent}', defaulting to support agent"}

        logger.info(f"Routed message to {agent}")
        return {"agent": agent, "reason": str(decision.get("reason", ""))}


class AISupportService:
    """
    Answer customer questions from the knowledge base.

    Args:
        embeddings_service: EmbeddingsService for semantic retrieval
        article_client: ArticleClient for the full-text fallback
        chat_client: ChatCompletionClient (built from CHAT_* settings when None)
    """

    def __init__(self, embeddings_service, article_client, chat_client: Optional[ChatCompletionClient] = None):
        self.embeddings_service = embeddings_service
        self.article_client = article_client
        self.chat_client = chat_client or ChatCompletionClient()
        self.chat_settings = get_chat_settings()
        self.settings = get_helpdesk_settings()
        self.tokenizer = Tokenizer()
        self.system_prompt = SUPPORT_SYSTEM_PROMPT
        logger.info(f"AISupportService ready (model={self.chat_client.model})")

    def _semantic_context(self, message: str) -> List[Dict[str, Any]]:
        results = self.embeddings_service.search_similar_content(
            message,
            threshold=self.settings.CHAT_MATCH_THRESHOLD,
            limit=self.settings.CHAT_MATCH_COUNT,
        )
        return [{"title": r.title, "content": r.content, "url": r.url} for r in results]

    def _fulltext_context(self, message: str) -> List[Dict[str, Any]]:
        hits, _ = self.article_client.search_articles(query=message, limit=self.settings.CHAT_MATCH_COUNT)
        prefix = self.settings.ARTICLE_URL_PREFIX.rstrip("/")
        return [
            {"title": h.article.title, "content": h.article.content, "url": f"{prefix}/{h.article.slug}"}
            for h in hits
        ]

    async def retrieve_context(self, message: str) -> List[Dict[str, Any]]:
        """
        Retrieve articles for a message: semantic search first, full-text
        search when semantic search fails.
        """
        try:
            return await asyncio.to_thread(self._semantic_context, message)
        except (RuntimeError, ConnectionError, ValueError) as e:
            logger.warning(f"Semantic search failed, degrading to full-text search: {e}")

        try:
            return await asyncio.to_thread(self._fulltext_context, message)
        except (ConnectionError, ValueError) as e:
            logger.error(f"Full-text fallback failed, answering without context: {e}")
            return []

    def build_context(self, documents: List[Dict[str, Any]]) -> str:
        context = "\n\n".join(f"Relevant article: {d['title']}\n{d['content']}" for d in documents)
        return self.tokenizer.truncate(context, self.chat_settings.MAX_CONTEXT_TOKENS)

    async def generate_response(
        self, message: str, history: Optional[List[Dict[str, str]]] = None
    ) -> Dict[str, Any]:
        """
        Generate an answer to a customer message.

        Returns:
            {"content": str, "sources": [{"title", "url"}]}

        Raises:
            ValueError: If the message is empty
            RuntimeError: If the chat model fails
        """
        if not message or not message.strip():
            raise ValueError("Message cannot be empty")

        message = message.strip()
        documents = await self.retrieve_context(message)

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "system", "content": f"Knowledge base context:\n{self.build_context(documents)}"},
        ]
        messages += [{"role": m["role"], "content": m["content"]} for m in history or []]
        messages.append({"role": "user", "content": message})

        content = await self.chat_client.complete(messages)
        sources = [{"title": d["title"], "url": d["url"]} for d in documents if d.get("url")]

        logger.info(f"Generated chat response ({len(content)} chars, {len(sources)} sources)")
        return {"content": content or FALLBACK_RESPONSE, "sources": sources}

    async def should_create_ticket(self, message: str) -> bool:
        if not message or not message.strip():
            return False
        reply = await self.chat_client.complete(
            [
                {"role": "system", "content": TICKET_DECISION_PROMPT},
                {"role": "user", "content": message.strip()},
            ],
            temperature=0,
            max_tokens=50,
        )
        return "true" in reply.lower()
