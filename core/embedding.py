from openai import OpenAI, OpenAIError, APIError, APITimeoutError, RateLimitError, AuthenticationError
from typing import List
from core.config import get_embedding_settings
from core.tokenizer import Tokenizer
import time
import logging

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """
    Generate vector embeddings with the OpenAI embeddings API.

    The model and its dimension come from EMBED_* settings
    (text-embedding-3-small, 1536 dimensions by default).
    """

    max_retries = 3
    retry_delay = 1  # seconds

    def __init__(self):
        try:
            settings = get_embedding_settings()

            if not settings.MODEL:
                raise ValueError("EMBED_MODEL is not configured")
            if not settings.MAX_TOKENS or settings.MAX_TOKENS <= 0:
                raise ValueError("EMBED_MAX_TOKENS must be a positive integer")
            if not settings.DIM or settings.DIM <= 0:
                raise ValueError("EMBED_DIM must be a positive integer")

            self.model = settings.MODEL
            self.max_tokens = settings.MAX_TOKENS
            self.expected_dim = settings.DIM
            self.tokenizer = Tokenizer()

            try:
                api_key = settings.API_KEY.get_secret_value()
                if not api_key:
                    raise ValueError("EMBED_API_KEY is empty")

                client_kwargs = {"api_key": api_key}
                if settings.BASE_URL:
                    client_kwargs["base_url"] = settings.BASE_URL
                self.client = OpenAI(**client_kwargs)
            except Exception as e:
                raise RuntimeError(f"Failed to initialize OpenAI client: {str(e)}") from e

            logger.info(
                f"EmbeddingGenerator ready (model={self.model}, dim={self.expected_dim})"
            )

        except Exception as e:
            logger.error(f"Failed to initialize EmbeddingGenerator: {str(e)}")
            raise

    def _backoff(self, attempt: int, reason: str) -> None:
        wait_time = self.retry_delay * (2 ** attempt)
        logger.warning(
            f"{reason}, retrying in {wait_time}s... (attempt {attempt + 1}/{self.max_retries})"
        )
        time.sleep(wait_time)

    def generate_embedding(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty.")

        try:
            token_count = self.tokenizer.num_tokens_from_string(text)
        except Exception as e:
            logger.error(f"Token counting failed: {str(e)}")
            raise RuntimeError(f"Failed to count tokens: {str(e)}") from e

        if token_count > self.max_tokens:
            raise ValueError(
                f"Text is too long. Max tokens allowed: {self.max_tokens} "
                f"but text had {token_count} tokens."
            )

        for attempt in range(self.max_retries):
            try:
                response = self.client.embeddings.create(input=text, model=self.model)

                if not response or not hasattr(response, "data"):
                    raise ValueError("Invalid response structure: missing 'data' attribute")

                if not response.data or len(response.data) == 0:
                    raise ValueError("Response data is empty")

                embedding = response.data[0].embedding

                if not embedding:
                    raise ValueError("Embedding list is empty")

                if not isinstance(embedding, list):
                    raise ValueError(f"Expected embedding to be a list, got {type(embedding)}")

                if not all(isinstance(x, (int, float)) for x in embedding):
                    raise ValueError("Embedding contains non-numeric values")

                if len(embedding) != self.expected_dim:
                    raise ValueError(
                        f"Embedding dimension mismatch. Expected {self.expected_dim}, "
                        f"got {len(embedding)}"
                    )

                return embedding

            except AuthenticationError as e:
                logger.error(f"Authentication failed: {str(e)}")
                raise RuntimeError(f"OpenAI authentication failed: {str(e)}") from e

            except RateLimitError as e:
                if attempt < self.max_retries - 1:
                    self._backoff(attempt, "Rate limit hit")
                    continue
                logger.error(f"Rate limit exceeded after {self.max_retries} attempts")
                raise RuntimeError(f"Rate limit exceeded: {str(e)}") from e

            except APITimeoutError as e:
                if attempt < self.max_retries - 1:
                    self._backoff(attempt, "API timeout")
                    continue
                logger.error(f"API timeout after {self.max_retries} attempts")
                raise RuntimeError(f"API timeout: {str(e)}") from e

            except APIError as e:
                # Server errors (5xx) are retried
                status_code = getattr(e, "status_code", None)
                if status_code and 500 <= status_code < 600 and attempt < self.max_retries - 1:
                    self._backoff(attempt, f"Server error {status_code}")
                    continue
                logger.error(f"API error: {str(e)}")
                raise RuntimeError(f"OpenAI API error: {str(e)}") from e

            except OpenAIError as e:
                logger.error(f"OpenAI client error: {str(e)}")
                raise RuntimeError(f"OpenAI client error: {str(e)}") from e

            except ValueError as e:
                logger.error(f"Validation error: {str(e)}")
                raise

            except Exception as e:
                logger.error(f"Unexpected error generating embedding: {str(e)}")
                raise RuntimeError(f"Unexpected error: {str(e)}") from e

        raise RuntimeError(f"Failed to generate embedding after {self.max_retries} attempts")
