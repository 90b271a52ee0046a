"""
Tests for the embedding module (EmbeddingGenerator).
"""

import pytest
from unittest.mock import Mock, patch
from openai import RateLimitError, APITimeoutError, AuthenticationError

from core.embedding import EmbeddingGenerator


def _embedding_response(vector):
    response = Mock()
    response.data = [Mock()]
    response.data[0].embedding = vector
    return response


class TestEmbeddingGenerator:
    """Test suite for EmbeddingGenerator class."""

    @pytest.fixture
    def mock_settings(self):
        with patch("core.embedding.get_embedding_settings") as mock:
            settings = Mock()
            settings.MODEL = "text-embedding-3-small"
            settings.MAX_TOKENS = 8191
            settings.DIM = 4
            settings.BASE_URL = None
            settings.API_KEY.get_secret_value.return_value = "test-key"
            mock.return_value = settings
            yield settings

    @pytest.fixture
    def generator(self, mock_settings):
        with patch("core.embedding.OpenAI"):
            generator = EmbeddingGenerator()
        generator.tokenizer = Mock()
        generator.tokenizer.num_tokens_from_string.return_value = 10
        return generator

    def test_init_reads_settings(self, generator):
        assert generator.model == "text-embedding-3-small"
        assert generator.expected_dim == 4
        assert generator.max_tokens == 8191

    def test_init_passes_base_url(self, mock_settings):
        mock_settings.BASE_URL = "http://localhost:11434/v1"
        with patch("core.embedding.OpenAI") as mock_openai:
            EmbeddingGenerator()

        mock_openai.assert_called_once_with(api_key="test-key", base_url="http://localhost:11434/v1")

    def test_init_validates_dimension(self, mock_settings):
        mock_settings.DIM = 0
        with patch("core.embedding.OpenAI"):
            with pytest.raises(ValueError, match="EMBED_DIM"):
                EmbeddingGenerator()

    def test_init_rejects_empty_api_key(self, mock_settings):
        mock_settings.API_KEY.get_secret_value.return_value = ""
        with patch("core.embedding.OpenAI"):
            with pytest.raises(RuntimeError, match="Failed to initialize OpenAI client"):
                EmbeddingGenerator()

    def test_generate_embedding_validates_empty_text(self, generator):
        with pytest.raises(ValueError, match="Text cannot be empty"):
            generator.generate_embedding("   ")

    def test_generate_embedding_rejects_long_text(self, generator):
        generator.tokenizer.num_tokens_from_string.return_value = 10000

        with pytest.raises(ValueError, match="Text is too long"):
            generator.generate_embedding("a very long text")

    def test_generate_embedding_success(self, generator):
        generator.client.embeddings.create = Mock(return_value=_embedding_response([0.1, 0.2, 0.3, 0.4]))

        result = generator.generate_embedding("reset password")

        assert result == [0.1, 0.2, 0.3, 0.4]
        generator.client.embeddings.create.assert_called_once_with(
            input="reset password", model="text-embedding-3-small"
        )

    def test_generate_embedding_dimension_mismatch(self, generator):
        generator.client.embeddings.create = Mock(return_value=_embedding_response([0.1, 0.2]))

        with pytest.raises(ValueError, match="dimension mismatch"):
            generator.generate_embedding("reset password")

    def test_generate_embedding_retries_rate_limit(self, generator):
        rate_limit = RateLimitError("slow down", response=Mock(status_code=429), body=None)
        generator.client.embeddings.create = Mock(
            side_effect=[rate_limit, _embedding_response([0.0, 0.0, 0.0, 1.0])]
        )

        with patch("core.embedding.time.sleep") as mock_sleep:
            result = generator.generate_embedding("reset password")

        assert result == [0.0, 0.0, 0.0, 1.0]
        mock_sleep.assert_called_once_with(1)

    def test_generate_embedding_gives_up_after_timeouts(self, generator):
        generator.client.embeddings.create = Mock(side_effect=APITimeoutError(request=Mock()))

        with patch("core.embedding.time.sleep"):
            with pytest.raises(RuntimeError, match="API timeout"):
                generator.generate_embedding("reset password")

        assert generator.client.embeddings.create.call_count == generator.max_retries

    def test_generate_embedding_auth_error_not_retried(self, generator):
        auth_error = AuthenticationError("bad key", response=Mock(status_code=401), body=None)
        generator.client.embeddings.create = Mock(side_effect=auth_error)

        with pytest.raises(RuntimeError, match="authentication failed"):
            generator.generate_embedding("reset password")

        assert generator.client.embeddings.create.call_count == 1
