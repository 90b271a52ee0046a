"""
Tests for EmbeddingsService.
"""

import pytest
from unittest.mock import Mock, patch
from uuid import uuid4

from core.embeddings_service import EmbeddingsService, article_embedding_text
from core.schemas import ArticleStatus, SearchResult
from tests.factories import make_article


@pytest.fixture
def generator():
    generator = Mock()
    generator.expected_dim = 3
    generator.model = "text-embedding-3-small"
    generator.generate_embedding.return_value = [0.1, 0.2, 0.3]
    return generator


@pytest.fixture
def storage():
    storage = Mock()
    storage.embedding_dim = 3
    storage.match_embeddings.return_value = []
    storage.get_indexed_article_ids.return_value = set()
    return storage


@pytest.fixture
def article_client():
    return Mock()


@pytest.fixture
def service(generator, storage, article_client):
    service = EmbeddingsService(generator, storage, article_client)
    service.settings = Mock(
        SEARCH_MATCH_THRESHOLD=0.5,
        SEARCH_MATCH_COUNT=5,
        ARTICLE_URL_PREFIX="/articles/",
        EMBED_DELAY_SECONDS=0,
    )
    return service


class TestInit:
    def test_dimension_mismatch_rejected(self, generator, storage):
        storage.embedding_dim = 1536

        with pytest.raises(ValueError, match="does not match"):
            EmbeddingsService(generator, storage)


class TestSearchSimilarContent:
    def test_uses_default_threshold_and_limit(self, service, storage):
        result = SearchResult(id=1, title="VPN", content="Install", similarity=0.8)
        storage.match_embeddings.return_value = [result]

        results = service.search_similar_content("  vpn setup  ")

        assert results == [result]
        service.embedding_generator.generate_embedding.assert_called_once_with("vpn setup")
        storage.match_embeddings.assert_called_once_with(
            [0.1, 0.2, 0.3], match_threshold=0.5, match_count=5
        )

    def test_explicit_threshold_and_limit(self, service, storage):
        service.search_similar_content("vpn", threshold=0.9, limit=2)

        storage.match_embeddings.assert_called_once_with(
            [0.1, 0.2, 0.3], match_threshold=0.9, match_count=2
        )

    @pytest.mark.parametrize(
        "query,threshold,limit,message",
        [
            ("", None, None, "Query cannot be empty"),
            ("   ", None, None, "Query cannot be empty"),
            ("vpn", 1.5, None, "threshold"),
            ("vpn", -0.1, None, "threshold"),
            ("vpn", None, 0, "limit"),
            ("vpn", None, 101, "limit"),
        ],
    )
    def test_validation(self, service, query, threshold, limit, message):
        with pytest.raises(ValueError, match=message):
            service.search_similar_content(query, threshold=threshold, limit=limit)

    def test_empty_result_is_not_an_error(self, service):
        assert service.search_similar_content("nothing matches") == []


class TestAddDocument:
    def test_embeds_content_and_stores(self, service, storage):
        storage.insert_document.return_value = 12

        assert service.add_document("VPN", "Install the client", url="/articles/vpn") == 12

        service.embedding_generator.generate_embedding.assert_called_once_with("Install the client")
        document = storage.insert_document.call_args[0][0]
        assert document.title == "VPN"
        assert document.url == "/articles/vpn"

    def test_rejects_empty_title(self, service):
        with pytest.raises(ValueError, match="title"):
            service.add_document(" ", "content")


class TestArticleIndexing:
    def test_embedding_text_includes_excerpt(self):
        article = make_article(title="T", excerpt="E", content="C")

        assert article_embedding_text(article) == "T\n\nE\n\nC"

    def test_index_article_replaces_embedding(self, service, storage):
        article = make_article(slug="reset-password")
        storage.replace_article_document.return_value = 3

        assert service.index_article(article) == 3

        document = storage.replace_article_document.call_args[0][0]
        assert document.article_id == article.id
        assert document.url == "/articles/reset-password"

    def test_remove_article(self, service, storage):
        article_id = uuid4()
        storage.delete_by_article_id.return_value = 1

        assert service.remove_article(article_id) == 1
        storage.delete_by_article_id.assert_called_once_with(article_id)

    def test_reindex_only_missing(self, service, storage, article_client):
        indexed = make_article()
        missing = make_article()
        article_client.list_all_articles.return_value = [indexed, missing]
        storage.get_indexed_article_ids.return_value = {indexed.id}

        stats = service.reindex_articles(only_missing=True)

        assert stats == {"indexed": 1, "skipped": 1, "failed": 0}
        article_client.list_all_articles.assert_called_once_with(status=ArticleStatus.PUBLISHED)
        assert storage.replace_article_document.call_count == 1

    def test_reindex_all_counts_failures(self, service, storage, article_client, generator):
        article_client.list_all_articles.return_value = [make_article(), make_article()]
        generator.generate_embedding.side_effect = [RuntimeError("API down"), [0.1, 0.2, 0.3]]

        stats = service.reindex_articles(only_missing=False)

        assert stats == {"indexed": 1, "skipped": 0, "failed": 1}
        storage.get_indexed_article_ids.assert_not_called()

    def test_reindex_waits_between_articles(self, service, article_client):
        service.settings.EMBED_DELAY_SECONDS = 0.5
        article_client.list_all_articles.return_value = [make_article(), make_article()]

        with patch("core.embeddings_service.time.sleep") as mock_sleep:
            service.reindex_articles(only_missing=False)

        mock_sleep.assert_called_once_with(0.5)

    def test_reindex_waits_after_failed_article(self, service, article_client, generator):
        service.settings.EMBED_DELAY_SECONDS = 0.5
        article_client.list_all_articles.return_value = [make_article(), make_article(), make_article()]
        generator.generate_embedding.side_effect = [RuntimeError("Rate limit"), [0.1, 0.2, 0.3], [0.1, 0.2, 0.3]]

        with patch("core.embeddings_service.time.sleep") as mock_sleep:
            stats = service.reindex_articles(only_missing=False)

        assert stats["failed"] == 1
        assert mock_sleep.call_count == 2

    def test_reindex_requires_article_client(self, generator, storage):
        service = EmbeddingsService(generator, storage)

        with pytest.raises(ValueError, match="article client"):
            service.reindex_articles()


def test_get_stats(service, storage):
    storage.get_count.return_value = 10

    assert service.get_stats() == {
        "num_embeddings": 10,
        "embedding_dimension": 3,
        "model": "text-embedding-3-small",
    }
