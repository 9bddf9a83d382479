import pytest

from paperrank.core.config import DEV_DATABASE_URL, Settings
from paperrank.services.paper_ranking.config import RankingConfig


def test_development_defaults_are_valid():
    settings = Settings(ENVIRONMENT="development", EMBEDDING_PROVIDER="none")
    assert settings.ranking_source_names == ["local", "arxiv", "pubmed", "semantic_scholar"]


def test_source_names_are_normalized():
    settings = Settings(EMBEDDING_PROVIDER="none", RANKING_SOURCES=" ArXiv, ,PubMed ")
    assert settings.ranking_source_names == ["arxiv", "pubmed"]


def test_unknown_embedding_provider_is_rejected():
    with pytest.raises(ValueError):
        Settings(EMBEDDING_PROVIDER="word2vec")


def test_production_requires_database_url_and_no_debug():
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", DEBUG=False, DATABASE_URL=DEV_DATABASE_URL)
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", DEBUG=True, DATABASE_URL="postgresql://db/prod")

    settings = Settings(ENVIRONMENT="production", DEBUG=False, DATABASE_URL="postgresql://db/prod")
    assert settings.DEBUG is False


def test_ranking_config_from_settings_and_source_budget():
    settings = Settings(
        EMBEDDING_PROVIDER="none",
        RANKING_MAX_LIMIT=50,
        RANKING_CACHE_TTL_SECONDS=120,
        RANKING_LOCAL_OWNER_ID="owner-1",
    )
    config = RankingConfig.from_settings(settings)

    assert config.max_limit == 50
    assert config.cache_ttl_seconds == 120
    assert config.local_owner_id == "owner-1"
    assert config.per_source_budget(1) == 10
    assert config.per_source_budget(20) == 40
    assert config.per_source_budget(100) == 50
