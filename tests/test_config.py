"""Tests for juris.config."""
import pytest

from juris.config import EmbeddingBackend, Settings
from juris.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("OPENAI_API_KEY", "EMBEDDING_OPENAI_API_KEY", "EMBEDDING_ENABLED", "EMBEDDING_BACKEND", "DB_URL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_need_no_credentials():
    config = Settings()
    config.check_required()
    assert config.embeddings.enabled is False
    assert config.scraper.delay_between_requests == 2.0
    assert config.embeddings.dim == 1536


def test_enabled_openai_embeddings_require_key(monkeypatch):
    monkeypatch.setenv("EMBEDDING_ENABLED", "true")
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        Settings().check_required()


@pytest.mark.parametrize("name", ["OPENAI_API_KEY", "EMBEDDING_OPENAI_API_KEY"])
def test_key_accepted_under_either_name(monkeypatch, name):
    monkeypatch.setenv("EMBEDDING_ENABLED", "true")
    monkeypatch.setenv(name, "sk-secret")
    config = Settings()
    config.check_required()
    assert config.embeddings.openai_api_key.get_secret_value() == "sk-secret"


def test_local_backend_needs_no_key(monkeypatch):
    monkeypatch.setenv("EMBEDDING_ENABLED", "true")
    monkeypatch.setenv("EMBEDDING_BACKEND", "sentence-transformers")
    config = Settings()
    config.check_required()
    assert config.embeddings.backend is EmbeddingBackend.SENTENCE_TRANSFORMERS


def test_empty_database_url_is_reported(monkeypatch):
    monkeypatch.setenv("DB_URL", " ")
    with pytest.raises(ConfigurationError, match="DB_URL"):
        Settings().check_required()


def test_describe_hides_secrets(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    monkeypatch.setenv("DB_URL", "postgresql+asyncpg://user:pw@db.internal:5432/juris")
    described = Settings().describe()

    assert described["openai_api_key"] == "set"
    assert described["database"] == "db.internal:5432/juris"
    assert not any("sk-secret" in value or "pw" in value for value in described.values())


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("SCRAPER_MAX_RECORDS", "0")
    with pytest.raises(ValueError):
        Settings()
