"""
Autouse fixtures shared by the unit suite.

No unit test may reach a real MongoDB, LLM or webhook: the driver class is
patched out, credentials are replaced with dummies and both workflow
webhooks are blanked. The in-memory fakes in tests/helpers are importable
as ``helpers.fakes``.
"""

import sys
from pathlib import Path

import pytest
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from leadgen.common.config import Config  # noqa: E402
from leadgen.common.repositories import reset_repositories  # noqa: E402
from leadgen.common.repositories.mongo_repository import MongoConnection  # noqa: E402


@pytest.fixture(autouse=True)
def mock_mongodb():
    """Patch MongoClient; an unpatched client would wait on server selection."""
    with patch("leadgen.common.repositories.mongo_repository.MongoClient") as client_cls:
        collection = MagicMock()
        collection.find_one.return_value = None
        collection.find.return_value = []

        database = MagicMock()
        database.__getitem__.return_value = collection
        client = MagicMock()
        client.__getitem__.return_value = database

        client_cls.return_value = client
        yield client_cls

    MongoConnection._client = None
    MongoConnection._db = None
    reset_repositories()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Dummy credentials and no webhooks, whatever the developer's .env holds."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setenv("UNIPILE_API_KEY", "unipile-test-mock-key")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setattr(Config, "UNIPILE_API_KEY", "unipile-test-mock-key")
    monkeypatch.setattr(Config, "N8N_WEBHOOK_URL", "")
    monkeypatch.setattr(Config, "COMPANY_ENRICHMENT_WEBHOOK_URL", "")
