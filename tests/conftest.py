"""Pytest configuration and fixtures."""

import os

# Must run before policylens is imported
os.environ.setdefault("COPILOT_ACCESS_TOKEN", "test-copilot-token")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("BEARER_TOKEN", "")
os.environ.setdefault("EMBEDDING_CACHE_PATH", "")

import pytest

from tests.fakes.fake_providers import FakeCompletionProvider, FakeEmbeddingProvider


@pytest.fixture
def completion_provider():
    """Completion collaborator answering every prompt with 'לא מפורט'."""
    return FakeCompletionProvider()


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def chapter_body():
    """About 300 characters of chapter text without headers."""
    return "המבוטח זכאי לכיסוי בהתאם לתנאי הפוליסה ובכפוף לחריגים. " * 6
