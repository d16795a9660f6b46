"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from policylens.core.config import Settings, settings
from policylens.core.errors import CollaboratorUnavailableError
from policylens.main import create_application
from policylens.services.embedding_cache import EmbeddingCache
from policylens.services.policy_coordinator import PolicyCoordinator
from tests.fakes.fake_providers import FakeCompletionProvider, FakeEmbeddingProvider

BODY = "המבוטח זכאי לכיסוי בהתאם לתנאי הפוליסה ובכפוף לחריגים. " * 6


def _document(policy_id, text=None):
    return {"id": policy_id, "name": f"פוליסה {policy_id}", "text": text or f"פרק א: השתלות\n{BODY}"}


def _coordinator(responder=None) -> PolicyCoordinator:
    config = Settings(
        extraction_task_delay=0,
        extraction_batch_delay=0,
        extraction_retry_delay=0.01,
        llm_request_timeout=5.0,
        comparison_timeout=30.0,
        embedding_cache_path="",
    )
    return PolicyCoordinator(
        config=config,
        completion_provider=FakeCompletionProvider(responder or (lambda prompt, max_tokens: "1,000,000 ₪")),
        embedding_provider=FakeEmbeddingProvider(),
        cache=EmbeddingCache(cache_path=None),
        token_counter=len,
    )


@pytest.fixture
def client():
    with TestClient(create_application(_coordinator())) as test_client:
        yield test_client


# ============================================================================
# Service endpoints
# ============================================================================


class TestServiceEndpoints:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["details"]["extraction_worker"] is True

    def test_not_started(self):
        client = TestClient(create_application(_coordinator()))

        assert client.get("/health").json()["status"] == "unhealthy"
        assert client.post("/chapters/extract", json={"text": "טקסט"}).status_code == 503


# ============================================================================
# Policy endpoints
# ============================================================================


class TestChapterExtraction:
    def test_extract(self, client):
        text = f"פרק א: השתלות\n{BODY}\nפרק ב: תרופות\n{BODY}"

        data = client.post("/chapters/extract", json={"text": text}).json()

        assert data["chapter_count"] == 2
        assert [c["title"] for c in data["chapters"]] == ["פרק א: השתלות", "פרק ב: תרופות"]

    def test_extract_layered(self, client):
        text = "רובד בסיס\nפרק א: השתלות\nכיסוי מלא"

        data = client.post("/chapters/extract", json={"text": text, "layered": True}).json()

        layer = next(c for c in data["chapters"] if c["title"] == "רובד בסיס")
        assert [c["title"] for c in layer["sub_chapters"]] == ["פרק א: השתלות"]


class TestCompare:
    def test_compare(self, client):
        response = client.post("/policies/compare", json={"policy_a": _document("a"), "policy_b": _document("b")})

        assert response.status_code == 200
        data = response.json()
        comparison = data["comparison"]
        assert comparison["policyAId"] == "a"
        chapter = comparison["chapterComparisons"]["פרק א: השתלות"]
        assert chapter["coverageComparisons"]["transplant-max-amount"]["betterPolicy"] == "equal"
        assert comparison["significantDifferences"] == []
        assert set(data["analytics"]) == {"policy_a", "policy_b", "total"}

    def test_empty_policy_text_rejected(self, client):
        response = client.post(
            "/policies/compare", json={"policy_a": _document("a", "   "), "policy_b": _document("b")}
        )

        assert response.status_code == 422

    def test_unavailable_collaborator_is_503(self):
        coordinator = _coordinator(lambda prompt, max_tokens: CollaboratorUnavailableError("completion service"))

        with TestClient(create_application(coordinator)) as client:
            response = client.post("/policies/compare", json={"policy_a": _document("a"), "policy_b": _document("b")})

        assert response.status_code == 503


class TestAsk:
    def test_ask(self, client):
        response = client.post("/policies/ask", json={"policies": [_document("a")], "question": "מה הכיסוי להשתלה?"})

        assert response.status_code == 200
        data = response.json()
        assert data["answer"] == "1,000,000 ₪"
        assert data["sources"][0]["chapter_title"] == "פרק א: השתלות"
        assert data["relevant_policies"] == ["פוליסה a"]

    def test_empty_question_rejected(self, client):
        response = client.post("/policies/ask", json={"policies": [_document("a")], "question": " "})

        assert response.status_code == 422


class TestConsolidate:
    def test_consolidate(self, client):
        documents = [
            _document("a", "רובד בסיס\nפרק א: השתלות\nכיסוי מלא"),
            _document("b", "פרק ג: השתלות\nכיסוי חלקי"),
        ]

        data = client.post("/policies/consolidate", json={"policies": documents}).json()

        group = next(c for c in data["chapters"] if c["title"] == "פרק א: השתלות")
        assert group["contents"]["a"]["layer"] == "רובד בסיס"
        assert group["contents"]["b"]["content"] == "כיסוי חלקי"

    def test_single_policy_rejected(self, client):
        response = client.post("/policies/consolidate", json={"policies": [_document("a")]})

        assert response.status_code == 422


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:
    @pytest.fixture(autouse=True)
    def bearer_token(self, monkeypatch):
        monkeypatch.setattr(settings, "bearer_token", "secret")

    def test_missing_token(self, client):
        assert client.post("/chapters/extract", json={"text": "טקסט"}).status_code == 401

    def test_invalid_token(self, client):
        response = client.post(
            "/chapters/extract", json={"text": "טקסט"}, headers={"Authorization": "Bearer wrong"}
        )

        assert response.status_code == 401

    def test_valid_token(self, client):
        response = client.post(
            "/chapters/extract", json={"text": "טקסט"}, headers={"Authorization": "Bearer secret"}
        )

        assert response.status_code == 200

    def test_health_is_open(self, client):
        assert client.get("/health").status_code == 200
