"""
Tests for the HTTP API

Drives the dashboard routes through TestClient with the provider and
GitLab client replaced by fakes.
"""

from fastapi.testclient import TestClient

from review_dashboard.errors import UpstreamError


class TestServiceEndpoints:
    """Root, health and readiness."""

    def test_root_endpoint(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "AI Review Dashboard"
        assert "version" in data

    def test_health_check(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness_check(self, client: TestClient):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "sqlite"

    def test_unknown_route(self, client: TestClient):
        assert client.get("/api/nothing-here").status_code == 404


class TestGitLabConfig:
    """GitLab credentials endpoints."""

    def test_defaults(self, client: TestClient):
        response = client.get("/api/gitlab/config")

        assert response.json() == {"gitlab_url": "", "has_token": False}

    def test_update_verifies_and_stores(self, client: TestClient):
        response = client.post(
            "/api/gitlab/config",
            json={"gitlab_url": "https://gitlab.example.com/", "gitlab_token": "glpat-abc"},
        )

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "reviewer"

        config = client.get("/api/gitlab/config").json()
        assert config == {"gitlab_url": "https://gitlab.example.com", "has_token": True}

    def test_invalid_credentials(self, client: TestClient, fake_gitlab):
        fake_gitlab.user_error = UpstreamError("401 Unauthorized", upstream_status=401, service="GitLab")

        response = client.post(
            "/api/gitlab/config",
            json={"gitlab_url": "https://gitlab.example.com", "gitlab_token": "bad"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert client.get("/api/gitlab/config").json()["has_token"] is False

    def test_missing_fields(self, client: TestClient):
        response = client.post("/api/gitlab/config", json={"gitlab_url": "https://gitlab.example.com"})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestProjects:
    """Project discovery, tracking and sync."""

    def test_list_requires_configuration(self, client: TestClient):
        response = client.get("/api/gitlab/projects")

        assert response.status_code == 400
        assert response.json() == {"detail": "GitLab not configured", "code": "CONFIGURATION_ERROR"}

    def test_list_projects(self, configured_client: TestClient):
        response = configured_client.get("/api/gitlab/projects", params={"search": "back"})

        assert response.status_code == 200
        data = response.json()
        assert data["projects"][0]["id"] == 100
        assert data["pagination"]["total"] == 1

    def test_tracked_projects_hide_token(self, configured_client: TestClient):
        projects = configured_client.get("/api/gitlab/tracked-projects").json()["projects"]

        assert len(projects) == 1
        assert projects[0]["gitlab_project_id"] == 100
        assert projects[0]["namespace"] == "acme"
        assert projects[0]["ai_enabled"] is True
        assert projects[0]["has_webhook_token"] is True
        assert "webhook_token" not in projects[0]

    def test_track_twice_keeps_one_row(self, configured_client: TestClient):
        response = configured_client.post("/api/gitlab/projects/100/track")

        assert response.status_code == 200
        assert len(configured_client.get("/api/gitlab/tracked-projects").json()["projects"]) == 1

    def test_track_unknown_gitlab_project(self, configured_client: TestClient):
        response = configured_client.post("/api/gitlab/projects/999/track")

        assert response.status_code == 502
        assert response.json() == {"detail": "GitLab request failed", "code": "UPSTREAM_ERROR"}

    def test_sync_unknown_project(self, configured_client: TestClient):
        response = configured_client.post("/api/gitlab/projects/999/sync")

        assert response.status_code == 404

    def test_sync_all_isolates_failures(self, configured_client: TestClient, fake_gitlab, project_payload):
        fake_gitlab.projects[200] = project_payload(200, "frontend")
        fake_gitlab.merge_requests_error[200] = UpstreamError("Forbidden", upstream_status=403, service="GitLab")
        configured_client.post("/api/gitlab/projects/200/track")

        response = configured_client.post("/api/gitlab/sync-all")

        assert response.status_code == 200
        results = {r["project_name"]: r for r in response.json()["results"]}
        assert results["backend"]["status"] == "success"
        assert results["backend"]["synced_count"] == 1
        assert results["frontend"]["status"] == "error"
        assert "403" in results["frontend"]["error"]

    def test_sync_all_without_projects(self, client: TestClient):
        response = client.post("/api/gitlab/sync-all")

        assert response.json() == {"message": "No projects to sync", "results": []}

    def test_update_ai_config(self, configured_client: TestClient):
        project_id = configured_client.get("/api/gitlab/tracked-projects").json()["projects"][0]["id"]

        response = configured_client.put(
            f"/api/gitlab/projects/{project_id}/ai-config",
            json={"ai_provider": "anthropic", "ai_model": "claude-3-5-haiku-latest"},
        )

        assert response.status_code == 200
        project = configured_client.get("/api/gitlab/tracked-projects").json()["projects"][0]
        assert project["ai_provider"] == "anthropic"
        assert project["ai_model"] == "claude-3-5-haiku-latest"

    def test_update_ai_config_validation(self, configured_client: TestClient):
        response = configured_client.put(
            "/api/gitlab/projects/1/ai-config", json={"ai_provider": "mistral", "ai_model": "large"}
        )
        assert response.status_code == 422

        response = configured_client.put(
            "/api/gitlab/projects/999/ai-config", json={"ai_provider": "openai", "ai_model": "gpt-4"}
        )
        assert response.status_code == 404

    def test_delete_project_cascades(self, configured_client: TestClient, mr_id: int):
        configured_client.post(f"/api/merge-requests/{mr_id}/review", json={})
        project_id = configured_client.get("/api/gitlab/tracked-projects").json()["projects"][0]["id"]

        response = configured_client.delete(f"/api/gitlab/projects/{project_id}")

        assert response.status_code == 200
        assert configured_client.get("/api/gitlab/tracked-projects").json()["projects"] == []
        assert configured_client.get(f"/api/merge-requests/{mr_id}").status_code == 404
        stats = configured_client.get("/api/merge-requests/stats/summary").json()
        assert stats["merge_requests"]["total_mrs"] == 0
        assert stats["reviews"]["total_reviews"] == 0

        assert configured_client.delete(f"/api/gitlab/projects/{project_id}").status_code == 404


class TestAIConfig:
    """Provider keys and review limits."""

    def test_defaults(self, client: TestClient):
        config = client.get("/api/ai/config").json()

        assert config == {
            "openai_api_key": "",
            "anthropic_api_key": "",
            "review_auto_post": "false",
            "review_min_score": "7",
            "review_max_files": "20",
            "review_max_lines": "1000",
        }

    def test_keys_are_masked(self, client: TestClient):
        client.post("/api/ai/config", json={"openai_api_key": "sk-secret"})

        config = client.get("/api/ai/config").json()

        assert config["openai_api_key"] == "***"
        assert config["anthropic_api_key"] == ""

    def test_mask_keeps_stored_key(self, configured_client: TestClient, mr_id: int, fake_provider):
        configured_client.post("/api/ai/config", json={"openai_api_key": "***", "review_max_files": 5})

        configured_client.post(f"/api/merge-requests/{mr_id}/review")

        assert fake_provider.calls[0]["api_key"] == "sk-test"
        assert configured_client.get("/api/ai/config").json()["review_max_files"] == "5"

    def test_partial_update(self, client: TestClient):
        client.post("/api/ai/config", json={"openai_api_key": "sk-secret"})

        client.post("/api/ai/config", json={"review_min_score": 9, "review_auto_post": True})

        config = client.get("/api/ai/config").json()
        assert config["review_min_score"] == "9"
        assert config["review_auto_post"] == "true"
        assert config["openai_api_key"] == "***"

    def test_invalid_values(self, client: TestClient):
        response = client.post("/api/ai/config", json={"review_max_lines": 0})

        assert response.status_code == 422

    def test_connection_test_success(self, client: TestClient, fake_provider):
        response = client.post("/api/ai/test", json={"provider": "openai", "api_key": "sk-new"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert fake_provider.calls[0]["api_key"] == "sk-new"
        assert fake_provider.calls[0]["model"] == "gpt-4o-mini"

    def test_connection_test_failure(self, client: TestClient, fake_provider):
        fake_provider.error = UpstreamError("Incorrect API key provided", upstream_status=401, service="OpenAI")

        response = client.post("/api/ai/test", json={"provider": "openai", "api_key": "sk-bad"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "OpenAI API connection failed: Incorrect API key provided",
        }

    def test_models(self, client: TestClient):
        models = client.get("/api/ai/models").json()

        assert set(models) == {"openai", "anthropic"}

    def test_templates(self, client: TestClient):
        templates = client.get("/api/ai/templates").json()["templates"]

        assert [t["id"] for t in templates] == ["general", "security", "performance", "testing"]
        assert all(t["prompt"] for t in templates)


class TestMergeRequests:
    """Listing, detail and statistics."""

    def test_list(self, configured_client: TestClient):
        data = configured_client.get("/api/merge-requests").json()

        assert len(data["merge_requests"]) == 1
        mr = data["merge_requests"][0]
        assert mr["gitlab_mr_iid"] == 7
        assert mr["project_name"] == "backend"
        assert data["pagination"] == {"page": 1, "per_page": 20}

    def test_list_filters(self, configured_client: TestClient):
        assert configured_client.get("/api/merge-requests", params={"state": "merged"}).json()["merge_requests"] == []
        assert configured_client.get("/api/merge-requests", params={"project_id": 999}).json()["merge_requests"] == []
        assert configured_client.get("/api/merge-requests", params={"page": 2}).json()["merge_requests"] == []

    def test_list_invalid_state(self, client: TestClient):
        assert client.get("/api/merge-requests", params={"state": "draft"}).status_code == 422

    def test_detail_unknown(self, client: TestClient):
        response = client.get("/api/merge-requests/999")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_stats_empty(self, client: TestClient):
        stats = client.get("/api/merge-requests/stats/summary").json()

        assert stats["merge_requests"]["total_mrs"] == 0
        assert stats["reviews"]["total_reviews"] == 0
        assert stats["reviews"]["avg_score"] is None


class TestReviewTrigger:
    """POST /api/merge-requests/{id}/review and review deletion."""

    def test_trigger_completes(self, configured_client: TestClient, mr_id: int):
        response = configured_client.post(f"/api/merge-requests/{mr_id}/review", json={"review_type": "security"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["message"] == "AI review completed successfully"

        detail = configured_client.get(f"/api/merge-requests/{mr_id}").json()
        assert detail["merge_request"]["id"] == mr_id
        review = detail["reviews"][0]
        assert review["id"] == data["review_id"]
        assert review["review_type"] == "security"
        assert review["score"] == 6
        assert [c["line_number"] for c in review["comments"]] == [4, 12]

    def test_trigger_without_body(self, configured_client: TestClient, mr_id: int):
        response = configured_client.post(f"/api/merge-requests/{mr_id}/review")

        assert response.status_code == 200
        review = configured_client.get(f"/api/merge-requests/{mr_id}").json()["reviews"][0]
        assert review["review_type"] == "general"

    def test_duplicate_and_force(self, configured_client: TestClient, mr_id: int):
        configured_client.post(f"/api/merge-requests/{mr_id}/review", json={"review_type": "general"})

        conflict = configured_client.post(f"/api/merge-requests/{mr_id}/review", json={"review_type": "general"})
        assert conflict.status_code == 409
        assert conflict.json() == {"detail": "Review already exists for this MR and type", "code": "CONFLICT"}

        forced = configured_client.post(
            f"/api/merge-requests/{mr_id}/review", json={"review_type": "general", "force": True}
        )
        assert forced.status_code == 200
        reviews = configured_client.get(f"/api/merge-requests/{mr_id}").json()["reviews"]
        assert len(reviews) == 2
        assert reviews[0]["id"] == forced.json()["review_id"]

    def test_unknown_merge_request(self, configured_client: TestClient):
        response = configured_client.post("/api/merge-requests/999/review", json={})

        assert response.status_code == 404
        assert response.json()["detail"] == "Merge request not found"

    def test_failure_is_reported_as_status(self, configured_client: TestClient, mr_id: int, fake_provider):
        fake_provider.error = UpstreamError("Rate limit exceeded", upstream_status=429, service="OpenAI")

        response = configured_client.post(f"/api/merge-requests/{mr_id}/review", json={})

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        review = configured_client.get(f"/api/merge-requests/{mr_id}").json()["reviews"][0]
        assert review["status"] == "failed"
        assert "429" in review["error_message"]
        assert review["comments"] == []

    def test_stats_after_reviews(self, configured_client: TestClient, mr_id: int, fake_provider):
        configured_client.post(f"/api/merge-requests/{mr_id}/review", json={"review_type": "general"})
        fake_provider.error = UpstreamError("boom", upstream_status=500, service="OpenAI")
        configured_client.post(f"/api/merge-requests/{mr_id}/review", json={"review_type": "testing"})

        stats = configured_client.get("/api/merge-requests/stats/summary").json()

        assert stats["merge_requests"] == {"total_mrs": 1, "open_mrs": 1, "merged_mrs": 0, "closed_mrs": 0}
        assert stats["reviews"]["total_reviews"] == 2
        assert stats["reviews"]["completed_reviews"] == 1
        assert stats["reviews"]["failed_reviews"] == 1
        assert stats["reviews"]["pending_reviews"] == 0
        assert stats["reviews"]["avg_score"] == 6.0

    def test_delete_review(self, configured_client: TestClient, mr_id: int):
        review_id = configured_client.post(f"/api/merge-requests/{mr_id}/review", json={}).json()["review_id"]

        response = configured_client.delete(f"/api/merge-requests/{mr_id}/review/{review_id}")

        assert response.status_code == 200
        detail = configured_client.get(f"/api/merge-requests/{mr_id}").json()
        assert detail["reviews"] == []
        assert detail["merge_request"]["id"] == mr_id

        again = configured_client.delete(f"/api/merge-requests/{mr_id}/review/{review_id}")
        assert again.status_code == 404

    def test_delete_review_of_other_merge_request(self, configured_client: TestClient, mr_id: int):
        review_id = configured_client.post(f"/api/merge-requests/{mr_id}/review", json={}).json()["review_id"]

        response = configured_client.delete(f"/api/merge-requests/{mr_id + 1}/review/{review_id}")

        assert response.status_code == 404
        assert len(configured_client.get(f"/api/merge-requests/{mr_id}").json()["reviews"]) == 1
