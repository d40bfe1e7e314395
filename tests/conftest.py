"""
Test Configuration

Pytest configuration and fixtures for the test suite.

Every test gets its own SQLite file. External services are replaced by
in-memory fakes: FakeProvider for the completion providers and
FakeGitLabClient for the GitLab API.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from review_dashboard.config import Settings
from review_dashboard.database import Database, RecordStore, SettingsStore
from review_dashboard.errors import UpstreamError
from review_dashboard.main import create_app
from review_dashboard.models import FileChange, GitLabMergeRequest, GitLabProject, Pagination
from review_dashboard.routes.dependencies import get_gitlab_factory, get_provider_factory
from review_dashboard.services.orchestrator import KeyedLocks, ReviewOrchestrator


REVIEW_RESPONSE = json.dumps({
    "summary": "The change adds input handling but leaves two defects.",
    "score": 6,
    "comments": [
        {
            "file_path": "src/app.py",
            "line_number": 12,
            "severity": "error",
            "title": "Unvalidated input",
            "content": "The name is used without validation.",
            "code_snippet": "name = input()",
            "suggested_fix": "Strip and validate the name.",
        },
        {
            "file_path": "src/app.py",
            "line_number": 4,
            "severity": "warning",
            "title": "Unused import",
            "content": "sys is imported but never used.",
        },
    ],
})


class FakeProvider:
    """Completion provider double that records calls."""

    name = "openai"
    display_name = "OpenAI"
    TEST_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        response: str = REVIEW_RESPONSE,
        error: Optional[Exception] = None,
        delay: float = 0.0
    ):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
    ) -> str:
        self.calls.append({
            "system_instruction": system_instruction,
            "user_prompt": user_prompt,
            "model": model,
            "api_key": api_key,
            "max_tokens": max_tokens,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class FakeGitLabClient:
    """GitLab client double backed by dicts."""

    def __init__(self):
        self.user: Dict[str, Any] = {"id": 1, "username": "reviewer", "name": "Review Bot"}
        self.user_error: Optional[Exception] = None
        self.projects: Dict[int, Dict[str, Any]] = {}
        self.merge_requests: Dict[int, List[Dict[str, Any]]] = {}
        self.merge_requests_error: Dict[int, Exception] = {}
        self.changes: List[FileChange] = []
        self.changes_error: Optional[Exception] = None
        self.fetched: List[tuple] = []
        self.notes: List[Dict[str, Any]] = []
        self.approvals: List[tuple] = []

    async def get_current_user(self) -> Dict[str, Any]:
        if self.user_error is not None:
            raise self.user_error
        return self.user

    async def list_projects(self, page: int = 1, per_page: int = 20, search: str = ""):
        items = [p for p in self.projects.values() if search.lower() in p["name"].lower()]
        return items, Pagination(page=page, per_page=per_page, total=len(items), total_pages=1)

    async def get_project(self, project_id: int) -> GitLabProject:
        if project_id not in self.projects:
            raise UpstreamError("404 Project Not Found", upstream_status=404, service="GitLab")
        return GitLabProject(**self.projects[project_id])

    async def list_merge_requests(self, project_id: int, state: str = "opened", per_page: int = 100):
        if project_id in self.merge_requests_error:
            raise self.merge_requests_error[project_id]
        return [GitLabMergeRequest(**mr) for mr in self.merge_requests.get(project_id, [])]

    async def fetch_changes(self, project_id: int, mr_iid: int) -> List[FileChange]:
        self.fetched.append((project_id, mr_iid))
        if self.changes_error is not None:
            raise self.changes_error
        return list(self.changes)

    async def create_note(self, project_id: int, mr_iid: int, body: str) -> Dict[str, Any]:
        self.notes.append({"project_id": project_id, "mr_iid": mr_iid, "body": body})
        return {"id": len(self.notes), "body": body}

    async def approve(self, project_id: int, mr_iid: int) -> None:
        self.approvals.append((project_id, mr_iid))


def gitlab_project_payload(project_id: int = 100, name: str = "backend") -> Dict[str, Any]:
    """Project as returned by GET /projects/:id."""
    return {
        "id": project_id,
        "name": name,
        "namespace": {"name": "Acme", "path": "acme"},
        "web_url": f"https://gitlab.example.com/acme/{name}",
        "default_branch": "main",
        "path_with_namespace": f"acme/{name}",
    }


def gitlab_mr_payload(mr_id: int = 5001, iid: int = 7, state: str = "opened") -> Dict[str, Any]:
    """Merge request as returned by GET /projects/:id/merge_requests."""
    return {
        "id": mr_id,
        "iid": iid,
        "title": f"Add feature {iid}",
        "description": "Adds a feature.",
        "source_branch": f"feature-{iid}",
        "target_branch": "main",
        "author": {"username": "alice"},
        "state": state,
        "web_url": f"https://gitlab.example.com/acme/backend/-/merge_requests/{iid}",
    }


@pytest.fixture
def project_payload():
    """Builder for GitLab project payloads."""
    return gitlab_project_payload


@pytest.fixture
def mr_payload():
    """Builder for GitLab merge request payloads."""
    return gitlab_mr_payload


@pytest.fixture
def sample_diff_patch() -> str:
    """Sample unified diff patch."""
    return '''@@ -1,5 +1,7 @@
 import os
+import sys

 def main():
-    print("Hello")
+    name = input("Enter name: ")
+    print(f"Hello, {name}!")
     return 0
'''


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}",
        gitlab_max_retries=1,
        ai_timeout_seconds=5,
        log_json_format=False,
        log_level="WARNING",
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Connected database with default settings seeded."""
    database = Database(settings.database_url)
    await database.connect()
    await SettingsStore(database).seed_defaults()
    yield database
    await database.close()


@pytest.fixture
def records(db: Database) -> RecordStore:
    return RecordStore(db)


@pytest.fixture
def settings_store(db: Database) -> SettingsStore:
    return SettingsStore(db)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_gitlab() -> FakeGitLabClient:
    return FakeGitLabClient()


@pytest.fixture
def orchestrator(
    records: RecordStore,
    settings_store: SettingsStore,
    settings: Settings,
    fake_provider: FakeProvider,
    fake_gitlab: FakeGitLabClient,
) -> ReviewOrchestrator:
    """Orchestrator wired to the fakes, with its own lock registry."""
    return ReviewOrchestrator(
        records,
        settings_store,
        settings=settings,
        provider_factory=lambda name: fake_provider,
        gitlab_factory=lambda provider_settings: fake_gitlab,
        locks=KeyedLocks(),
    )


@pytest.fixture
async def merge_request(records: RecordStore) -> Dict[str, Any]:
    """A tracked project with one open merge request."""
    project = await records.upsert_project(GitLabProject(**gitlab_project_payload()))
    mr_id = await records.save_gitlab_merge_request(
        project["id"], GitLabMergeRequest(**gitlab_mr_payload())
    )
    return await records.get_review_target(mr_id)


@pytest.fixture
def app(settings: Settings, fake_provider: FakeProvider, fake_gitlab: FakeGitLabClient):
    """Application with external services replaced by fakes."""
    application = create_app(settings)
    application.dependency_overrides[get_provider_factory] = lambda: (lambda name: fake_provider)
    application.dependency_overrides[get_gitlab_factory] = lambda: (lambda provider_settings: fake_gitlab)
    return application


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client for synchronous tests."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def configured_client(client: TestClient, fake_gitlab: FakeGitLabClient) -> TestClient:
    """
    Client with GitLab credentials and an OpenAI key stored, one tracked
    project (gitlab id 100) and one synced open merge request (iid 7).
    """
    fake_gitlab.projects[100] = gitlab_project_payload()
    fake_gitlab.merge_requests[100] = [gitlab_mr_payload()]

    response = client.post(
        "/api/gitlab/config",
        json={"gitlab_url": "https://gitlab.example.com/", "gitlab_token": "glpat-test"},
    )
    assert response.status_code == 200

    response = client.post("/api/ai/config", json={"openai_api_key": "sk-test"})
    assert response.status_code == 200

    response = client.post("/api/gitlab/projects/100/track", json={"webhook_token": "hook-secret"})
    assert response.status_code == 200
    project_id = response.json()["project"]["id"]

    response = client.post(f"/api/gitlab/projects/{project_id}/sync")
    assert response.status_code == 200
    assert response.json()["synced_count"] == 1

    return client


@pytest.fixture
def mr_id(configured_client: TestClient) -> int:
    """Local id of the merge request synced by configured_client."""
    response = configured_client.get("/api/merge-requests")
    return response.json()["merge_requests"][0]["id"]
