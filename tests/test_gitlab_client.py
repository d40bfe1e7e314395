"""
Tests for the GitLab API Client

Requests are answered by httpx.MockTransport handlers.
"""

import json

import httpx
import pytest

from review_dashboard.errors import ConfigurationError, UpstreamError
from review_dashboard.models import ProviderSettings
from review_dashboard.services.gitlab_client import GitLabClient

BASE_URL = "https://gitlab.example.com"


def make_client(settings, handler) -> GitLabClient:
    return GitLabClient(BASE_URL, "glpat-test", settings=settings, transport=httpx.MockTransport(handler))


class TestClientSetup:
    """Construction and authentication."""

    def test_requires_credentials(self, settings):
        with pytest.raises(ConfigurationError):
            GitLabClient("", "token", settings=settings)
        with pytest.raises(ConfigurationError):
            GitLabClient(BASE_URL, "", settings=settings)

    def test_from_provider_settings(self, settings):
        client = GitLabClient.from_provider_settings(
            ProviderSettings(gitlab_url=f"{BASE_URL}/", gitlab_token="glpat-x"), settings
        )

        assert client.base_url == BASE_URL
        assert client.token == "glpat-x"

    async def test_sends_bearer_token(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"id": 1, "username": "reviewer"})

        user = await make_client(settings, handler).get_current_user()

        assert user["username"] == "reviewer"
        assert seen["url"] == f"{BASE_URL}/api/v4/user"
        assert seen["auth"] == "Bearer glpat-test"


class TestReadOperations:
    """Project listing, merge requests and changes."""

    async def test_list_projects_pagination(self, settings, project_payload):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["page"] == "2"
            assert request.url.params["per_page"] == "10"
            assert request.url.params["search"] == "back"
            return httpx.Response(
                200,
                json=[project_payload()],
                headers={"X-Total": "11", "X-Total-Pages": "2"},
            )

        projects, pagination = await make_client(settings, handler).list_projects(
            page=2, per_page=10, search="back"
        )

        assert projects[0]["id"] == 100
        assert pagination.total == 11
        assert pagination.total_pages == 2
        assert pagination.page == 2

    async def test_list_projects_without_headers(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "search" not in request.url.params
            return httpx.Response(200, json=[])

        projects, pagination = await make_client(settings, handler).list_projects()

        assert projects == []
        assert pagination.total == 0

    async def test_get_project(self, settings, project_payload):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v4/projects/100"
            return httpx.Response(200, json=project_payload())

        project = await make_client(settings, handler).get_project(100)

        assert project.name == "backend"
        assert project.namespace.path == "acme"

    async def test_list_merge_requests(self, settings, mr_payload):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v4/projects/100/merge_requests"
            assert request.url.params["state"] == "opened"
            return httpx.Response(200, json=[mr_payload(), mr_payload(5002, 8)])

        merge_requests = await make_client(settings, handler).list_merge_requests(100)

        assert [mr.iid for mr in merge_requests] == [7, 8]
        assert merge_requests[0].author.username == "alice"

    async def test_fetch_changes(self, settings, sample_diff_patch):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v4/projects/100/merge_requests/7/changes"
            return httpx.Response(200, json={
                "iid": 7,
                "changes": [
                    {"old_path": "app.py", "new_path": "app.py", "diff": sample_diff_patch,
                     "new_file": False, "renamed_file": False, "deleted_file": False},
                    {"old_path": "old.py", "new_path": "new.py", "diff": "",
                     "new_file": False, "renamed_file": True, "deleted_file": False},
                    {"old_path": "gone.py", "new_path": "gone.py", "diff": "-x",
                     "new_file": False, "renamed_file": False, "deleted_file": True},
                ],
            })

        changes = await make_client(settings, handler).fetch_changes(100, 7)

        assert [c.path for c in changes] == ["app.py", "new.py", "gone.py"]
        assert changes[0].unified_diff == sample_diff_patch
        assert changes[1].is_renamed and changes[1].renamed_from == "old.py"
        assert changes[2].is_deleted
        assert changes[0].renamed_from is None

    async def test_fetch_changes_without_changes_key(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"iid": 7})

        assert await make_client(settings, handler).fetch_changes(100, 7) == []


class TestWriteOperations:
    """Notes and approvals."""

    async def test_create_note(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/api/v4/projects/100/merge_requests/7/notes"
            assert json.loads(request.content) == {"body": "Looks good"}
            return httpx.Response(201, json={"id": 55, "body": "Looks good"})

        note = await make_client(settings, handler).create_note(100, 7, "Looks good")

        assert note["id"] == 55

    async def test_create_note_with_non_json_body(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, text="<html>created</html>")

        note = await make_client(settings, handler).create_note(100, 7, "Looks good")

        assert note == {}

    async def test_approve(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path))
            return httpx.Response(201, json={})

        await make_client(settings, handler).approve(100, 7)

        assert calls == [("POST", "/api/v4/projects/100/merge_requests/7/approve")]


class TestErrors:
    """Error mapping."""

    async def test_http_error_becomes_upstream_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "401 Unauthorized"})

        with pytest.raises(UpstreamError) as exc_info:
            await make_client(settings, handler).get_current_user()

        assert exc_info.value.upstream_status == 401
        assert exc_info.value.message == "401 Unauthorized"
        assert str(exc_info.value) == "GitLab returned 401: 401 Unauthorized"

    async def test_non_json_error_body(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(UpstreamError) as exc_info:
            await make_client(settings, handler).get_project(100)

        assert exc_info.value.message == "Bad Gateway"

    async def test_transport_error_becomes_upstream_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await make_client(settings, handler).fetch_changes(100, 7)

        assert exc_info.value.upstream_status is None
        assert "connection refused" in str(exc_info.value)

    async def test_writes_are_not_retried(self, settings):
        settings.gitlab_max_retries = 3
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            raise httpx.ConnectError("connection reset", request=request)

        with pytest.raises(UpstreamError):
            await make_client(settings, handler).create_note(100, 7, "x")

        assert calls == ["POST"]
