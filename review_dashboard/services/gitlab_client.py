"""
GitLab API Client Module

This module provides an async client for the parts of the GitLab REST API
the dashboard needs: project discovery, merge request sync, merge request
changes (diffs) and posting review notes.

Design Decisions:
- Use httpx for async HTTP requests with an explicit timeout
- Bearer-token authentication with the token stored in the settings table
- Retry idempotent GETs on transport errors only; never retry writes
- Look merge requests up directly by project id + iid
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from review_dashboard.config import Settings, get_settings
from review_dashboard.errors import ConfigurationError, UpstreamError
from review_dashboard.logging_config import get_logger
from review_dashboard.models import (
    FileChange,
    GitLabMergeRequest,
    GitLabProject,
    Pagination,
    ProviderSettings,
)

logger = get_logger(__name__)


class GitLabTransportError(Exception):
    """Network-level failure talking to GitLab (retried for GETs)."""
    pass


class GitLabClient:
    """
    Async GitLab API client.

    Usage:
        client = GitLabClient("https://gitlab.example.com", token)
        changes = await client.fetch_changes(42, 7)
    """

    API_PREFIX = "/api/v4"

    def __init__(
        self,
        base_url: str,
        token: str,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the GitLab client.

        Args:
            base_url: GitLab instance URL, e.g. https://gitlab.com
            token: Personal/project access token
            settings: Process settings (timeouts, rate limit, retries)
            transport: Optional httpx transport, used by tests
        """
        if not base_url or not token:
            raise ConfigurationError("GitLab not configured")

        self.base_url = base_url.rstrip("/")
        self.token = token
        self.settings = settings or get_settings()
        self._transport = transport

        self._rate_limiter = AsyncLimiter(
            max_rate=self.settings.gitlab_rate_limit_rpm,
            time_period=60
        )

    @classmethod
    def from_provider_settings(
        cls,
        provider_settings: ProviderSettings,
        settings: Optional[Settings] = None,
    ) -> "GitLabClient":
        """Build a client from the gitlab_url / gitlab_token settings."""
        return cls(provider_settings.gitlab_url, provider_settings.gitlab_token, settings)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    async def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send one request; map failures onto our error types."""
        url = f"{self.base_url}{self.API_PREFIX}{endpoint}"

        async with self._rate_limiter:
            try:
                async with httpx.AsyncClient(
                    timeout=self.settings.gitlab_timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.request(method, url, headers=self._headers(), **kwargs)
            except httpx.TransportError as e:
                logger.warning(
                    "GitLab request failed",
                    method=method,
                    endpoint=endpoint,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise GitLabTransportError(str(e)) from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(
                "GitLab API error",
                status_code=response.status_code,
                method=method,
                endpoint=endpoint,
                error=message[:500]
            )
            raise UpstreamError(message, upstream_status=response.status_code, service="GitLab")

        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            for key in ("message", "error_description", "error"):
                if body.get(key):
                    return str(body[key])
        return response.text

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET with retries on transport errors."""
        retrying = retry(
            stop=stop_after_attempt(self.settings.gitlab_max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(GitLabTransportError),
            reraise=True
        )
        try:
            return await retrying(self._send)("GET", endpoint, params=params)
        except GitLabTransportError as e:
            raise UpstreamError(str(e), service="GitLab") from e

    async def _post(self, endpoint: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return await self._send("POST", endpoint, json=json)
        except GitLabTransportError as e:
            raise UpstreamError(str(e), service="GitLab") from e

    # =========================================================================
    # Read operations
    # =========================================================================

    async def get_current_user(self) -> Dict[str, Any]:
        """Fetch the authenticated user; used to validate credentials."""
        response = await self._get("/user")
        return response.json()

    async def list_projects(
        self,
        page: int = 1,
        per_page: int = 20,
        search: str = ""
    ) -> Tuple[List[Dict[str, Any]], Pagination]:
        """
        List projects the token's user is a member of.

        Returns:
            Tuple of (raw project dicts, pagination from X-Total headers)
        """
        params: Dict[str, Any] = {
            "page": page,
            "per_page": per_page,
            "membership": "true",
            "order_by": "last_activity_at",
            "sort": "desc",
        }
        if search:
            params["search"] = search

        response = await self._get("/projects", params=params)

        pagination = Pagination(
            page=page,
            per_page=per_page,
            total=int(response.headers.get("x-total") or 0),
            total_pages=int(response.headers.get("x-total-pages") or 0),
        )
        return response.json(), pagination

    async def get_project(self, project_id: int) -> GitLabProject:
        response = await self._get(f"/projects/{project_id}")
        return GitLabProject(**response.json())

    async def list_merge_requests(
        self,
        project_id: int,
        state: str = "opened",
        per_page: int = 100
    ) -> List[GitLabMergeRequest]:
        """Fetch merge requests of a project (first page only, like the sync UI)."""
        response = await self._get(
            f"/projects/{project_id}/merge_requests",
            params={"state": state, "per_page": per_page},
        )
        merge_requests = [GitLabMergeRequest(**item) for item in response.json()]

        logger.info(
            "Fetched merge requests",
            project_id=project_id,
            state=state,
            count=len(merge_requests)
        )
        return merge_requests

    async def fetch_changes(self, project_id: int, mr_iid: int) -> List[FileChange]:
        """
        Fetch the changed files of a merge request.

        Args:
            project_id: GitLab project id
            mr_iid: Project-scoped merge request number

        Returns:
            List of FileChange objects, in GitLab's order
        """
        response = await self._get(f"/projects/{project_id}/merge_requests/{mr_iid}/changes")
        data = response.json()

        changes: List[FileChange] = []
        for change in data.get("changes") or []:
            renamed = bool(change.get("renamed_file"))
            changes.append(FileChange(
                path=change.get("new_path") or change.get("old_path") or "unknown",
                is_new=bool(change.get("new_file")),
                is_deleted=bool(change.get("deleted_file")),
                is_renamed=renamed,
                renamed_from=change.get("old_path") if renamed else None,
                unified_diff=change.get("diff") or "",
            ))

        logger.info(
            "Fetched merge request changes",
            project_id=project_id,
            mr_iid=mr_iid,
            num_files=len(changes)
        )
        return changes

    # =========================================================================
    # Write operations
    # =========================================================================

    async def create_note(self, project_id: int, mr_iid: int, body: str) -> Dict[str, Any]:
        """Post a comment on the merge request's discussion."""
        response = await self._post(
            f"/projects/{project_id}/merge_requests/{mr_iid}/notes",
            json={"body": body},
        )
        try:
            return response.json()
        except ValueError:
            # Note is created; some proxies rewrite the body
            logger.warning(
                "Note created but response was not JSON",
                project_id=project_id,
                mr_iid=mr_iid,
                status_code=response.status_code
            )
            return {}

    async def approve(self, project_id: int, mr_iid: int) -> None:
        await self._post(f"/projects/{project_id}/merge_requests/{mr_iid}/approve")
