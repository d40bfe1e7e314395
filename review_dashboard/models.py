"""
Data Models Module

This module defines the Pydantic models used throughout the application:
request bodies for the HTTP API, GitLab payloads, and the internal
objects passed through the review pipeline.

Rows read from the database are plain dicts; only the pieces of the
pipeline with a contract of their own get a model here.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class MergeRequestState(str, Enum):
    """Lifecycle states of a GitLab merge request."""
    OPENED = "opened"
    MERGED = "merged"
    CLOSED = "closed"
    LOCKED = "locked"


class ReviewType(str, Enum):
    """Review templates a caller can request."""
    GENERAL = "general"
    SECURITY = "security"
    PERFORMANCE = "performance"
    TESTING = "testing"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "ReviewType":
        """Map a requested type onto a known template; unknown values become GENERAL."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GENERAL


class ReviewStatus(str, Enum):
    """Review lifecycle: pending -> completed | failed."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(str, Enum):
    """Severity levels for review comments."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class AIProvider(str, Enum):
    """Completion providers the orchestrator can call."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# =============================================================================
# Settings
# =============================================================================

class ProviderSettings(BaseModel):
    """
    Typed view of the settings table.

    Read by the orchestrator at the start of every trigger.
    """
    gitlab_url: str = ""
    gitlab_token: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    review_auto_post: bool = False
    review_min_score: int = 7
    review_max_files: int = 20
    review_max_lines: int = 1000

    @property
    def has_gitlab_credentials(self) -> bool:
        return bool(self.gitlab_url and self.gitlab_token)

    def api_key_for(self, provider: str) -> str:
        """Return the stored API key for a provider, or an empty string."""
        if provider == AIProvider.OPENAI.value:
            return self.openai_api_key
        if provider == AIProvider.ANTHROPIC.value:
            return self.anthropic_api_key
        return ""


# =============================================================================
# GitLab Models
# =============================================================================

class GitLabUser(BaseModel):
    """GitLab user information."""
    username: str = "unknown"


class GitLabNamespace(BaseModel):
    """GitLab namespace (group or user) of a project."""
    name: str = ""
    path: str = ""


class GitLabProject(BaseModel):
    """Project as returned by the GitLab projects API."""
    id: int
    name: str
    namespace: GitLabNamespace = Field(default_factory=GitLabNamespace)
    web_url: str
    default_branch: Optional[str] = None
    path_with_namespace: Optional[str] = None


class GitLabMergeRequest(BaseModel):
    """Merge request as returned by the GitLab merge requests API."""
    id: int
    iid: int
    title: str
    description: Optional[str] = None
    source_branch: str
    target_branch: str
    author: Optional[GitLabUser] = None
    state: str
    web_url: str


class FileChange(BaseModel):
    """
    One changed file of a merge request.

    Attributes:
        path: Path of the file after the change
        is_new: File was added
        is_deleted: File was removed
        is_renamed: File was moved
        renamed_from: Previous path for renamed files
        unified_diff: Unified diff text (may be empty for binary files)
    """
    path: str
    is_new: bool = False
    is_deleted: bool = False
    is_renamed: bool = False
    renamed_from: Optional[str] = None
    unified_diff: str = ""


class PreparedDiff(BaseModel):
    """
    Diff text ready to be embedded in a review prompt.

    Attributes:
        text: Formatted, bounded diff text ("" when nothing is reviewable)
        files_reviewed: Number of files included in ``text``
        lines_reviewed: Added plus deleted lines included in ``text``
        files_skipped: Files dropped by the per-review file limit
        truncated_files: Paths whose diff was cut at the per-file line limit
    """
    text: str = ""
    files_reviewed: int = 0
    lines_reviewed: int = 0
    files_skipped: int = 0
    truncated_files: List[str] = Field(default_factory=list)


class Pagination(BaseModel):
    """Pagination block derived from GitLab's X-Total headers."""
    page: int
    per_page: int
    total: int = 0
    total_pages: int = 0


# =============================================================================
# GitLab Webhook Models
# =============================================================================

class WebhookProject(BaseModel):
    """Project block of a GitLab webhook payload."""
    id: int
    name: Optional[str] = None


class MergeRequestAttributes(BaseModel):
    """object_attributes block of a Merge Request Hook."""
    id: int
    iid: int
    title: str
    description: Optional[str] = None
    source_branch: str
    target_branch: str
    state: str
    url: str
    action: Optional[str] = None


class MergeRequestHookPayload(BaseModel):
    """Merge Request Hook payload (only the fields we use)."""
    object_kind: str = "merge_request"
    user: Optional[GitLabUser] = None
    project: WebhookProject
    object_attributes: MergeRequestAttributes


# =============================================================================
# Review Pipeline Models
# =============================================================================

class ReviewFinding(BaseModel):
    """A single normalized comment produced by the AI reviewer."""
    model_config = ConfigDict(use_enum_values=True)

    file_path: str = "unknown"
    line_number: Optional[int] = Field(default=None, ge=1)
    severity: Severity = Severity.INFO
    title: str = "Code Issue"
    content: str = ""
    code_snippet: str = ""
    suggested_fix: str = ""


class ParsedReview(BaseModel):
    """
    Result of interpreting a provider response.

    ``structured`` is False when the response was not valid JSON and only
    the legacy score line (if any) could be recovered.
    """
    summary: str
    score: Optional[int] = Field(default=None, ge=1, le=10)
    comments: List[ReviewFinding] = Field(default_factory=list)
    structured: bool = True


class TriggerResult(BaseModel):
    """Outcome of a review trigger as reported to the caller."""
    review_id: int
    status: ReviewStatus

    model_config = ConfigDict(use_enum_values=True)


# =============================================================================
# API Request Models
# =============================================================================

class TriggerReviewRequest(BaseModel):
    """Body of POST /api/merge-requests/{id}/review."""
    review_type: str = ReviewType.GENERAL.value
    force: bool = False


class GitLabConfigUpdate(BaseModel):
    """Body of POST /api/gitlab/config."""
    gitlab_url: str = Field(min_length=1)
    gitlab_token: str = Field(min_length=1)


class TrackProjectRequest(BaseModel):
    """Body of POST /api/gitlab/projects/{id}/track."""
    webhook_token: Optional[str] = None


class ProjectAIConfigUpdate(BaseModel):
    """Body of PUT /api/gitlab/projects/{id}/ai-config."""
    model_config = ConfigDict(use_enum_values=True)

    ai_provider: AIProvider
    ai_model: str = Field(min_length=1)


class AIConfigUpdate(BaseModel):
    """
    Body of POST /api/ai/config.

    Omitted fields keep their stored value.
    """
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    review_auto_post: Optional[bool] = None
    review_min_score: Optional[int] = Field(default=None, ge=0, le=10)
    review_max_files: Optional[int] = Field(default=None, ge=1)
    review_max_lines: Optional[int] = Field(default=None, ge=1)


class ConnectionTestRequest(BaseModel):
    """Body of POST /api/ai/test."""
    provider: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
