"""
Services Package

This package contains the service modules of the review dashboard:
- gitlab_client: GitLab API client
- diff_parser: Diff bounding and formatting
- providers: OpenAI / Anthropic completion providers
- prompts: Review prompt templates
- review_parser: Provider response parsing
- orchestrator: Review pipeline
- sync: Merge request sync
"""

from review_dashboard.services.diff_parser import DiffParser, get_diff_parser
from review_dashboard.services.gitlab_client import GitLabClient
from review_dashboard.services.orchestrator import ReviewOrchestrator, get_review_locks
from review_dashboard.services.providers import (
    AnthropicProvider,
    CompletionProvider,
    OpenAIProvider,
    get_provider,
)

__all__ = [
    "DiffParser",
    "get_diff_parser",
    "GitLabClient",
    "ReviewOrchestrator",
    "get_review_locks",
    "CompletionProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "get_provider",
]
