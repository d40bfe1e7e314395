"""
Review Orchestrator Module

Runs one AI review of a merge request from trigger to stored result:

1. Check the merge request exists and no completed review of the same
   type exists (unless forced)
2. Record the review as ``pending`` before any external call
3. Resolve provider, model and API key
4. Fetch the diff from GitLab (best effort)
5. Render the prompt and call the completion provider
6. Parse the response and store summary, score and comments
7. Optionally post the summary back to GitLab

Any failure in steps 3-6 moves the review to ``failed`` and is reported to
the caller as a result, not as an exception. A review deleted while it is
still running is discarded and reported as not found. Triggers for the same
(merge request, review type) are serialized by a per-key lock so duplicate
suppression cannot be raced within one process.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Hashable, List, Mapping, Optional, Tuple

from review_dashboard.config import Settings, get_settings
from review_dashboard.database import RecordStore, SettingsStore
from review_dashboard.errors import AppError, ConfigurationError, ConflictError, NotFoundError, UpstreamError
from review_dashboard.logging_config import get_logger
from review_dashboard.models import (
    FileChange,
    ParsedReview,
    ProviderSettings,
    ReviewStatus,
    ReviewType,
    TriggerResult,
)
from review_dashboard.services.diff_parser import DiffParser, get_diff_parser
from review_dashboard.services.gitlab_client import GitLabClient
from review_dashboard.services.prompts import REVIEW_TEMPLATES, SYSTEM_INSTRUCTION, build_review_prompt
from review_dashboard.services.providers import CompletionProvider, get_provider
from review_dashboard.services.review_parser import parse_review_response

logger = get_logger(__name__)

ProviderFactory = Callable[[str], CompletionProvider]
GitLabClientFactory = Callable[[ProviderSettings], GitLabClient]


class KeyedLocks:
    """asyncio locks created on demand per key and dropped when unused."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_review_locks = KeyedLocks()


def get_review_locks() -> KeyedLocks:
    """Process-wide locks shared by every orchestrator instance."""
    return _review_locks


SEVERITY_EMOJI = {
    "critical": "🚨",
    "error": "❌",
    "warning": "⚠️",
    "info": "💡",
}


def format_review_note(review_type: ReviewType, parsed: ParsedReview, model: str) -> str:
    """Format a review as a markdown note for the merge request."""
    counts = {severity: 0 for severity in SEVERITY_EMOJI}
    for comment in parsed.comments:
        counts[comment.severity] = counts.get(comment.severity, 0) + 1

    score = f"{parsed.score}/10" if parsed.score is not None else "n/a"
    lines = [
        f"## 🤖 AI {REVIEW_TEMPLATES[review_type]['name']}",
        "",
        parsed.summary,
        "",
        f"**Score:** {score}",
        "",
        "| Severity | Count |",
        "|----------|-------|",
    ]
    for severity, emoji in SEVERITY_EMOJI.items():
        lines.append(f"| {emoji} {severity.title()} | {counts[severity]} |")

    if parsed.comments:
        lines.append("")
        lines.append("### Findings")
        lines.append("")
        for comment in parsed.comments:
            location = comment.file_path
            if comment.line_number is not None:
                location = f"{location}:{comment.line_number}"
            emoji = SEVERITY_EMOJI.get(comment.severity, "💡")
            lines.append(f"- {emoji} **{comment.title}** (`{location}`): {comment.content}")

    lines.append("")
    lines.append(f"---\n*Generated by {model}*")
    return "\n".join(lines)


class ReviewOrchestrator:
    """
    Coordinates a single review trigger.

    Usage:
        orchestrator = ReviewOrchestrator(records, settings_store)
        result = await orchestrator.trigger_review(12, "security", force=False)
    """

    def __init__(
        self,
        records: RecordStore,
        settings_store: SettingsStore,
        settings: Optional[Settings] = None,
        provider_factory: Optional[ProviderFactory] = None,
        gitlab_factory: Optional[GitLabClientFactory] = None,
        diff_parser: Optional[DiffParser] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.records = records
        self.settings_store = settings_store
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory or (lambda name: get_provider(name, self.settings))
        self.gitlab_factory = gitlab_factory or (
            lambda provider_settings: GitLabClient.from_provider_settings(provider_settings, self.settings)
        )
        self.diff_parser = diff_parser or get_diff_parser()
        self.locks = locks or get_review_locks()

    async def trigger_review(
        self,
        merge_request_id: int,
        review_type: Optional[str] = ReviewType.GENERAL.value,
        force: bool = False
    ) -> TriggerResult:
        """
        Run a review and return its id and terminal status.

        Raises:
            NotFoundError: If the merge request does not exist, or the review
                was deleted before it finished
            ConflictError: If a completed review of this type exists and force is False
        """
        normalized = ReviewType.normalize(review_type)
        if review_type is not None and str(review_type).strip().lower() != normalized.value:
            logger.warning(
                "Unknown review type, using general template",
                requested=review_type,
                merge_request_id=merge_request_id
            )

        target = await self.records.get_review_target(merge_request_id)
        if target is None:
            raise NotFoundError("Merge request not found")

        async with self.locks.hold((merge_request_id, normalized.value)):
            if not force:
                existing = await self.records.find_completed_review(merge_request_id, normalized.value)
                if existing is not None:
                    raise ConflictError("Review already exists for this MR and type")

            provider_name, model = self._resolve_model(target)
            review_id = await self.records.create_review(
                merge_request_id, normalized.value, provider_name, model
            )

            log = logger.bind(
                review_id=review_id,
                merge_request_id=merge_request_id,
                review_type=normalized.value,
                provider=provider_name,
                model=model
            )
            log.info("Review started", force=force)

            try:
                parsed, provider_settings, stored = await self._run_review(
                    review_id, target, normalized, provider_name, model
                )
            except asyncio.CancelledError:
                await self._mark_failed(review_id, "Review cancelled")
                raise
            except Exception as e:
                message = self._failure_message(e)
                log.error(
                    "Review failed",
                    error=message,
                    error_type=type(e).__name__,
                    exc_info=not isinstance(e, AppError)
                )
                if not await self._mark_failed(review_id, message):
                    log.warning("Review deleted before it finished, failure not recorded")
                    raise NotFoundError("Review not found")
                return TriggerResult(review_id=review_id, status=ReviewStatus.FAILED)

            if not stored:
                log.warning("Review deleted before it finished, result discarded")
                raise NotFoundError("Review not found")

            log.info(
                "Review completed",
                score=parsed.score,
                num_comments=len(parsed.comments),
                structured=parsed.structured
            )

            if provider_settings.review_auto_post:
                await self._auto_post(review_id, target, normalized, parsed, model, provider_settings)

            return TriggerResult(review_id=review_id, status=ReviewStatus.COMPLETED)

    def _resolve_model(self, target: Mapping[str, Any]) -> Tuple[str, str]:
        """Project override first, global default otherwise."""
        provider_name = (target.get("ai_provider") or self.settings.default_ai_provider).lower()
        model = target.get("ai_model") or self.settings.default_ai_model
        return provider_name, model

    async def _run_review(
        self,
        review_id: int,
        target: Mapping[str, Any],
        review_type: ReviewType,
        provider_name: str,
        model: str,
    ) -> Tuple[ParsedReview, ProviderSettings, bool]:
        provider_settings = await self.settings_store.load_provider_settings()

        api_key = provider_settings.api_key_for(provider_name)
        if not api_key:
            raise ConfigurationError(f"{provider_name} API key not configured")

        provider = self.provider_factory(provider_name)

        changes = await self._fetch_changes(target, provider_settings)
        prepared = self.diff_parser.prepare(
            changes,
            max_files=provider_settings.review_max_files,
            max_lines=provider_settings.review_max_lines,
        )
        prompt = build_review_prompt(target, review_type, prepared.text)

        try:
            raw = await asyncio.wait_for(
                provider.complete(
                    SYSTEM_INSTRUCTION,
                    prompt,
                    model=model,
                    api_key=api_key,
                    max_tokens=self.settings.ai_max_tokens,
                ),
                timeout=self.settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                f"no response within {self.settings.ai_timeout_seconds:g}s", service=provider_name
            ) from e

        parsed = parse_review_response(raw)

        stored = await self.records.complete_review(
            review_id,
            summary=parsed.summary,
            score=parsed.score,
            ai_provider=provider_name,
            ai_model=model,
            files_reviewed=prepared.files_reviewed,
            lines_reviewed=prepared.lines_reviewed,
            comments=parsed.comments,
        )
        return parsed, provider_settings, stored

    async def _fetch_changes(
        self,
        target: Mapping[str, Any],
        provider_settings: ProviderSettings
    ) -> List[FileChange]:
        """Fetch the merge request diff; any failure yields an empty list."""
        if not provider_settings.has_gitlab_credentials:
            logger.info("GitLab not configured, reviewing without diff", merge_request_id=target["id"])
            return []

        project_id = target.get("gitlab_project_id")
        mr_iid = target.get("gitlab_mr_iid")
        if project_id is None or mr_iid is None:
            logger.warning(
                "Merge request has no GitLab reference, reviewing without diff",
                merge_request_id=target["id"]
            )
            return []

        try:
            client = self.gitlab_factory(provider_settings)
            return await asyncio.wait_for(
                client.fetch_changes(project_id, mr_iid),
                timeout=self.settings.gitlab_timeout_seconds,
            )
        except (UpstreamError, ConfigurationError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(
                "Failed to fetch merge request changes",
                merge_request_id=target["id"],
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__
            )
            return []

    async def _mark_failed(self, review_id: int, message: str) -> bool:
        try:
            return await self.records.fail_review(review_id, message)
        except Exception:
            logger.error("Could not record review failure", review_id=review_id, exc_info=True)
            raise

    @staticmethod
    def _failure_message(error: Exception) -> str:
        return str(error) or type(error).__name__

    async def _auto_post(
        self,
        review_id: int,
        target: Mapping[str, Any],
        review_type: ReviewType,
        parsed: ParsedReview,
        model: str,
        provider_settings: ProviderSettings,
    ) -> None:
        """Post the review to GitLab and approve above the score threshold."""
        project_id = target.get("gitlab_project_id")
        mr_iid = target.get("gitlab_mr_iid")
        if not provider_settings.has_gitlab_credentials or project_id is None or mr_iid is None:
            logger.info("Skipping auto-post, merge request not linked to GitLab", review_id=review_id)
            return

        try:
            client = self.gitlab_factory(provider_settings)
            await client.create_note(project_id, mr_iid, format_review_note(review_type, parsed, model))
            await self.records.mark_comments_posted(review_id)

            if parsed.score is not None and parsed.score >= provider_settings.review_min_score:
                await client.approve(project_id, mr_iid)
                logger.info("Merge request approved", review_id=review_id, score=parsed.score)
        except (UpstreamError, ConfigurationError) as e:
            logger.warning("Failed to post review to GitLab", review_id=review_id, error=str(e))
            return
        except Exception as e:
            logger.error(
                "Failed to post review to GitLab",
                review_id=review_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True
            )
            return

        logger.info("Review posted to GitLab", review_id=review_id)
