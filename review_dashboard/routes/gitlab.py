"""
GitLab Routes

Connection settings, project tracking, merge request sync and the GitLab
webhook receiver.

Flow of a webhook delivery:
1. Ignore anything that is not a Merge Request Hook
2. Look up the tracked project and check its webhook token
3. Upsert the merge request
4. Schedule a general review in the background when the MR is open
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import ValidationError

from review_dashboard.database import RecordStore, SettingsStore
from review_dashboard.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RequestValidationFailed,
    UpstreamError,
)
from review_dashboard.logging_config import get_logger
from review_dashboard.models import (
    GitLabConfigUpdate,
    MergeRequestHookPayload,
    ProjectAIConfigUpdate,
    ProviderSettings,
    ReviewType,
    TrackProjectRequest,
)
from review_dashboard.routes.dependencies import (
    get_gitlab_factory,
    get_orchestrator,
    get_record_store,
    get_settings_store,
    require_gitlab_client,
)
from review_dashboard.routes.security import (
    extract_event_uuid,
    is_merge_request_event,
    should_trigger_review,
    verify_webhook_token,
)
from review_dashboard.services.orchestrator import GitLabClientFactory, ReviewOrchestrator
from review_dashboard.services.sync import sync_all, sync_project

logger = get_logger(__name__)

router = APIRouter(prefix="/api/gitlab", tags=["gitlab"])


def _public_project(project: Dict[str, Any]) -> Dict[str, Any]:
    """Project row without its webhook secret."""
    public = dict(project)
    public["has_webhook_token"] = bool(public.pop("webhook_token", None))
    return public


# =============================================================================
# Connection settings
# =============================================================================

@router.get("/config")
async def get_gitlab_config(
    settings_store: SettingsStore = Depends(get_settings_store)
) -> Dict[str, Any]:
    stored = await settings_store.get_many(["gitlab_url", "gitlab_token"])
    return {
        "gitlab_url": stored.get("gitlab_url", ""),
        "has_token": bool(stored.get("gitlab_token")),
    }


@router.post("/config")
async def update_gitlab_config(
    body: GitLabConfigUpdate,
    settings_store: SettingsStore = Depends(get_settings_store),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> Dict[str, Any]:
    """Store GitLab credentials after checking them against the API."""
    gitlab_url = body.gitlab_url.strip().rstrip("/")
    client = gitlab_factory(ProviderSettings(gitlab_url=gitlab_url, gitlab_token=body.gitlab_token))

    try:
        user = await client.get_current_user()
    except UpstreamError as e:
        logger.warning("GitLab credential check failed", gitlab_url=gitlab_url, error=str(e))
        raise ConfigurationError("Invalid GitLab URL or token") from e

    await settings_store.set_many({"gitlab_url": gitlab_url, "gitlab_token": body.gitlab_token})

    logger.info("GitLab configuration updated", gitlab_url=gitlab_url, username=user.get("username"))
    return {
        "message": "GitLab configuration updated successfully",
        "user": {"username": user.get("username"), "name": user.get("name")},
    }


# =============================================================================
# Projects
# =============================================================================

@router.get("/projects")
async def list_gitlab_projects(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    search: str = "",
    settings_store: SettingsStore = Depends(get_settings_store),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> Dict[str, Any]:
    client = await require_gitlab_client(settings_store, gitlab_factory)
    projects, pagination = await client.list_projects(page=page, per_page=per_page, search=search)
    return {"projects": projects, "pagination": pagination.model_dump()}


@router.post("/projects/{gitlab_project_id}/track")
async def track_project(
    gitlab_project_id: int,
    body: Optional[TrackProjectRequest] = None,
    records: RecordStore = Depends(get_record_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> Dict[str, Any]:
    """Start tracking a GitLab project (re-tracking refreshes its metadata)."""
    client = await require_gitlab_client(settings_store, gitlab_factory)
    gitlab_project = await client.get_project(gitlab_project_id)

    webhook_token = body.webhook_token if body else None
    project = await records.upsert_project(gitlab_project, webhook_token)

    logger.info("Project tracked", project_id=project["id"], gitlab_project_id=gitlab_project_id)
    return {"message": "Project added successfully", "project": _public_project(project)}


@router.get("/tracked-projects")
async def list_tracked_projects(
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    projects = await records.list_projects()
    return {"projects": [_public_project(project) for project in projects]}


@router.post("/projects/{project_id}/sync")
async def sync_tracked_project(
    project_id: int,
    records: RecordStore = Depends(get_record_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> Dict[str, Any]:
    project = await records.get_project(project_id)
    if project is None:
        raise NotFoundError("Project not found")

    client = await require_gitlab_client(settings_store, gitlab_factory)
    synced_count = await sync_project(records, client, project)

    return {"message": "Merge requests synced successfully", "synced_count": synced_count}


@router.post("/sync-all")
async def sync_all_projects(
    records: RecordStore = Depends(get_record_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> Dict[str, Any]:
    if not await records.list_projects():
        return {"message": "No projects to sync", "results": []}

    client = await require_gitlab_client(settings_store, gitlab_factory)
    results = await sync_all(records, client)

    return {"message": "Sync completed", "results": results}


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: int,
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    if not await records.delete_project(project_id):
        raise NotFoundError("Project not found")
    return {"message": "Project deleted successfully"}


@router.put("/projects/{project_id}/ai-config")
async def update_project_ai_config(
    project_id: int,
    body: ProjectAIConfigUpdate,
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    updated = await records.update_project_ai_config(project_id, body.ai_provider, body.ai_model)
    if not updated:
        raise NotFoundError("Project not found")

    logger.info(
        "Project AI config updated",
        project_id=project_id,
        ai_provider=body.ai_provider,
        ai_model=body.ai_model
    )
    return {"message": "Project AI configuration updated successfully"}


# =============================================================================
# Webhook
# =============================================================================

async def run_webhook_review(
    orchestrator: ReviewOrchestrator,
    merge_request_id: int,
    event_uuid: Optional[str] = None
) -> None:
    """
    Background task that reviews a merge request after a webhook.

    Errors are logged, never raised: the webhook has already been
    acknowledged.
    """
    try:
        result = await orchestrator.trigger_review(merge_request_id, ReviewType.GENERAL.value)
        logger.info(
            "Webhook review finished",
            merge_request_id=merge_request_id,
            review_id=result.review_id,
            status=result.status,
            event_uuid=event_uuid
        )
    except (ConflictError, NotFoundError) as e:
        logger.info(
            "Webhook review skipped",
            merge_request_id=merge_request_id,
            reason=e.message,
            event_uuid=event_uuid
        )
    except Exception as e:
        logger.error(
            "Webhook review crashed",
            merge_request_id=merge_request_id,
            error=str(e),
            error_type=type(e).__name__,
            event_uuid=event_uuid,
            exc_info=True
        )


@router.post("/webhook")
async def gitlab_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    records: RecordStore = Depends(get_record_store),
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Receive GitLab webhook events.

    Returns immediately; the review itself runs as a background task.
    """
    event_type = request.headers.get("X-Gitlab-Event")
    event_uuid = extract_event_uuid(request)

    if not is_merge_request_event(event_type):
        logger.debug("Ignoring webhook event", event_type=event_type, event_uuid=event_uuid)
        return {"message": "Webhook ignored", "status": "ignored"}

    try:
        raw_payload = await request.json()
    except ValueError as e:
        raise RequestValidationFailed("Invalid JSON payload") from e

    try:
        payload = MergeRequestHookPayload.model_validate(raw_payload)
    except ValidationError as e:
        raise RequestValidationFailed(
            "Invalid merge request payload",
            details=e.errors(include_url=False, include_context=False)
        ) from e

    project = await records.get_project_by_gitlab_id(payload.project.id)
    if project is None:
        raise NotFoundError("Project not tracked")

    verify_webhook_token(project.get("webhook_token"), request.headers.get("X-Gitlab-Token"))

    attrs = payload.object_attributes
    author = payload.user.username if payload.user else "unknown"
    merge_request_id = await records.save_webhook_merge_request(project["id"], attrs, author)

    logger.info(
        "Merge request webhook received",
        merge_request_id=merge_request_id,
        gitlab_project_id=payload.project.id,
        mr_iid=attrs.iid,
        action=attrs.action,
        state=attrs.state,
        event_uuid=event_uuid
    )

    review_scheduled = should_trigger_review(attrs.state, attrs.action, project["ai_enabled"])
    if review_scheduled:
        background_tasks.add_task(run_webhook_review, orchestrator, merge_request_id, event_uuid)

    return {
        "message": "Webhook processed successfully",
        "merge_request_id": merge_request_id,
        "review_scheduled": review_scheduled,
    }
