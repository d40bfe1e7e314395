"""
Merge Request Sync

Copies open merge requests of tracked projects from GitLab into the
local store. A failure on one project does not stop the others.
"""

from typing import Any, Dict, List, Mapping

from review_dashboard.database import RecordStore
from review_dashboard.errors import UpstreamError
from review_dashboard.logging_config import get_logger
from review_dashboard.services.gitlab_client import GitLabClient

logger = get_logger(__name__)


async def sync_project(
    records: RecordStore,
    client: GitLabClient,
    project: Mapping[str, Any]
) -> int:
    """
    Upsert the open merge requests of one tracked project.

    Returns:
        Number of merge requests written
    """
    merge_requests = await client.list_merge_requests(project["gitlab_project_id"], state="opened")

    for mr in merge_requests:
        await records.save_gitlab_merge_request(project["id"], mr)

    logger.info(
        "Project synced",
        project_id=project["id"],
        gitlab_project_id=project["gitlab_project_id"],
        synced_count=len(merge_requests)
    )
    return len(merge_requests)


async def sync_all(records: RecordStore, client: GitLabClient) -> List[Dict[str, Any]]:
    """Sync every tracked project and report the outcome per project."""
    results: List[Dict[str, Any]] = []

    for project in await records.list_projects():
        try:
            count = await sync_project(records, client, project)
            results.append({
                "project_id": project["id"],
                "project_name": project["name"],
                "synced_count": count,
                "status": "success",
            })
        except (UpstreamError, ValueError) as e:
            logger.warning(
                "Project sync failed",
                project_id=project["id"],
                error=str(e),
                error_type=type(e).__name__
            )
            results.append({
                "project_id": project["id"],
                "project_name": project["name"],
                "synced_count": 0,
                "status": "error",
                "error": str(e),
            })

    return results
