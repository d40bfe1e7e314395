"""
Review Record Store

Persistence for tracked projects, merge requests, AI reviews and their
comments, plus the read paths used by the dashboard.

Reviews are only ever mutated by the orchestrator, and only once: from
``pending`` to ``completed`` (together with its comments, in a single
transaction) or to ``failed``. Deletes cascade in code, inside one
transaction, because SQLite does not enforce foreign keys by default.
"""

from typing import Any, Dict, List, Optional

from review_dashboard.database.base import Database, Row
from review_dashboard.logging_config import get_logger
from review_dashboard.models import (
    GitLabMergeRequest,
    GitLabProject,
    MergeRequestAttributes,
    ReviewFinding,
    ReviewStatus,
)

logger = get_logger(__name__)


_MR_WITH_PROJECT = """
    SELECT mr.*, p.name AS project_name, p.namespace, p.web_url AS project_url
    FROM merge_requests mr
    LEFT JOIN projects p ON mr.project_id = p.id
"""


def _normalize_project(row: Optional[Row]) -> Optional[Row]:
    if row is not None and "ai_enabled" in row:
        row["ai_enabled"] = bool(row["ai_enabled"])
    return row


class RecordStore:
    """Projects, merge requests, reviews and comments."""

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Projects
    # =========================================================================

    async def upsert_project(
        self,
        project: GitLabProject,
        webhook_token: Optional[str] = None
    ) -> Row:
        """Track a GitLab project, refreshing its metadata if already tracked."""
        row = await self.db.query_one(
            """
            INSERT INTO projects
                (gitlab_project_id, name, namespace, web_url, default_branch,
                 webhook_token, updated_at)
            VALUES
                (:gitlab_project_id, :name, :namespace, :web_url, :default_branch,
                 :webhook_token, CURRENT_TIMESTAMP)
            ON CONFLICT (gitlab_project_id) DO UPDATE SET
                name = excluded.name,
                namespace = excluded.namespace,
                web_url = excluded.web_url,
                default_branch = excluded.default_branch,
                webhook_token = excluded.webhook_token,
                updated_at = CURRENT_TIMESTAMP
            RETURNING *
            """,
            {
                "gitlab_project_id": project.id,
                "name": project.name,
                "namespace": project.namespace.path or project.namespace.name,
                "web_url": project.web_url,
                "default_branch": project.default_branch or "main",
                "webhook_token": webhook_token,
            },
        )
        return _normalize_project(row)

    async def list_projects(self) -> List[Row]:
        rows = await self.db.query("SELECT * FROM projects ORDER BY updated_at DESC, id DESC")
        return [_normalize_project(row) for row in rows]

    async def get_project(self, project_id: int) -> Optional[Row]:
        row = await self.db.query_one(
            "SELECT * FROM projects WHERE id = :id", {"id": project_id}
        )
        return _normalize_project(row)

    async def get_project_by_gitlab_id(self, gitlab_project_id: int) -> Optional[Row]:
        row = await self.db.query_one(
            "SELECT * FROM projects WHERE gitlab_project_id = :gid",
            {"gid": gitlab_project_id},
        )
        return _normalize_project(row)

    async def update_project_ai_config(
        self,
        project_id: int,
        ai_provider: str,
        ai_model: str
    ) -> bool:
        changed = await self.db.execute(
            """
            UPDATE projects
            SET ai_provider = :provider, ai_model = :model, updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
            """,
            {"provider": ai_provider, "model": ai_model, "id": project_id},
        )
        return changed > 0

    async def delete_project(self, project_id: int) -> bool:
        """Remove a project with its merge requests, reviews and comments."""
        params = {"id": project_id}
        async with self.db.transaction() as tx:
            await tx.execute(
                """
                DELETE FROM review_comments WHERE ai_review_id IN (
                    SELECT r.id FROM ai_reviews r
                    JOIN merge_requests mr ON r.merge_request_id = mr.id
                    WHERE mr.project_id = :id
                )
                """,
                params,
            )
            await tx.execute(
                """
                DELETE FROM ai_reviews WHERE merge_request_id IN (
                    SELECT id FROM merge_requests WHERE project_id = :id
                )
                """,
                params,
            )
            await tx.execute("DELETE FROM merge_requests WHERE project_id = :id", params)
            deleted = await tx.execute("DELETE FROM projects WHERE id = :id", params)
        return deleted > 0

    # =========================================================================
    # Merge Requests
    # =========================================================================

    async def upsert_merge_request(
        self,
        project_id: int,
        gitlab_mr_id: int,
        gitlab_mr_iid: Optional[int],
        title: str,
        description: Optional[str],
        source_branch: str,
        target_branch: str,
        author_username: str,
        state: str,
        web_url: str,
    ) -> int:
        """Insert or refresh a merge request; returns the local id."""
        row = await self.db.query_one(
            """
            INSERT INTO merge_requests
                (project_id, gitlab_mr_id, gitlab_mr_iid, title, description,
                 source_branch, target_branch, author_username, state, web_url,
                 updated_at)
            VALUES
                (:project_id, :gitlab_mr_id, :gitlab_mr_iid, :title, :description,
                 :source_branch, :target_branch, :author_username, :state, :web_url,
                 CURRENT_TIMESTAMP)
            ON CONFLICT (project_id, gitlab_mr_id) DO UPDATE SET
                gitlab_mr_iid = excluded.gitlab_mr_iid,
                title = excluded.title,
                description = excluded.description,
                source_branch = excluded.source_branch,
                target_branch = excluded.target_branch,
                author_username = excluded.author_username,
                state = excluded.state,
                web_url = excluded.web_url,
                updated_at = CURRENT_TIMESTAMP
            RETURNING id
            """,
            {
                "project_id": project_id,
                "gitlab_mr_id": gitlab_mr_id,
                "gitlab_mr_iid": gitlab_mr_iid,
                "title": title,
                "description": description,
                "source_branch": source_branch,
                "target_branch": target_branch,
                "author_username": author_username,
                "state": state,
                "web_url": web_url,
            },
        )
        return row["id"]

    async def save_gitlab_merge_request(self, project_id: int, mr: GitLabMergeRequest) -> int:
        """Upsert a merge request fetched from the GitLab API."""
        return await self.upsert_merge_request(
            project_id=project_id,
            gitlab_mr_id=mr.id,
            gitlab_mr_iid=mr.iid,
            title=mr.title,
            description=mr.description,
            source_branch=mr.source_branch,
            target_branch=mr.target_branch,
            author_username=mr.author.username if mr.author else "unknown",
            state=mr.state,
            web_url=mr.web_url,
        )

    async def save_webhook_merge_request(
        self,
        project_id: int,
        attrs: MergeRequestAttributes,
        author_username: str
    ) -> int:
        """Upsert a merge request received through a GitLab webhook."""
        return await self.upsert_merge_request(
            project_id=project_id,
            gitlab_mr_id=attrs.id,
            gitlab_mr_iid=attrs.iid,
            title=attrs.title,
            description=attrs.description,
            source_branch=attrs.source_branch,
            target_branch=attrs.target_branch,
            author_username=author_username,
            state=attrs.state,
            web_url=attrs.url,
        )

    async def list_merge_requests(
        self,
        project_id: Optional[int] = None,
        state: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> List[Row]:
        clauses = []
        params: Dict[str, Any] = {
            "limit": per_page,
            "offset": (max(page, 1) - 1) * per_page,
        }
        if project_id is not None:
            clauses.append("mr.project_id = :project_id")
            params["project_id"] = project_id
        if state:
            clauses.append("mr.state = :state")
            params["state"] = state

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return await self.db.query(
            f"""
            {_MR_WITH_PROJECT}
            {where}
            ORDER BY mr.updated_at DESC, mr.id DESC
            LIMIT :limit OFFSET :offset
            """,
            params,
        )

    async def get_merge_request(self, mr_id: int) -> Optional[Row]:
        return await self.db.query_one(
            f"{_MR_WITH_PROJECT} WHERE mr.id = :id", {"id": mr_id}
        )

    async def get_review_target(self, mr_id: int) -> Optional[Row]:
        """Merge request plus the project fields the orchestrator needs."""
        row = await self.db.query_one(
            """
            SELECT mr.*, p.gitlab_project_id, p.ai_enabled, p.ai_provider, p.ai_model
            FROM merge_requests mr
            LEFT JOIN projects p ON mr.project_id = p.id
            WHERE mr.id = :id
            """,
            {"id": mr_id},
        )
        return _normalize_project(row)

    # =========================================================================
    # Reviews
    # =========================================================================

    async def find_completed_review(self, mr_id: int, review_type: str) -> Optional[Row]:
        return await self.db.query_one(
            """
            SELECT * FROM ai_reviews
            WHERE merge_request_id = :mr_id AND review_type = :review_type AND status = :status
            ORDER BY id DESC
            """,
            {"mr_id": mr_id, "review_type": review_type, "status": ReviewStatus.COMPLETED.value},
        )

    async def create_review(
        self,
        mr_id: int,
        review_type: str,
        ai_provider: str,
        ai_model: str
    ) -> int:
        """Insert a review in ``pending`` state and return its id."""
        row = await self.db.query_one(
            """
            INSERT INTO ai_reviews (merge_request_id, review_type, ai_provider, ai_model, status)
            VALUES (:mr_id, :review_type, :provider, :model, :status)
            RETURNING id
            """,
            {
                "mr_id": mr_id,
                "review_type": review_type,
                "provider": ai_provider,
                "model": ai_model,
                "status": ReviewStatus.PENDING.value,
            },
        )
        return row["id"]

    async def complete_review(
        self,
        review_id: int,
        summary: str,
        score: Optional[int],
        ai_provider: str,
        ai_model: str,
        files_reviewed: int,
        lines_reviewed: int,
        comments: List[ReviewFinding],
    ) -> bool:
        """Mark a pending review completed and store its comments atomically.

        Returns False, storing nothing, when the review is no longer pending
        (deleted while the provider was running).
        """
        async with self.db.transaction() as tx:
            changed = await tx.execute(
                """
                UPDATE ai_reviews
                SET status = :status, review_content = :summary, score = :score,
                    ai_provider = :provider, ai_model = :model,
                    files_reviewed = :files_reviewed, lines_reviewed = :lines_reviewed,
                    error_message = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id AND status = :pending
                """,
                {
                    "status": ReviewStatus.COMPLETED.value,
                    "summary": summary,
                    "score": score,
                    "provider": ai_provider,
                    "model": ai_model,
                    "files_reviewed": files_reviewed,
                    "lines_reviewed": lines_reviewed,
                    "id": review_id,
                    "pending": ReviewStatus.PENDING.value,
                },
            )
            if changed == 0:
                return False
            for comment in comments:
                await tx.execute(
                    """
                    INSERT INTO review_comments
                        (ai_review_id, file_path, line_number, severity, title,
                         content, code_snippet, suggested_fix)
                    VALUES
                        (:review_id, :file_path, :line_number, :severity, :title,
                         :content, :code_snippet, :suggested_fix)
                    """,
                    {"review_id": review_id, **comment.model_dump()},
                )
        return True

    async def fail_review(self, review_id: int, message: str) -> bool:
        """Move a pending review to ``failed``; the summary carries the error text."""
        changed = await self.db.execute(
            """
            UPDATE ai_reviews
            SET status = :status, review_content = :summary, error_message = :error,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = :pending
            """,
            {
                "status": ReviewStatus.FAILED.value,
                "summary": f"Review failed: {message}",
                "error": message,
                "id": review_id,
                "pending": ReviewStatus.PENDING.value,
            },
        )
        return changed > 0

    async def mark_comments_posted(self, review_id: int) -> None:
        await self.db.execute(
            "UPDATE review_comments SET posted_to_gitlab = :posted WHERE ai_review_id = :id",
            {"posted": True, "id": review_id},
        )

    async def get_review(self, review_id: int, mr_id: Optional[int] = None) -> Optional[Row]:
        if mr_id is None:
            return await self.db.query_one(
                "SELECT * FROM ai_reviews WHERE id = :id", {"id": review_id}
            )
        return await self.db.query_one(
            "SELECT * FROM ai_reviews WHERE id = :id AND merge_request_id = :mr_id",
            {"id": review_id, "mr_id": mr_id},
        )

    async def list_comments(self, review_id: int) -> List[Row]:
        rows = await self.db.query(
            """
            SELECT * FROM review_comments
            WHERE ai_review_id = :id
            ORDER BY file_path, line_number, id
            """,
            {"id": review_id},
        )
        for row in rows:
            row["posted_to_gitlab"] = bool(row["posted_to_gitlab"])
        return rows

    async def list_reviews_with_comments(self, mr_id: int) -> List[Row]:
        """Reviews of a merge request, newest first, each with its comments."""
        reviews = await self.db.query(
            """
            SELECT * FROM ai_reviews
            WHERE merge_request_id = :mr_id
            ORDER BY created_at DESC, id DESC
            """,
            {"mr_id": mr_id},
        )
        for review in reviews:
            review["comments"] = await self.list_comments(review["id"])
        return reviews

    async def count_reviews(self, mr_id: int, review_type: Optional[str] = None) -> int:
        if review_type is None:
            row = await self.db.query_one(
                "SELECT COUNT(*) AS n FROM ai_reviews WHERE merge_request_id = :mr_id",
                {"mr_id": mr_id},
            )
        else:
            row = await self.db.query_one(
                """
                SELECT COUNT(*) AS n FROM ai_reviews
                WHERE merge_request_id = :mr_id AND review_type = :review_type
                """,
                {"mr_id": mr_id, "review_type": review_type},
            )
        return int(row["n"])

    async def delete_review(self, review_id: int, mr_id: int) -> bool:
        """Delete a review and its comments; the merge request is untouched."""
        async with self.db.transaction() as tx:
            review = await tx.query_one(
                "SELECT id FROM ai_reviews WHERE id = :id AND merge_request_id = :mr_id",
                {"id": review_id, "mr_id": mr_id},
            )
            if review is None:
                return False
            await tx.execute(
                "DELETE FROM review_comments WHERE ai_review_id = :id", {"id": review_id}
            )
            await tx.execute("DELETE FROM ai_reviews WHERE id = :id", {"id": review_id})
        logger.info("Review deleted", review_id=review_id, merge_request_id=mr_id)
        return True

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> Dict[str, Dict[str, Any]]:
        mr_stats = await self.db.query_one(
            """
            SELECT
                COUNT(*) AS total_mrs,
                SUM(CASE WHEN state = 'opened' THEN 1 ELSE 0 END) AS open_mrs,
                SUM(CASE WHEN state = 'merged' THEN 1 ELSE 0 END) AS merged_mrs,
                SUM(CASE WHEN state = 'closed' THEN 1 ELSE 0 END) AS closed_mrs
            FROM merge_requests
            """
        )
        review_stats = await self.db.query_one(
            """
            SELECT
                COUNT(*) AS total_reviews,
                SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed_reviews,
                SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending_reviews,
                SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed_reviews,
                AVG(score) AS avg_score
            FROM ai_reviews
            """
        )

        # SUM() is NULL on an empty table
        merge_requests = {key: int(value or 0) for key, value in mr_stats.items()}
        avg_score = review_stats.pop("avg_score")
        reviews = {key: int(value or 0) for key, value in review_stats.items()}
        reviews["avg_score"] = round(float(avg_score), 2) if avg_score is not None else None

        return {"merge_requests": merge_requests, "reviews": reviews}
