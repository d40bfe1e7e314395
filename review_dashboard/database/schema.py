"""
Database Schema

Tables are declared with SQLAlchemy Core so ``metadata.create_all`` emits
the right DDL for both SQLite and PostgreSQL. Queries elsewhere are plain
SQL against these table and column names.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)

metadata = MetaData()


projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("gitlab_project_id", Integer, nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("namespace", String(255), nullable=False),
    Column("web_url", String(500), nullable=False),
    Column("default_branch", String(255), nullable=False, server_default="main"),
    Column("webhook_token", String(255)),
    Column("ai_enabled", Boolean, nullable=False, server_default=true()),
    # NULL means "use the global default" from Settings
    Column("ai_provider", String(50)),
    Column("ai_model", String(100)),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
)


merge_requests = Table(
    "merge_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, ForeignKey("projects.id"), nullable=False),
    Column("gitlab_mr_id", Integer, nullable=False),
    Column("gitlab_mr_iid", Integer),
    Column("title", String(500), nullable=False),
    Column("description", Text),
    Column("source_branch", String(255), nullable=False),
    Column("target_branch", String(255), nullable=False),
    Column("author_username", String(255), nullable=False),
    Column("state", String(20), nullable=False),
    Column("web_url", String(500), nullable=False),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
    UniqueConstraint("project_id", "gitlab_mr_id", name="uq_merge_requests_project_mr"),
)


ai_reviews = Table(
    "ai_reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("merge_request_id", Integer, ForeignKey("merge_requests.id"), nullable=False),
    Column("review_type", String(20), nullable=False),
    Column("ai_provider", String(50), nullable=False),
    Column("ai_model", String(100), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("review_content", Text),
    Column("score", Integer),
    Column("files_reviewed", Integer, nullable=False, server_default="0"),
    Column("lines_reviewed", Integer, nullable=False, server_default="0"),
    Column("error_message", Text),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
)

Index("ix_ai_reviews_mr_type_status", ai_reviews.c.merge_request_id, ai_reviews.c.review_type, ai_reviews.c.status)


review_comments = Table(
    "review_comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ai_review_id", Integer, ForeignKey("ai_reviews.id"), nullable=False),
    Column("file_path", String(500), nullable=False),
    Column("line_number", Integer),
    Column("severity", String(20), nullable=False),
    Column("title", String(500), nullable=False),
    Column("content", Text, nullable=False),
    Column("code_snippet", Text),
    Column("suggested_fix", Text),
    Column("posted_to_gitlab", Boolean, nullable=False, server_default=false()),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
)

Index("ix_review_comments_review", review_comments.c.ai_review_id)


settings = Table(
    "settings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(100), nullable=False, unique=True),
    Column("value", Text, nullable=False),
    Column("description", Text),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
)
