"""
Route Dependencies

FastAPI dependencies that hand the application's Database handle and the
objects built on it to route handlers. Tests replace the provider and
GitLab factories through ``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from review_dashboard.config import Settings
from review_dashboard.database import Database, RecordStore, SettingsStore
from review_dashboard.errors import ConfigurationError
from review_dashboard.services.gitlab_client import GitLabClient
from review_dashboard.services.orchestrator import (
    GitLabClientFactory,
    ProviderFactory,
    ReviewOrchestrator,
    get_review_locks,
)
from review_dashboard.services.providers import get_provider


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_record_store(db: Database = Depends(get_database)) -> RecordStore:
    return RecordStore(db)


def get_settings_store(db: Database = Depends(get_database)) -> SettingsStore:
    return SettingsStore(db)


def get_provider_factory(settings: Settings = Depends(get_app_settings)) -> ProviderFactory:
    return lambda name: get_provider(name, settings)


def get_gitlab_factory(settings: Settings = Depends(get_app_settings)) -> GitLabClientFactory:
    return lambda provider_settings: GitLabClient.from_provider_settings(provider_settings, settings)


def get_orchestrator(
    records: RecordStore = Depends(get_record_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    settings: Settings = Depends(get_app_settings),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
    gitlab_factory: GitLabClientFactory = Depends(get_gitlab_factory),
) -> ReviewOrchestrator:
    return ReviewOrchestrator(
        records,
        settings_store,
        settings=settings,
        provider_factory=provider_factory,
        gitlab_factory=gitlab_factory,
        locks=get_review_locks(),
    )


async def require_gitlab_client(
    settings_store: SettingsStore,
    gitlab_factory: GitLabClientFactory
) -> GitLabClient:
    """
    Build a GitLab client from the stored credentials.

    Raises:
        ConfigurationError: If gitlab_url or gitlab_token is not set
    """
    provider_settings = await settings_store.load_provider_settings()
    if not provider_settings.has_gitlab_credentials:
        raise ConfigurationError("GitLab not configured")
    return gitlab_factory(provider_settings)
