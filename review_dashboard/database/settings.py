"""
Settings Store

String key/value pairs edited from the dashboard: GitLab credentials,
provider API keys and review limits. Defaults are seeded at startup
without overwriting values a user already saved.
"""

from typing import Dict, Iterable, Optional

from review_dashboard.database.base import Database
from review_dashboard.logging_config import get_logger
from review_dashboard.models import ProviderSettings

logger = get_logger(__name__)

# key -> (default value, description)
DEFAULT_SETTINGS: Dict[str, tuple] = {
    "gitlab_url": ("", "GitLab instance URL"),
    "gitlab_token": ("", "GitLab API token"),
    "openai_api_key": ("", "OpenAI API key"),
    "anthropic_api_key": ("", "Anthropic API key"),
    "review_auto_post": ("false", "Automatically post reviews to GitLab"),
    "review_min_score": ("7", "Minimum score to auto-approve"),
    "review_max_files": ("20", "Maximum files to review per MR"),
    "review_max_lines": ("1000", "Maximum lines to review per file"),
}

SECRET_KEYS = {"gitlab_token", "openai_api_key", "anthropic_api_key"}

_TRUE_VALUES = {"true", "1", "yes", "on"}


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_int(key: str, value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except ValueError:
        logger.warning("Ignoring malformed setting", key=key, value=value)
        return default


class SettingsStore:
    """Key/value access to the settings table."""

    def __init__(self, db: Database):
        self.db = db

    async def seed_defaults(self) -> None:
        """Insert every default key that is not stored yet."""
        async with self.db.transaction() as tx:
            for key, (value, description) in DEFAULT_SETTINGS.items():
                await tx.execute(
                    """
                    INSERT INTO settings (key, value, description)
                    VALUES (:key, :value, :description)
                    ON CONFLICT (key) DO NOTHING
                    """,
                    {"key": key, "value": value, "description": description},
                )

    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = await self.db.query_one(
            "SELECT value FROM settings WHERE key = :key", {"key": key}
        )
        if row is None:
            return default
        return row["value"]

    async def all(self) -> Dict[str, str]:
        rows = await self.db.query("SELECT key, value FROM settings ORDER BY key")
        return {row["key"]: row["value"] for row in rows}

    async def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        """Return the stored values for ``keys``; absent keys are omitted."""
        wanted = set(keys)
        stored = await self.all()
        return {key: value for key, value in stored.items() if key in wanted}

    async def set_many(self, values: Dict[str, str]) -> None:
        """Upsert several keys in one transaction."""
        if not values:
            return
        async with self.db.transaction() as tx:
            for key, value in values.items():
                description = DEFAULT_SETTINGS.get(key, ("", None))[1]
                await tx.execute(
                    """
                    INSERT INTO settings (key, value, description, updated_at)
                    VALUES (:key, :value, :description, CURRENT_TIMESTAMP)
                    ON CONFLICT (key) DO UPDATE
                    SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                    """,
                    {"key": key, "value": value, "description": description},
                )
        logger.info("Settings updated", keys=sorted(values))

    async def load_provider_settings(self) -> ProviderSettings:
        """Read all settings into their typed form, falling back to defaults."""
        stored = await self.all()

        def raw(key: str) -> Optional[str]:
            return stored.get(key, DEFAULT_SETTINGS[key][0])

        defaults = ProviderSettings()
        return ProviderSettings(
            gitlab_url=(raw("gitlab_url") or "").rstrip("/"),
            gitlab_token=raw("gitlab_token") or "",
            openai_api_key=raw("openai_api_key") or "",
            anthropic_api_key=raw("anthropic_api_key") or "",
            review_auto_post=_parse_bool(raw("review_auto_post"), defaults.review_auto_post),
            review_min_score=_parse_int("review_min_score", raw("review_min_score"), defaults.review_min_score),
            review_max_files=_parse_int("review_max_files", raw("review_max_files"), defaults.review_max_files),
            review_max_lines=_parse_int("review_max_lines", raw("review_max_lines"), defaults.review_max_lines),
        )
