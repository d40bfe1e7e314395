"""
AI Configuration Routes

Provider API keys, review limits, connection tests, and the model and
template catalogues shown by the dashboard.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from review_dashboard.database import SettingsStore
from review_dashboard.database.settings import DEFAULT_SETTINGS, SECRET_KEYS
from review_dashboard.errors import UpstreamError
from review_dashboard.logging_config import get_logger
from review_dashboard.models import AIConfigUpdate, ConnectionTestRequest
from review_dashboard.routes.dependencies import get_provider_factory, get_settings_store
from review_dashboard.services.orchestrator import ProviderFactory
from review_dashboard.services.prompts import list_templates
from review_dashboard.services.providers import list_models

logger = get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])

MASK = "***"

AI_CONFIG_KEYS = [
    "openai_api_key",
    "anthropic_api_key",
    "review_auto_post",
    "review_min_score",
    "review_max_files",
    "review_max_lines",
]


def _to_setting_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@router.get("/config")
async def get_ai_config(
    settings_store: SettingsStore = Depends(get_settings_store)
) -> Dict[str, str]:
    """Current AI settings; stored API keys are masked."""
    stored = await settings_store.get_many(AI_CONFIG_KEYS)

    config: Dict[str, str] = {}
    for key in AI_CONFIG_KEYS:
        value = stored.get(key, DEFAULT_SETTINGS[key][0])
        if key in SECRET_KEYS:
            value = MASK if value else ""
        config[key] = value
    return config


@router.post("/config")
async def update_ai_config(
    body: AIConfigUpdate,
    settings_store: SettingsStore = Depends(get_settings_store)
) -> Dict[str, str]:
    """
    Update the given AI settings.

    Omitted fields keep their value. An API key equal to the mask leaves the
    stored key unchanged; an explicit null or empty string clears it.
    """
    updates: Dict[str, str] = {}
    for key, value in body.model_dump(exclude_unset=True).items():
        if key in SECRET_KEYS:
            if value == MASK:
                continue
            updates[key] = (value or "").strip()
        elif value is not None:
            updates[key] = _to_setting_value(value)

    await settings_store.set_many(updates)
    return {"message": "AI configuration updated successfully"}


@router.post("/test")
async def test_connection(
    body: ConnectionTestRequest,
    provider_factory: ProviderFactory = Depends(get_provider_factory)
):
    """Send a tiny completion with the given key to check it works."""
    provider = provider_factory(body.provider)

    try:
        await provider.complete(
            "You are a connection test.",
            "Reply with OK.",
            model=provider.TEST_MODEL,
            api_key=body.api_key,
            max_tokens=10,
        )
    except UpstreamError as e:
        logger.warning("AI connection test failed", provider=provider.name, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": f"{provider.display_name} API connection failed: {e.message}",
            },
        )

    logger.info("AI connection test succeeded", provider=provider.name)
    return {
        "success": True,
        "message": f"{provider.display_name} API connection successful",
        "model": provider.TEST_MODEL,
    }


@router.get("/models")
async def get_models() -> Dict[str, Any]:
    return list_models()


@router.get("/templates")
async def get_templates() -> Dict[str, Any]:
    return {"templates": list_templates()}
