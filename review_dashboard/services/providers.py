"""
Completion Provider Module

One capability, ``complete(system_instruction, user_prompt, model, api_key,
max_tokens) -> text``, implemented for the two supported AI backends.

Design Decisions:
- A closed set of providers selected by name through ``get_provider``
- Official async SDKs with their own retries disabled: a provider makes
  exactly one attempt, retry policy belongs to the caller
- Every non-2xx response or transport failure becomes an UpstreamError
  carrying the HTTP status (when there is one) and the provider's message
- The API key is passed per call since it lives in the settings table
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

import anthropic
import httpx
import openai

from review_dashboard.config import Settings, get_settings
from review_dashboard.errors import ConfigurationError, UpstreamError
from review_dashboard.logging_config import get_logger
from review_dashboard.models import AIProvider

logger = get_logger(__name__)


class CompletionProvider(ABC):
    """
    Base class for single-turn chat completion backends.

    Subclasses implement ``_call_api`` for one attempt against their SDK and
    translate that SDK's exceptions into UpstreamError.
    """

    name: str = ""
    display_name: str = ""
    TEST_MODEL: str = ""
    MODELS: List[Dict[str, str]] = []

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _http_client(self) -> Optional[httpx.AsyncClient]:
        """Custom HTTP client when a transport is injected (tests)."""
        if self._transport is None:
            return None
        return httpx.AsyncClient(transport=self._transport)

    async def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
    ) -> str:
        """
        Run one chat completion and return the raw response text.

        Raises:
            ConfigurationError: If no API key is given
            UpstreamError: On non-2xx responses, transport errors or empty output
        """
        if not api_key:
            raise ConfigurationError(f"{self.name} API key not configured")

        logger.info(
            "Sending completion request",
            provider=self.name,
            model=model,
            prompt_length=len(user_prompt)
        )

        text = await self._call_api(system_instruction, user_prompt, model, api_key, max_tokens)

        if not text:
            raise UpstreamError("Empty response from provider", service=self.display_name)

        logger.info(
            "Received completion",
            provider=self.name,
            model=model,
            response_length=len(text)
        )
        return text

    @abstractmethod
    async def _call_api(
        self,
        system_instruction: str,
        user_prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
    ) -> str:
        """Make a single API call and return the text of the completion."""


class OpenAIProvider(CompletionProvider):
    """Chat Completions API: system + user messages, text at choices[0].message.content."""

    name = AIProvider.OPENAI.value
    display_name = "OpenAI"
    TEST_MODEL = "gpt-4o-mini"
    MODELS = [
        {"id": "gpt-4o", "name": "GPT-4o", "description": "Most capable general model, best for complex code reviews"},
        {"id": "gpt-4o-mini", "name": "GPT-4o mini", "description": "Fast and cost-effective"},
        {"id": "gpt-4-turbo", "name": "GPT-4 Turbo", "description": "Faster and cheaper than GPT-4"},
        {"id": "gpt-4", "name": "GPT-4", "description": "Original GPT-4 model"},
        {"id": "gpt-3.5-turbo", "name": "GPT-3.5 Turbo", "description": "Good performance, cost-effective"},
    ]

    async def _call_api(
        self,
        system_instruction: str,
        user_prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
    ) -> str:
        client = openai.AsyncOpenAI(
            api_key=api_key,
            max_retries=0,
            timeout=self.settings.ai_timeout_seconds,
            http_client=self._http_client(),
        )
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=self.settings.ai_temperature,
            )
        except openai.APIStatusError as e:
            raise UpstreamError(
                _sdk_error_message(e), upstream_status=e.status_code, service=self.display_name
            ) from e
        except openai.APIError as e:
            raise UpstreamError(str(e), service=self.display_name) from e
        finally:
            await client.close()

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


class AnthropicProvider(CompletionProvider):
    """Messages API: separate system field, max_tokens required, text in content blocks."""

    name = AIProvider.ANTHROPIC.value
    display_name = "Anthropic"
    TEST_MODEL = "claude-3-5-haiku-latest"
    MODELS = [
        {"id": "claude-sonnet-4-20250514", "name": "Claude Sonnet 4", "description": "Balanced performance and cost"},
        {"id": "claude-3-7-sonnet-latest", "name": "Claude 3.7 Sonnet", "description": "Strong reasoning on large diffs"},
        {"id": "claude-3-5-haiku-latest", "name": "Claude 3.5 Haiku", "description": "Fastest and most cost-effective"},
        {"id": "claude-3-opus-20240229", "name": "Claude 3 Opus", "description": "Most capable Claude 3 model"},
    ]

    async def _call_api(
        self,
        system_instruction: str,
        user_prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
    ) -> str:
        client = anthropic.AsyncAnthropic(
            api_key=api_key,
            max_retries=0,
            timeout=self.settings.ai_timeout_seconds,
            http_client=self._http_client(),
        )
        try:
            response = await client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system_instruction,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=self.settings.ai_temperature,
            )
        except anthropic.APIStatusError as e:
            raise UpstreamError(
                _sdk_error_message(e), upstream_status=e.status_code, service=self.display_name
            ) from e
        except anthropic.APIError as e:
            raise UpstreamError(str(e), service=self.display_name) from e
        finally:
            await client.close()

        text_blocks = [block.text for block in response.content if block.type == "text"]
        return "".join(text_blocks).strip()


def _sdk_error_message(error: Exception) -> str:
    """Pull the provider's own error message out of an SDK status error."""
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return getattr(error, "message", None) or str(error)


PROVIDERS: Dict[str, Type[CompletionProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
}


def get_provider(
    name: str,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CompletionProvider:
    """
    Create the provider registered under ``name``.

    Raises:
        ConfigurationError: If the provider is not supported
    """
    provider_cls = PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported provider: {name}")
    return provider_cls(settings=settings, transport=transport)


def list_models() -> Dict[str, List[Dict[str, str]]]:
    """Model catalogue per provider, for the settings UI."""
    return {name: list(provider_cls.MODELS) for name, provider_cls in PROVIDERS.items()}
