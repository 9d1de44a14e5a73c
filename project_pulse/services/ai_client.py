"""AI provider client.

Sends a fully rendered prompt to the configured chat-completion provider
(OpenAI or Anthropic Claude) and returns the text of the reply.
"""

import logging
from typing import Any

import httpx

from ..core.config import Settings
from .exceptions import AIProviderError

logger = logging.getLogger(__name__)


class AIClient:
    """
    Thin async client over the provider HTTP APIs.

    A shared ``httpx.AsyncClient`` may be passed in; otherwise a short-lived
    client is opened per call.
    """

    OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
    ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
    ANTHROPIC_VERSION = "2023-06-01"

    SYSTEM_PROMPT = (
        "You are an AI assistant that helps manage construction and renovation "
        "projects. Follow the instructions in the prompt exactly and respond in "
        "the requested format."
    )

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._http_client = http_client

    @property
    def provider(self) -> str:
        return self._settings.ai_provider

    @property
    def model(self) -> str:
        return self._settings.ai_model

    @property
    def is_configured(self) -> bool:
        return self._settings.ai_enabled

    async def complete(
        self,
        prompt: str,
        provider: str | None = None,
        model: str | None = None,
    ) -> str:
        """
        Run a prompt and return the model's text output.

        Raises:
            AIProviderError: on missing credentials, transport errors,
                non-200 responses or responses without text.
        """
        provider = provider or self.provider
        model = model or self.model

        if provider == "claude":
            return await self._call_claude(prompt, model)
        if provider == "openai":
            return await self._call_openai(prompt, model)
        raise AIProviderError(f"Unsupported AI provider: {provider}")

    async def _call_openai(self, prompt: str, model: str) -> str:
        if not self._settings.openai_api_key:
            raise AIProviderError("OpenAI API key not configured")

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._settings.ai_temperature,
            "max_tokens": self._settings.ai_max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        data = await self._post(self.OPENAI_API_URL, payload, headers, "OpenAI")

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AIProviderError(f"Unexpected OpenAI response shape: {e}") from e

    async def _call_claude(self, prompt: str, model: str) -> str:
        if not self._settings.anthropic_api_key:
            raise AIProviderError("Anthropic API key not configured")

        payload = {
            "model": model,
            "system": self.SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._settings.ai_temperature,
            "max_tokens": self._settings.ai_max_tokens,
        }
        headers = {
            "x-api-key": self._settings.anthropic_api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        data = await self._post(self.ANTHROPIC_API_URL, payload, headers, "Claude")

        try:
            blocks = data["content"]
            return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        except (KeyError, TypeError) as e:
            raise AIProviderError(f"Unexpected Claude response shape: {e}") from e

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        label: str,
    ) -> dict[str, Any]:
        timeout = self._settings.ai_timeout_seconds
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{label} API request failed: {e}")
            raise AIProviderError(f"{label} API request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"{label} API error: {response.status_code} - {response.text[:500]}")
            raise AIProviderError(f"{label} API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"{label} API returned a non-JSON body: {response.text[:200]}")
            raise AIProviderError(f"{label} API returned invalid JSON") from e

        if not isinstance(data, dict):
            raise AIProviderError(f"Unexpected {label} response shape: {type(data).__name__}")
        return data
