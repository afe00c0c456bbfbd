"""
LLM Client
==========
Asynchronous client for the reasoning service.

    complete(system_prompt, user_prompt) -> str

The returned text is untrusted: callers must validate its structure before
acting on it (see ResolutionPlanner). An empty string means every provider
failed.

Provider Fallback:
    - Primary: OpenAI-compatible endpoint from COPILOT_API_URL / MODEL_NAME
    - Fallback: the next healthy provider from the LLMRouter
    - Fallback triggers on: HTTP error, timeout, rate limit, empty response
    - Each provider has independent retry logic (max_retries per provider)
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from secfix.core.config import Settings
from secfix.llm.router import LLMRouter, ProviderConfig, providers_from_settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Raw completion text from one provider."""
    text: str
    provider_name: str
    success: bool = True
    error: str = ""


class LLMClient:
    """
    Async HTTP client for OpenAI-compatible chat completion endpoints.

    Usage:
        client = LLMClient(settings)
        text = await client.complete("You are...", "Analyze this build...")
        await client.close()
    """

    def __init__(self, settings: Settings, router: Optional[LLMRouter] = None) -> None:
        self.settings = settings
        self.router = router or LLMRouter(providers_from_settings(settings))
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(float(self.settings.api_timeout)))
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def call(self, system_prompt: str, user_prompt: str, provider: ProviderConfig) -> LLMResponse:
        """Send one prompt to ``provider`` with per-provider retries."""
        if not provider.api_key:
            return LLMResponse(text="", provider_name=provider.name, success=False,
                               error=f"No API key configured for {provider.name}")

        for attempt in range(1, provider.max_retries + 1):
            try:
                text = await self._call_openai_compatible(system_prompt, user_prompt, provider)
                if text and text.strip():
                    return LLMResponse(text=text, provider_name=provider.name)
                logger.warning("Provider %s attempt %d: empty response", provider.name, attempt)

            except httpx.TimeoutException:
                logger.warning("Provider %s attempt %d: timeout", provider.name, attempt)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("Provider %s attempt %d: HTTP %d", provider.name, attempt, status)
                if status == 429:
                    break  # Rate limited: switch provider immediately
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, e)

        return LLMResponse(
            text="",
            provider_name=provider.name,
            success=False,
            error=f"All {provider.max_retries} retries exhausted for {provider.name}",
        )

    async def _call_openai_compatible(self, system_prompt: str, user_prompt: str, provider: ProviderConfig) -> str:
        http = await self._get_http()
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.model_temperature,
            "max_tokens": self.settings.model_max_tokens,
        }
        resp = await http.post(provider.chat_url, json=payload, headers=headers,
                               timeout=provider.timeout_seconds)
        resp.raise_for_status()
        data = resp.json()

        try:
            choices = data.get("choices", [])
            if choices:
                return choices[0].get("message", {}).get("content", "") or ""
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Completion text from the first provider that answers; "" when all fail."""
        primary = self.router.get_provider()
        response = await self.call(system_prompt, user_prompt, primary)
        if response.success:
            self.router.report_success(primary.name)
            return response.text

        self.router.report_failure(primary.name)
        tried = [primary.name]
        fallback = self.router.get_fallback_provider(*tried)
        while fallback is not None:
            response = await self.call(system_prompt, user_prompt, fallback)
            if response.success:
                self.router.report_success(fallback.name)
                return response.text
            self.router.report_failure(fallback.name)
            tried.append(fallback.name)
            fallback = self.router.get_fallback_provider(*tried)

        logger.error("All reasoning providers failed")
        return ""
