"""
LLM Router
==========
Decides which reasoning-service provider to use and manages switching.

Routing Strategy:
    1. Primary: the configured OpenAI-compatible endpoint (COPILOT_API_URL)
    2. On failure (HTTP error, timeout, rate limit) → Groq, then OpenRouter,
       when their keys are configured
    3. When every provider fails the client returns an empty completion and
       the planner treats that as "no plan"

Provider Health Tracking:
    - Track consecutive failures per provider
    - After PROVIDER_COOLDOWN_THRESHOLD failures in a row a provider is
      skipped for PROVIDER_COOLDOWN_SKIP_COUNT selections
    - Reset health counters on a new run
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from secfix.core.config import (
    Settings,
    PROVIDER_COOLDOWN_THRESHOLD, PROVIDER_COOLDOWN_SKIP_COUNT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider Configuration
# ---------------------------------------------------------------------------
@dataclass
class ProviderConfig:
    """Configuration for a single OpenAI-compatible provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    max_retries: int = 2
    timeout_seconds: int = 30

    @property
    def chat_url(self) -> str:
        url = self.base_url.rstrip("/")
        return url if url.endswith("/chat/completions") else f"{url}/chat/completions"


GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GROQ_MODEL = "llama-3.3-70b-versatile"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_MODEL = "openai/gpt-4.1-nano"


def providers_from_settings(settings: Settings) -> List[ProviderConfig]:
    """Primary provider first, then any fallback whose key is set."""
    providers = [
        ProviderConfig(
            name="primary",
            api_key=settings.llm_api_key,
            base_url=settings.llm_api_url,
            model=settings.model_name,
            timeout_seconds=settings.api_timeout,
        )
    ]
    if settings.groq_api_key:
        providers.append(ProviderConfig(
            name="groq",
            api_key=settings.groq_api_key,
            base_url=GROQ_BASE_URL,
            model=GROQ_MODEL,
            timeout_seconds=settings.api_timeout,
        ))
    if settings.openrouter_api_key:
        providers.append(ProviderConfig(
            name="openrouter",
            api_key=settings.openrouter_api_key,
            base_url=OPENROUTER_BASE_URL,
            model=OPENROUTER_MODEL,
            timeout_seconds=settings.api_timeout,
            max_retries=1,
        ))
    return providers


# ---------------------------------------------------------------------------
# Provider Health Tracker
# ---------------------------------------------------------------------------
@dataclass
class ProviderHealth:
    """Tracks consecutive failures and cooldown for a provider."""
    consecutive_failures: int = 0
    is_healthy: bool = True
    max_failures: int = PROVIDER_COOLDOWN_THRESHOLD
    cooldown_remaining: int = 0

    def record_failure(self) -> None:
        """Record a failure. Enter cooldown after max consecutive failures."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.is_healthy = False
            self.cooldown_remaining = PROVIDER_COOLDOWN_SKIP_COUNT
            logger.warning(
                "Provider entering cooldown after %d failures (skip %d calls)",
                self.consecutive_failures, self.cooldown_remaining,
            )

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def tick_cooldown(self) -> None:
        """Decrement cooldown. Re-enable when it expires."""
        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            if self.cooldown_remaining <= 0:
                self.is_healthy = True
                # One post-cooldown failure re-triggers the cooldown
                self.consecutive_failures = max(1, self.max_failures - 1)
                logger.info("Provider cooldown expired, re-enabled (cautious)")

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.is_healthy = True
        self.cooldown_remaining = 0


# ---------------------------------------------------------------------------
# LLM Router
# ---------------------------------------------------------------------------
class LLMRouter:
    """
    Routes completion requests to the best available provider.

    Usage:
        router = LLMRouter(providers_from_settings(settings))
        provider = router.get_provider()
        # ... make request ...
        router.report_success(provider.name)   # or report_failure(...)
    """

    def __init__(self, providers: List[ProviderConfig]) -> None:
        if not providers:
            raise ValueError("at least one provider is required")
        self._providers = list(providers)
        self._health: Dict[str, ProviderHealth] = {p.name: ProviderHealth() for p in self._providers}

    @property
    def providers(self) -> List[ProviderConfig]:
        return list(self._providers)

    def get_provider(self) -> ProviderConfig:
        """First healthy provider; the primary when none are healthy."""
        for h in self._health.values():
            h.tick_cooldown()

        for provider in self._providers:
            if self._health[provider.name].is_healthy:
                logger.debug("Selected provider: %s", provider.name)
                return provider

        logger.warning("All providers unhealthy, falling back to primary")
        return self._providers[0]

    def get_fallback_provider(self, *exclude_names: str) -> Optional[ProviderConfig]:
        """Next healthy provider not in ``exclude_names``, or None."""
        for provider in self._providers:
            if provider.name in exclude_names:
                continue
            if self._health[provider.name].is_healthy:
                logger.info("Falling back to %s (skipping %s)", provider.name, ", ".join(exclude_names))
                return provider
        return None

    def report_success(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_success()

    def report_failure(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_failure()

    def reset(self) -> None:
        for health in self._health.values():
            health.reset()

    def get_health(self, provider_name: str) -> Optional[ProviderHealth]:
        return self._health.get(provider_name)
