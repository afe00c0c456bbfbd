"""
Configuration
=============
Loads environment variables from .env / api_key.env using python-dotenv.

Environment Variables:
    GITHUB_TOKEN           - Required for opening PRs/issues and merging
    GITHUB_REPOSITORY_URL  - https://github.com/<owner>/<repo> (falls back to git remote)
    GITHUB_REVIEWERS       - CSV of reviewers whose approval counts (and who get review requests)
    COPILOT_API_URL        - OpenAI-compatible chat completions endpoint
    COPILOT_API_KEY        - Primary reasoning-service key (OPENAI_API_KEY also accepted)
    GROQ_API_KEY           - Optional fallback provider
    OPENROUTER_API_KEY     - Optional second fallback provider
    MODEL_NAME             - Primary model (default: gpt-4.1-nano)
    MAX_REPAIR_ITERATIONS  - Build → plan → apply budget per remediation (default: 3)
    BUILD_SANDBOX_IMAGE    - Run builds inside this Docker image instead of on the host
    BUILD_TIMEOUT          - Optional ceiling (seconds) for a single restore/build command

Settings Object:
    Module-level constants are read once at import. Entry points (CLI, HTTP)
    build a single ``Settings`` from them and pass it into every component
    constructor. Nothing below the entry points reads the environment.
"""
import os
from dataclasses import dataclass, field, replace
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv("api_key.env")
load_dotenv()


def _csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _optional_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None


GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_REPOSITORY_URL = os.getenv("GITHUB_REPOSITORY_URL")
GITHUB_REVIEWERS = _csv(os.getenv("GITHUB_REVIEWERS"))

COPILOT_API_URL = os.getenv("COPILOT_API_URL", "https://api.openai.com/v1/chat/completions")
COPILOT_API_KEY = os.getenv("COPILOT_API_KEY") or os.getenv("OPENAI_API_KEY")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
MODEL_NAME = os.getenv("MODEL_NAME", "gpt-4.1-nano")
MODEL_TEMPERATURE = float(os.getenv("MODEL_TEMPERATURE", 0.1))
MODEL_MAX_TOKENS = int(os.getenv("MODEL_MAX_TOKENS", 2000))

# Network timeouts (seconds), one per endpoint family
API_TIMEOUT = int(os.getenv("API_TIMEOUT", 15))
GITHUB_API_TIMEOUT = int(os.getenv("GITHUB_API_TIMEOUT", 20))
OSV_API_TIMEOUT = int(os.getenv("OSV_API_TIMEOUT", 10))

MAX_REPAIR_ITERATIONS = int(os.getenv("MAX_REPAIR_ITERATIONS", 3))
BUILD_TIMEOUT = _optional_int(os.getenv("BUILD_TIMEOUT"))
BUILD_SANDBOX_IMAGE = os.getenv("BUILD_SANDBOX_IMAGE")

SECURITY_FIX_LABEL = os.getenv("SECURITY_FIX_LABEL", "security-fix")
APPROVED_LABEL = os.getenv("APPROVED_LABEL", "approved")

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 3))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, constructed once and passed down explicitly."""
    github_token: str = ""
    github_repository_url: str = ""
    approved_reviewers: List[str] = field(default_factory=list)

    llm_api_url: str = COPILOT_API_URL
    llm_api_key: str = ""
    groq_api_key: str = ""
    openrouter_api_key: str = ""
    model_name: str = MODEL_NAME
    model_temperature: float = MODEL_TEMPERATURE
    model_max_tokens: int = MODEL_MAX_TOKENS

    api_timeout: int = API_TIMEOUT
    github_api_timeout: int = GITHUB_API_TIMEOUT
    osv_api_timeout: int = OSV_API_TIMEOUT

    max_repair_iterations: int = MAX_REPAIR_ITERATIONS
    build_timeout: Optional[int] = BUILD_TIMEOUT
    build_sandbox_image: Optional[str] = BUILD_SANDBOX_IMAGE

    security_fix_label: str = SECURITY_FIX_LABEL
    approved_label: str = APPROVED_LABEL

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from the loaded environment, then apply non-None overrides."""
        settings = cls(
            github_token=GITHUB_TOKEN or "",
            github_repository_url=GITHUB_REPOSITORY_URL or "",
            approved_reviewers=list(GITHUB_REVIEWERS),
            llm_api_key=COPILOT_API_KEY or "",
            groq_api_key=GROQ_API_KEY or "",
            openrouter_api_key=OPENROUTER_API_KEY or "",
        )
        return settings.with_overrides(**overrides)

    def with_overrides(self, **overrides) -> "Settings":
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self
