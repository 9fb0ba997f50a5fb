"""N8N destination and retry configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.models import Step

STEP_URL_ENV_VARS: dict[Step, str] = {
    Step.AUDIENCE_ARCHITECT: "N8N_WEBHOOK_AUDIENCE_ARCHITECT",
    Step.CONTENT_COMPASS: "N8N_WEBHOOK_CONTENT_COMPASS",
    Step.MESSAGE_MULTIPLIER: "N8N_WEBHOOK_MESSAGE_MULTIPLIER",
    Step.EVENT_FUNNEL: "N8N_WEBHOOK_EVENT_FUNNEL",
    Step.LANDING_PAGE: "N8N_WEBHOOK_LANDING_PAGE",
    Step.OFFER_PROMPT: "N8N_WEBHOOK_OFFER_PROMPT",
}


class RetryPolicy(BaseModel):
    """Timeout and backoff tuning for a single step call."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(ge=0)
    initial_delay_ms: int = Field(ge=0)
    max_delay_ms: int = Field(ge=0)
    multiplier: float = Field(gt=0)
    timeout_seconds: float = Field(gt=0)

    @classmethod
    def for_environment(cls, is_production: bool) -> RetryPolicy:
        if is_production:
            return cls(
                max_retries=3,
                initial_delay_ms=1000,
                max_delay_ms=15000,
                multiplier=1.5,
                timeout_seconds=120,
            )
        return cls(
            max_retries=2,
            initial_delay_ms=500,
            max_delay_ms=5000,
            multiplier=1.5,
            timeout_seconds=60,
        )


class N8NConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    urls: dict[Step, str] = Field(default_factory=dict)
    auth_token: str | None = None
    signing_secret: str | None = None
    is_production: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> N8NConfig:
        """Create N8NConfig from environment variables.

        Empty values are treated as unset.
        """
        env = os.environ if environ is None else environ
        urls = {
            step: env[var] for step, var in STEP_URL_ENV_VARS.items() if env.get(var)
        }
        return cls(
            urls=urls,
            auth_token=env.get("N8N_AUTH_TOKEN") or None,
            signing_secret=env.get("N8N_WEBHOOK_SIGNATURE_SECRET") or None,
            is_production=env.get("NODE_ENV") == "production",
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.for_environment(self.is_production)

    def url_for(self, step: Step) -> str | None:
        """Return the destination URL for a step, or None if unconfigured."""
        return self.urls.get(Step(step)) or None
