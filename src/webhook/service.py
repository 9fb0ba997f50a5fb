"""Step submission to N8N: resolve, build, sign, dispatch, normalize."""

from __future__ import annotations

import logging
from typing import Any

from src.config import N8NConfig
from src.models import Step, StepResult, WebhookPayload
from src.webhook.dispatch import StepDispatcher
from src.webhook.normalizer import normalize_response
from src.webhook.request_builder import build_step_body, serialize_body, wrap_envelope
from src.webhook.signing import SIGNATURE_HEADER, build_headers

logger = logging.getLogger(__name__)


class StepConfigurationError(Exception):
    """Raised when no webhook URL is configured for a step."""

    def __init__(self, step: Step | str) -> None:
        self.step = Step(step).value
        super().__init__(f"No webhook URL configured for step: {self.step}")


class WebhookService:
    """Submits individual pipeline steps to their N8N workflows."""

    def __init__(
        self,
        config: N8NConfig,
        dispatcher: StepDispatcher | None = None,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher or StepDispatcher(config.retry_policy)

    @classmethod
    def from_env(cls) -> WebhookService:
        return cls(N8NConfig.from_env())

    @property
    def config(self) -> N8NConfig:
        return self._config

    def get_step_url(self, step: Step) -> str | None:
        return self._config.url_for(step)

    def build_request(
        self,
        step: Step,
        submission_id: str,
        inputs: dict[str, Any],
        previous_output: dict[str, Any] | None = None,
    ) -> tuple[bytes, dict[str, str]]:
        """Return the serialized body and headers for one step call."""
        payload = WebhookPayload(submission_id=submission_id, inputs=inputs)
        body = build_step_body(step, payload, previous_output)
        raw = serialize_body(wrap_envelope(step, body))
        headers = build_headers(
            raw,
            auth_token=self._config.auth_token,
            signing_secret=self._config.signing_secret,
        )
        return raw, headers

    async def submit_step(
        self,
        step: Step,
        submission_id: str,
        inputs: dict[str, Any],
        previous_output: dict[str, Any] | None = None,
    ) -> StepResult:
        """Submit one step and return its normalized result.

        Raises StepConfigurationError before any network call when the
        step has no URL. Dispatch errors propagate unchanged.
        """
        step = Step(step)
        url = self.get_step_url(step)
        if not url:
            raise StepConfigurationError(step)

        raw, headers = self.build_request(step, submission_id, inputs, previous_output)
        logger.info(
            "Submitting step to N8N step=%s submission_id=%s bytes=%d signed=%s",
            step.value, submission_id, len(raw), SIGNATURE_HEADER in headers,
        )
        resp = await self._dispatcher.dispatch(step, url, raw, headers)
        return normalize_response(step, resp.json())
