"""Tests for WebhookService step submission."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.config import N8NConfig
from src.models import Step, StepStatus
from src.webhook.dispatch import StepDispatchError
from src.webhook.service import StepConfigurationError, WebhookService
from src.webhook.signing import sign_body
from tests.conftest import ALL_URLS, RecordingHandler, make_service


class TestStepUrl:
    def test_configured_url(self) -> None:
        service = WebhookService(N8NConfig(urls={Step.OFFER_PROMPT: "https://n8n/o"}))
        assert service.get_step_url(Step.OFFER_PROMPT) == "https://n8n/o"

    def test_missing_url_is_none(self) -> None:
        service = WebhookService(N8NConfig())
        assert service.get_step_url(Step.OFFER_PROMPT) is None


class TestSubmitStep:
    @pytest.mark.asyncio
    async def test_missing_url_raises_without_network(self) -> None:
        dispatcher = AsyncMock()
        service = WebhookService(N8NConfig(), dispatcher=dispatcher)

        with pytest.raises(StepConfigurationError, match="contentCompass"):
            await service.submit_step(Step.CONTENT_COMPASS, "sub-1", {"a": 1})

        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_posts_body_to_step_url(self) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"topics": ["t"]}))
        service = make_service(handler)
        previous = {"audienceArchitect": {"persona": "Pat"}}

        result = await service.submit_step(
            Step.CONTENT_COMPASS, "sub-1", {"targetMarket": "x"}, previous,
        )

        assert result.payload == {"topics": ["t"]}
        assert result.status == StepStatus.COMPLETED
        request = handler.requests[0]
        assert str(request.url) == ALL_URLS[Step.CONTENT_COMPASS]
        body = json.loads(request.content)
        assert body["submissionId"] == "sub-1"
        assert body["step"] == "contentCompass"
        assert body["inputs"] == {"targetMarket": "x"}
        assert body["previousOutput"] == previous
        assert "timestamp" in body
        assert "Authorization" not in request.headers
        assert "X-Signature" not in request.headers

    @pytest.mark.asyncio
    async def test_landing_page_enveloped_and_aliased(self) -> None:
        handler = RecordingHandler(httpx.Response(200, json=[{"payload": {"html": "<p/>"}}]))
        service = make_service(handler)

        result = await service.submit_step(
            Step.LANDING_PAGE, "sub-2", {"eventName": "Summit"},
        )

        body = json.loads(handler.requests[0].content)
        assert set(body) == {"payload"}
        assert body["payload"]["step"] == "landingPage"
        assert body["payload"]["inputs"] == {"eventName": "Summit", "event-name": "Summit"}
        assert result.payload == {"html": "<p/>"}

    @pytest.mark.asyncio
    async def test_auth_and_signature_headers(self) -> None:
        handler = RecordingHandler(httpx.Response(200, json={}))
        service = make_service(handler, auth_token="tok", signing_secret="shh")

        await service.submit_step(Step.OFFER_PROMPT, "sub-3", {"programName": "P"})

        request = handler.requests[0]
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Signature"] == sign_body("shh", request.content)

    @pytest.mark.asyncio
    async def test_failed_status_reported(self) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"status": "failed"}))
        service = make_service(handler)

        result = await service.submit_step(Step.EVENT_FUNNEL, "sub-4", {})

        assert result.status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_dispatch_error_propagates(self) -> None:
        handler = RecordingHandler(httpx.Response(401, text="bad token"))
        service = make_service(handler)

        with pytest.raises(StepDispatchError) as exc_info:
            await service.submit_step(Step.AUDIENCE_ARCHITECT, "sub-5", {})

        assert exc_info.value.status_code == 401
        assert exc_info.value.step == "audienceArchitect"

    def test_build_request_signature_covers_exact_bytes(self) -> None:
        service = WebhookService(N8NConfig(signing_secret="shh"))
        raw, headers = service.build_request(Step.CONTENT_COMPASS, "sub-6", {"a": 1})
        assert headers["X-Signature"] == sign_body("shh", raw)
