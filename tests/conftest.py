"""Shared test fixtures for the strategy webhook relay."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from src.config import N8NConfig, RetryPolicy
from src.models import Step
from src.submissions.manager import SubmissionManager
from src.webhook.dispatch import StepDispatcher
from src.webhook.service import WebhookService

ALL_URLS: dict[Step, str] = {step: f"https://n8n.test/webhook/{step.value}" for step in Step}

Handler = Callable[[httpx.Request], httpx.Response]


def make_config(**kwargs: Any) -> N8NConfig:
    """Factory for N8NConfig with every step URL configured."""
    defaults: dict[str, Any] = {
        "urls": dict(ALL_URLS),
        "auth_token": None,
        "signing_secret": None,
        "is_production": False,
    }
    defaults.update(kwargs)
    return N8NConfig(**defaults)


def mock_client_factory(handler: Handler) -> Callable[[], httpx.AsyncClient]:
    """AsyncClient factory routing every request through handler."""

    def _factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


def make_dispatcher(
    handler: Handler,
    policy: RetryPolicy | None = None,
    sleep: AsyncMock | None = None,
) -> StepDispatcher:
    return StepDispatcher(
        policy or RetryPolicy.for_environment(False),
        client_factory=mock_client_factory(handler),
        sleep=sleep or AsyncMock(),
    )


def make_service(handler: Handler, **config_kwargs: Any) -> WebhookService:
    config = make_config(**config_kwargs)
    return WebhookService(config, dispatcher=make_dispatcher(handler, config.retry_policy))


class RecordingHandler:
    """MockTransport handler replaying queued responses and recording requests.

    Queue items are httpx.Response objects or httpx.TransportError subclasses,
    which are raised for that attempt.
    """

    def __init__(self, *responses: httpx.Response | type[httpx.TransportError]) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert self._responses, "unexpected extra request"
        item = self._responses.pop(0)
        if isinstance(item, type):
            raise item("simulated transport failure", request=request)
        return item


@pytest.fixture
def submissions_db_path(tmp_path: Path) -> str:
    return str(tmp_path / "submissions.db")


@pytest.fixture
def manager(submissions_db_path: str) -> SubmissionManager:
    return SubmissionManager(submissions_db_path)
