"""FastAPI application exposing submission, regeneration, callback and retry endpoints."""

from __future__ import annotations

import json
import logging
import os
from datetime import timedelta
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.config import N8NConfig
from src.models import (
    AudienceArchitectRequest,
    CallbackPayload,
    LandingPageRequest,
    OfferPromptRequest,
    RegenerateRequest,
    SubmissionKind,
    SubmissionStatus,
)
from src.pipeline.chain import MissingEventDataError, StrategyChain, initial_component_status
from src.submissions.manager import (
    InvalidStepError,
    SubmissionManager,
    SubmissionNotFoundError,
)
from src.webhook.service import WebhookService
from src.webhook.signing import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    config = N8NConfig.from_env()
    db_path = os.environ.get("SUBMISSIONS_DB_PATH", "data/submissions.db")
    stale_minutes = int(os.environ.get("STALE_AFTER_MINUTES", "10"))
    return create_app(
        WebhookService(config),
        SubmissionManager(db_path),
        callback_secret=config.signing_secret,
        stale_after=timedelta(minutes=stale_minutes),
    )


def _validation_error(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Validation error",
            "details": exc.errors(include_url=False, include_context=False),
        },
        status_code=400,
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except json.JSONDecodeError:
        return None


def create_app(
    service: WebhookService,
    manager: SubmissionManager,
    callback_secret: str | None = None,
    stale_after: timedelta = timedelta(minutes=10),
) -> FastAPI:
    """Create the submission API around an injected service and manager."""
    app = FastAPI(docs_url=None, redoc_url=None)
    chain = StrategyChain(service, manager)

    async def run_chain(submission_id: str) -> None:
        # Failure is already persisted on the submission by the chain.
        try:
            await chain.run(submission_id)
        except Exception:
            logger.exception("Background step chain failed submission_id=%s", submission_id)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/audience-architect")
    async def audience_architect(
        request: Request, background_tasks: BackgroundTasks,
    ) -> JSONResponse:
        try:
            form = AudienceArchitectRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _validation_error(exc)

        submission = manager.create(
            kind=SubmissionKind.ICP,
            inputs=form.to_inputs(),
            title=f"Audience Architect: {form.product}",
            component_status=initial_component_status(form.generate_landing_page),
        )
        background_tasks.add_task(run_chain, submission.id)
        return JSONResponse({
            "id": submission.id,
            "message": "Form submitted successfully. Results will be available shortly.",
        })

    @app.post("/api/offer-prompt")
    async def offer_prompt(request: Request) -> JSONResponse:
        try:
            form = OfferPromptRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _validation_error(exc)

        try:
            submission, result = await chain.run_offer_prompt(form)
        except Exception as exc:
            logger.error("Offer prompt webhook failed error=%s", exc)
            return JSONResponse(
                {"error": "Offer prompt request failed", "details": str(exc)},
                status_code=500,
            )
        completed = submission.status == SubmissionStatus.COMPLETED
        return JSONResponse({
            "id": submission.id,
            "status": result.status.value,
            "payload": result.payload,
            "message": (
                "Offer prompt generated successfully." if completed
                else "Offer prompt generation failed."
            ),
        })

    @app.post("/api/generate-landing-page")
    async def generate_landing_page(
        request: Request, background_tasks: BackgroundTasks,
    ) -> JSONResponse:
        try:
            form = LandingPageRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _validation_error(exc)

        try:
            submission = chain.prepare_event_steps(form)
        except SubmissionNotFoundError:
            return JSONResponse({"error": "Submission not found"}, status_code=404)

        background_tasks.add_task(run_chain, submission.id)
        return JSONResponse({
            "id": submission.id,
            "message": (
                "Landing page generation started. Results will be available shortly."
                if form.generate_landing_page
                else "Event funnel generation started. Results will be available shortly."
            ),
        })

    @app.post("/api/regenerate-component")
    async def regenerate_component(request: Request) -> JSONResponse:
        try:
            form = RegenerateRequest.model_validate(await _read_json(request))
        except ValidationError:
            return JSONResponse({"error": "Missing submissionId or component"}, status_code=400)

        try:
            _, result = await chain.regenerate(form.submission_id, form.component)
        except InvalidStepError:
            return JSONResponse(
                {"error": f"Invalid component: {form.component}"}, status_code=400,
            )
        except MissingEventDataError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        except SubmissionNotFoundError:
            return JSONResponse({"error": "Submission not found"}, status_code=404)
        except Exception as exc:
            logger.error(
                "Regenerate failed submission_id=%s component=%s error=%s",
                form.submission_id, form.component, exc,
            )
            return JSONResponse({"error": str(exc)}, status_code=500)

        return JSONResponse({
            "success": True,
            "status": result.status.value,
            "component": form.component,
        })

    @app.post("/api/callback")
    async def callback(request: Request) -> JSONResponse:
        body = await request.body()
        if callback_secret:
            signature = request.headers.get(SIGNATURE_HEADER, "")
            if not verify_signature(callback_secret, body, signature):
                logger.warning("Callback rejected: invalid signature")
                return JSONResponse({"error": "Invalid webhook signature"}, status_code=401)

        try:
            data = json.loads(body)
            if not isinstance(data, dict) or data.get("payload") in (None, ""):
                raise ValueError("payload missing")
            payload = CallbackPayload.model_validate(data)
        except (ValueError, ValidationError):
            logger.warning("Callback validation failed")
            return JSONResponse(
                {"error": "Missing required fields: submissionId, step, payload"},
                status_code=400,
            )

        try:
            submission = manager.apply_callback(payload)
        except InvalidStepError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        except SubmissionNotFoundError as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)

        return JSONResponse({
            "ok": True,
            "submissionId": submission.id,
            "step": payload.step,
            "componentStatus": submission.component_status[payload.step].value,
            "overallStatus": submission.status.value,
        })

    @app.get("/api/submissions")
    async def list_submissions(
        kind: SubmissionKind | None = None,
        status: SubmissionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> JSONResponse:
        items = manager.list_submissions(kind=kind, status=status, limit=limit, offset=offset)
        return JSONResponse([s.model_dump(mode="json") for s in items])

    @app.post("/api/submissions/check-stale")
    async def check_stale() -> JSONResponse:
        results = manager.sweep_stale(stale_after)
        return JSONResponse({
            "checked": len(results),
            "updated": len(results),
            "submissions": results,
        })

    @app.get("/api/submissions/{submission_id}")
    async def get_submission(submission_id: str) -> JSONResponse:
        submission = manager.get(submission_id)
        if submission is None:
            return JSONResponse({"error": "Submission not found"}, status_code=404)
        return JSONResponse(submission.model_dump(mode="json"))

    @app.delete("/api/submissions/{submission_id}")
    async def delete_submission(submission_id: str) -> JSONResponse:
        if not manager.delete(submission_id):
            return JSONResponse({"error": "Submission not found"}, status_code=404)
        return JSONResponse({"ok": True})

    @app.post("/api/submissions/{submission_id}/retry")
    async def retry_submission(
        submission_id: str, background_tasks: BackgroundTasks,
    ) -> JSONResponse:
        try:
            manager.reset_for_retry(submission_id)
        except SubmissionNotFoundError:
            return JSONResponse({"error": "Submission not found"}, status_code=404)
        background_tasks.add_task(run_chain, submission_id)
        return JSONResponse({
            "message": "Retry initiated successfully. Processing will resume in the background.",
            "submissionId": submission_id,
        })

    return app
