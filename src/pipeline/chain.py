"""Progressive step chain for audience strategy submissions.

audienceArchitect -> contentCompass -> messageMultiplier, then
eventFunnel -> landingPage when a landing page was requested. Each step
receives the previous step's payload as previousOutput, and every result
is persisted as soon as it arrives.
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

from src.models import (
    EVENT_FIELDS,
    OPTIONAL_EVENT_FIELDS,
    ComponentStatus,
    LandingPageRequest,
    OfferPromptRequest,
    Step,
    StepResult,
    StepStatus,
    Submission,
    SubmissionKind,
    SubmissionStatus,
)
from src.submissions.manager import CALLBACK_STEPS, InvalidStepError, SubmissionManager
from src.webhook.service import WebhookService

logger = logging.getLogger(__name__)


class ChainLink(NamedTuple):
    step: Step
    previous: Step | None


CHAIN: tuple[ChainLink, ...] = (
    ChainLink(Step.AUDIENCE_ARCHITECT, None),
    ChainLink(Step.CONTENT_COMPASS, Step.AUDIENCE_ARCHITECT),
    ChainLink(Step.MESSAGE_MULTIPLIER, Step.CONTENT_COMPASS),
    ChainLink(Step.EVENT_FUNNEL, Step.MESSAGE_MULTIPLIER),
    ChainLink(Step.LANDING_PAGE, Step.EVENT_FUNNEL),
)
EVENT_STEPS = frozenset({Step.EVENT_FUNNEL, Step.LANDING_PAGE})
_PREVIOUS: dict[Step, Step | None] = {link.step: link.previous for link in CHAIN}


class MissingEventDataError(ValueError):
    """Raised when an event step is run on a submission without event details."""

    def __init__(self, step: Step) -> None:
        self.step = Step(step).value
        super().__init__(f"Event details are required for step: {self.step}")


def initial_component_status(generate_landing_page: bool) -> dict[str, ComponentStatus]:
    event_status = (
        ComponentStatus.PENDING if generate_landing_page else ComponentStatus.NOT_REQUESTED
    )
    return {
        link.step.value: event_status if link.step in EVENT_STEPS else ComponentStatus.PENDING
        for link in CHAIN
    }


def event_inputs(inputs: dict[str, Any]) -> dict[str, Any] | None:
    """Event fields for the funnel steps, or None if a required one is missing."""
    if not all(inputs.get(name) for name in EVENT_FIELDS):
        return None
    selected = {name: inputs[name] for name in EVENT_FIELDS}
    for name in OPTIONAL_EVENT_FIELDS:
        if inputs.get(name):
            selected[name] = inputs[name]
    return selected


def step_inputs(step: Step, inputs: dict[str, Any]) -> dict[str, Any] | None:
    base = {"targetMarket": inputs.get("targetMarket"), "product": inputs.get("product")}
    if step not in EVENT_STEPS:
        return base
    events = event_inputs(inputs)
    if events is None:
        return None
    return {**base, **events}


def previous_output(submission: Submission, step: Step) -> dict[str, Any] | None:
    """The predecessor's stored payload keyed by its step name, if there is one."""
    previous = _PREVIOUS.get(Step(step))
    if previous is None or previous.value not in submission.components:
        return None
    return {previous.value: submission.components[previous.value]}


def offer_title(payload: Any, program_name: str) -> str:
    content = payload.get("content") if isinstance(payload, dict) else None
    title = content.get("title") if isinstance(content, dict) else None
    if isinstance(title, str) and title:
        return title
    return f"Offer Prompt: {program_name}"


class StrategyChain:
    """Runs the step chain for a submission against N8N."""

    def __init__(self, service: WebhookService, manager: SubmissionManager) -> None:
        self._service = service
        self._manager = manager

    async def _run_step(self, submission_id: str, step: Step) -> StepResult:
        """Submit one step with its predecessor's output and persist the result.

        On error the step and the submission are marked failed and the
        error is re-raised.
        """
        submission = self._manager.require(submission_id)
        payload_inputs = step_inputs(step, submission.inputs)
        if payload_inputs is None:
            raise MissingEventDataError(step)

        self._manager.set_component_status(submission_id, step, ComponentStatus.PENDING)
        logger.info("Starting step step=%s submission_id=%s", step.value, submission_id)
        try:
            result = await self._service.submit_step(
                step, submission_id, payload_inputs, previous_output(submission, step),
            )
        except Exception as exc:
            self._manager.mark_failed(submission_id, str(exc), step=step)
            raise
        self._manager.record_step_result(submission_id, step, result)
        logger.info(
            "Step completed and saved step=%s status=%s submission_id=%s",
            step.value, result.status.value, submission_id,
        )
        return result

    def _finish(self, submission_id: str) -> Submission:
        """Roll component statuses up into the submission status."""
        submission = self._manager.require(submission_id)
        statuses = submission.component_status.values()
        if any(s == ComponentStatus.FAILED for s in statuses):
            final = SubmissionStatus.FAILED
        elif any(s == ComponentStatus.PENDING for s in statuses):
            final = SubmissionStatus.PENDING
        else:
            final = SubmissionStatus.COMPLETED
        logger.info("Step chain finished submission_id=%s status=%s", submission_id, final.value)
        return self._manager.finish(submission_id, final)

    async def run(self, submission_id: str) -> Submission:
        """Run every pending step of the chain.

        Steps already completed with a stored payload are skipped, which
        lets a retried submission resume where it failed. Event steps on a
        submission without event details are marked not_requested.
        """
        current: Step | None = None
        try:
            for link in CHAIN:
                current = link.step
                submission = self._manager.require(submission_id)
                status = submission.component_status.get(link.step.value)
                if status == ComponentStatus.NOT_REQUESTED:
                    continue
                if (
                    status == ComponentStatus.COMPLETED
                    and link.step.value in submission.components
                ):
                    logger.info(
                        "Skipping completed step step=%s submission_id=%s",
                        link.step.value, submission_id,
                    )
                    continue
                if step_inputs(link.step, submission.inputs) is None:
                    logger.warning(
                        "Skipping step without event data step=%s submission_id=%s",
                        link.step.value, submission_id,
                    )
                    self._manager.set_component_status(
                        submission_id, link.step, ComponentStatus.NOT_REQUESTED,
                    )
                    continue
                await self._run_step(submission_id, link.step)
        except Exception as exc:
            logger.error(
                "Step chain failed submission_id=%s step=%s error=%s",
                submission_id, current.value if current else None, exc,
            )
            raise

        return self._finish(submission_id)

    async def regenerate(
        self, submission_id: str, step: Step | str,
    ) -> tuple[Submission, StepResult]:
        """Re-run a single step against its predecessor's stored output.

        A completed eventFunnel also refreshes the landing page when one
        was requested earlier. A failed landing page refresh is recorded on
        the submission and does not fail the regeneration itself.
        """
        try:
            step = Step(step)
        except ValueError:
            raise InvalidStepError(str(step)) from None
        if step not in CALLBACK_STEPS:
            raise InvalidStepError(step.value)

        before = self._manager.require(submission_id)
        logger.info("Regenerating step step=%s submission_id=%s", step.value, submission_id)
        result = await self._run_step(submission_id, step)

        landing_page_requested = (
            Step.LANDING_PAGE.value in before.components
            or before.component_status.get(Step.LANDING_PAGE.value)
            not in (None, ComponentStatus.NOT_REQUESTED)
        )
        if (
            step == Step.EVENT_FUNNEL
            and result.status == StepStatus.COMPLETED
            and landing_page_requested
        ):
            try:
                await self._run_step(submission_id, Step.LANDING_PAGE)
            except Exception:
                logger.exception(
                    "Landing page refresh after eventFunnel failed submission_id=%s",
                    submission_id,
                )

        return self._finish(submission_id), result

    def prepare_event_steps(self, request: LandingPageRequest) -> Submission:
        """Store event details and queue eventFunnel, plus landingPage when asked."""
        submission_id = request.submission_id
        self._manager.update_inputs(submission_id, request.event_inputs())
        self._manager.set_component_status(
            submission_id, Step.EVENT_FUNNEL, ComponentStatus.PENDING,
        )
        if request.generate_landing_page:
            self._manager.set_component_status(
                submission_id, Step.LANDING_PAGE, ComponentStatus.PENDING,
            )
        logger.info(
            "Event data saved submission_id=%s landing_page=%s",
            submission_id, request.generate_landing_page,
        )
        return self._manager.finish(submission_id, SubmissionStatus.PENDING)

    async def generate_landing_page(self, request: LandingPageRequest) -> Submission:
        """Add event details to a finished submission and run the event steps."""
        submission = self.prepare_event_steps(request)
        return await self.run(submission.id)

    async def run_offer_prompt(
        self, request: OfferPromptRequest,
    ) -> tuple[Submission, StepResult]:
        """Run the standalone offerPrompt step and persist its result."""
        inputs = request.to_inputs()
        submission = self._manager.create(
            kind=SubmissionKind.OFFER,
            inputs=inputs,
            title=offer_title(None, request.program_name),
            component_status={Step.OFFER_PROMPT.value: ComponentStatus.PENDING},
        )
        try:
            result = await self._service.submit_step(
                Step.OFFER_PROMPT, submission.id, inputs,
            )
        except Exception as exc:
            self._manager.mark_failed(submission.id, str(exc), step=Step.OFFER_PROMPT)
            raise

        self._manager.record_step_result(submission.id, Step.OFFER_PROMPT, result)
        self._manager.rename(submission.id, offer_title(result.payload, request.program_name))
        final = (
            SubmissionStatus.COMPLETED if result.status == StepStatus.COMPLETED
            else SubmissionStatus.FAILED
        )
        logger.info(
            "Offer prompt completed submission_id=%s status=%s",
            submission.id, result.status.value,
        )
        return self._manager.finish(submission.id, final), result
