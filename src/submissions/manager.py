"""Submission manager: lifecycle of strategy submissions and their steps."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from src.models import (
    CallbackPayload,
    ComponentStatus,
    Step,
    StepResult,
    StepStatus,
    Submission,
    SubmissionKind,
    SubmissionStatus,
)
from src.submissions.db import SubmissionDB
from src.webhook.normalizer import has_marker, unwrap_callback_payload

logger = logging.getLogger(__name__)

# offerPrompt runs synchronously and never reports back via callback.
CALLBACK_STEPS = frozenset({
    Step.AUDIENCE_ARCHITECT,
    Step.CONTENT_COMPASS,
    Step.MESSAGE_MULTIPLIER,
    Step.EVENT_FUNNEL,
    Step.LANDING_PAGE,
})


class SubmissionNotFoundError(Exception):
    """Raised when a submission ID does not exist."""

    def __init__(self, submission_id: str) -> None:
        self.submission_id = submission_id
        super().__init__(f"Submission not found: {submission_id}")


class InvalidStepError(ValueError):
    """Raised when a callback names a step that cannot report back."""

    def __init__(self, step: str) -> None:
        self.step = step
        valid = ", ".join(s.value for s in Step if s in CALLBACK_STEPS)
        super().__init__(f"Invalid step: {step}. Must be one of {valid}")


def _now() -> datetime:
    return datetime.now(UTC)


def _row_to_submission(row: dict[str, Any]) -> Submission:
    return Submission(
        id=row["id"],
        kind=row["kind"],
        title=row["title"],
        inputs=json.loads(row["inputs_json"]),
        components=json.loads(row["components_json"]),
        component_status=json.loads(row["component_status_json"]),
        status=row["status"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _dumps(data: Any) -> str:
    return json.dumps(data, default=str)


def _status_json(status_map: dict[str, ComponentStatus]) -> str:
    return _dumps({k: ComponentStatus(v).value for k, v in status_map.items()})


class SubmissionManager:
    """Creates submissions and records step results as they arrive."""

    def __init__(self, db_path: str) -> None:
        self.db = SubmissionDB(db_path)

    def create(
        self,
        kind: SubmissionKind,
        inputs: dict[str, Any],
        title: str | None = None,
        component_status: dict[str, ComponentStatus] | None = None,
        components: dict[str, Any] | None = None,
        status: SubmissionStatus = SubmissionStatus.PENDING,
    ) -> Submission:
        submission_id = str(uuid.uuid4())
        created_at = _now().isoformat()
        status = SubmissionStatus(status)
        self.db.insert(
            id=submission_id,
            kind=SubmissionKind(kind).value,
            title=title,
            inputs_json=_dumps(inputs),
            components_json=_dumps(components or {}),
            component_status_json=_status_json(component_status or {}),
            status=status.value,
            created_at=created_at,
            completed_at=created_at if status == SubmissionStatus.COMPLETED else None,
        )
        logger.info("Submission saved submission_id=%s kind=%s", submission_id, kind)
        return self.require(submission_id)

    def get(self, submission_id: str) -> Submission | None:
        row = self.db.get(submission_id)
        return _row_to_submission(row) if row else None

    def require(self, submission_id: str) -> Submission:
        submission = self.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def list_submissions(
        self,
        kind: SubmissionKind | None = None,
        status: SubmissionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Submission]:
        rows = self.db.list_submissions(
            kind=SubmissionKind(kind).value if kind else None,
            status=SubmissionStatus(status).value if status else None,
            limit=limit,
            offset=offset,
        )
        return [_row_to_submission(r) for r in rows]

    def delete(self, submission_id: str) -> bool:
        return self.db.delete(submission_id)

    def _save(
        self,
        submission: Submission,
        status: SubmissionStatus | None = None,
        error: str | None = None,
    ) -> Submission:
        now = _now().isoformat()
        fields: dict[str, Any] = {
            "components_json": _dumps(submission.components),
            "component_status_json": _status_json(submission.component_status),
            "updated_at": now,
        }
        if status is not None:
            fields["status"] = SubmissionStatus(status).value
            fields["completed_at"] = now if status == SubmissionStatus.COMPLETED else None
        if error is not None:
            fields["error"] = error
        if not self.db.update(submission.id, **fields):
            raise SubmissionNotFoundError(submission.id)
        return self.require(submission.id)

    def record_step_result(
        self, submission_id: str, step: Step, result: StepResult,
    ) -> Submission:
        """Store a step payload and its status; the submission stays pending."""
        step = Step(step)
        submission = self.require(submission_id)
        submission.components[step.value] = result.payload
        submission.component_status[step.value] = ComponentStatus(result.status.value)
        return self._save(submission, status=SubmissionStatus.PENDING)

    def update_inputs(self, submission_id: str, inputs: dict[str, Any]) -> Submission:
        """Merge inputs into the stored ones so later retries see them."""
        submission = self.require(submission_id)
        merged = {**submission.inputs, **inputs}
        self.db.update(submission_id, inputs_json=_dumps(merged), updated_at=_now().isoformat())
        return self.require(submission_id)

    def rename(self, submission_id: str, title: str) -> Submission:
        if not self.db.update(submission_id, title=title, updated_at=_now().isoformat()):
            raise SubmissionNotFoundError(submission_id)
        return self.require(submission_id)

    def set_component_status(
        self, submission_id: str, step: Step, status: ComponentStatus,
    ) -> Submission:
        submission = self.require(submission_id)
        submission.component_status[Step(step).value] = ComponentStatus(status)
        return self._save(submission)

    def finish(self, submission_id: str, status: SubmissionStatus) -> Submission:
        submission = self.require(submission_id)
        return self._save(submission, status=status)

    def mark_failed(
        self, submission_id: str, error: str, step: Step | None = None,
    ) -> Submission:
        submission = self.require(submission_id)
        if step is not None:
            submission.component_status[Step(step).value] = ComponentStatus.FAILED
        logger.info(
            "Marking submission failed submission_id=%s step=%s error=%s",
            submission_id, Step(step).value if step else None, error,
        )
        return self._save(submission, status=SubmissionStatus.FAILED, error=error)

    def reset_for_retry(self, submission_id: str) -> Submission:
        """Failed components go back to pending so they run again."""
        submission = self.require(submission_id)
        submission.component_status = {
            key: ComponentStatus.PENDING if value == ComponentStatus.FAILED else value
            for key, value in submission.component_status.items()
        }
        self.db.update(submission_id, error=None)
        return self._save(submission, status=SubmissionStatus.PENDING)

    def apply_callback(self, callback: CallbackPayload) -> Submission:
        """Merge a step result pushed by an N8N workflow into its submission."""
        try:
            step = Step(callback.step)
        except ValueError:
            raise InvalidStepError(callback.step) from None
        if step not in CALLBACK_STEPS:
            raise InvalidStepError(callback.step)

        submission = self.get(callback.submission_id)
        if submission is None:
            logger.error("Submission not found submission_id=%s", callback.submission_id)
            raise SubmissionNotFoundError(callback.submission_id)

        payload = callback.payload
        if step == Step.MESSAGE_MULTIPLIER:
            payload = unwrap_callback_payload(payload)
            if not has_marker(payload, ("sub_topics", "milestone", "topics")):
                logger.warning(
                    "messageMultiplier callback payload missing expected structure "
                    "submission_id=%s",
                    callback.submission_id,
                )

        component_status = ComponentStatus((callback.status or StepStatus.COMPLETED).value)
        submission.components[step.value] = payload
        submission.component_status[step.value] = component_status

        pending = [
            key for key, value in submission.component_status.items()
            if value == ComponentStatus.PENDING
        ]
        if callback.status == StepStatus.FAILED:
            overall = SubmissionStatus.FAILED
        elif pending:
            overall = SubmissionStatus.PENDING
        else:
            overall = SubmissionStatus.COMPLETED

        logger.info(
            "Callback applied submission_id=%s step=%s component_status=%s "
            "overall=%s remaining_pending=%s",
            submission.id, step.value, component_status.value, overall.value, pending,
        )
        return self._save(submission, status=overall)

    def sweep_stale(
        self, older_than: timedelta, now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Fail submissions that have been pending longer than older_than."""
        now = now or _now()
        cutoff = (now - older_than).isoformat()
        results: list[dict[str, Any]] = []
        for row in self.db.list_pending_before(cutoff):
            submission = _row_to_submission(row)
            submission.component_status = {
                key: ComponentStatus.FAILED if value == ComponentStatus.PENDING else value
                for key, value in submission.component_status.items()
            }
            self._save(submission, status=SubmissionStatus.FAILED)
            age = now - datetime.fromisoformat(submission.created_at)
            results.append({
                "id": submission.id,
                "age": int(age.total_seconds() // 60),
                "action": "marked_as_failed",
            })
        if results:
            logger.warning("Marked stale submissions failed count=%d", len(results))
        return results
