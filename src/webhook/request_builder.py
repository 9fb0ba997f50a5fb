"""Request body construction for N8N step webhooks.

Pure data transformation: aliasing of input keys, body assembly,
the landingPage envelope, and serialization to the exact bytes that
are signed and sent.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

from src.models import Step, WebhookPayload

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")

# Downstream workflows for these steps read either casing convention.
KEBAB_ALIAS_STEPS = frozenset({Step.AUDIENCE_ARCHITECT, Step.LANDING_PAGE})
ENVELOPED_STEPS = frozenset({Step.LANDING_PAGE})


def to_kebab_case(key: str) -> str:
    """targetMarket -> target-market."""
    return _CAMEL_BOUNDARY.sub(r"\1-\2", key).lower()


def alias_inputs(step: Step, inputs: dict[str, Any]) -> dict[str, Any]:
    """Duplicate every key under its kebab-case alias for aliasing steps.

    Keys already present are never overwritten. Other steps get the
    input map back unchanged.
    """
    if Step(step) not in KEBAB_ALIAS_STEPS:
        return inputs
    result = dict(inputs)
    for key, value in inputs.items():
        kebab = to_kebab_case(key)
        if kebab not in result:
            result[kebab] = value
    return result


def build_step_body(
    step: Step,
    payload: WebhookPayload,
    previous_output: dict[str, Any] | None = None,
) -> dict[str, Any]:
    step = Step(step)
    body: dict[str, Any] = {
        "submissionId": payload.submission_id,
        "timestamp": payload.timestamp or datetime.now(UTC).isoformat(),
        "step": step.value,
        "inputs": alias_inputs(step, payload.inputs),
    }
    if previous_output:
        body["previousOutput"] = previous_output
    return body


def wrap_envelope(step: Step, body: dict[str, Any]) -> dict[str, Any]:
    if Step(step) in ENVELOPED_STEPS:
        return {"payload": body}
    return body


def serialize_body(data: dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":"), default=str).encode()
