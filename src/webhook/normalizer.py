"""Normalization of N8N step responses into a StepResult.

Different workflows answer in different envelopes: bare objects,
single-element arrays, {"payload": ...} wrappers, and for
messageMultiplier assistant-message and nested content/payload chains.
Each unwrap strategy is a pure function returning the unwrapped value,
or None when its shape does not match. Strategies run in order, each
seeing the result of the previous ones.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, NamedTuple

from src.models import Step, StepResult, StepStatus

logger = logging.getLogger(__name__)

MARKER_KEYS = ("sub_topics", "milestone", "persona")
MAX_UNWRAP_DEPTH = 5
_LOGGED_KEYS = 10


def _present(value: Any) -> bool:
    """Set and not an empty scalar. Empty containers count as present."""
    return value is not None and value is not False and value != 0 and value != ""


def _field(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def _keys(value: Any) -> list[str]:
    return list(value)[:_LOGGED_KEYS] if isinstance(value, dict) else []


def has_marker(value: Any, keys: tuple[str, ...] = MARKER_KEYS) -> bool:
    return any(_present(_field(value, key)) for key in keys)


# --- Unwrap strategies ---


def unwrap_array(value: Any) -> Any | None:
    if isinstance(value, list) and value:
        return value[0]
    return None


def unwrap_assistant_message(value: Any) -> Any | None:
    """{"payload": {"role": "assistant", "content": {...}}} -> content."""
    inner = _field(value, "payload")
    if _field(inner, "role") == "assistant" and _present(_field(inner, "content")):
        return inner["content"]
    return None


def unwrap_content_wrapper(value: Any) -> Any | None:
    content = _field(value, "content")
    if isinstance(content, (dict, list)) and not has_marker(value, ("sub_topics", "milestone")):
        return content
    return None


def descend_to_markers(value: Any) -> Any | None:
    """Follow .content then .payload children until a marker key shows up."""
    current = value
    depth = 0
    while depth < MAX_UNWRAP_DEPTH and isinstance(current, dict):
        if has_marker(current):
            break
        if isinstance(current.get("content"), dict):
            current = current["content"]
        elif isinstance(current.get("payload"), dict):
            current = current["payload"]
        else:
            break
        depth += 1

    if has_marker(current):
        logger.info(
            "Unwrapped messageMultiplier data after deep inspection depth=%d "
            "sub_topics=%s milestone=%s persona=%s",
            depth,
            _present(current.get("sub_topics")),
            _present(current.get("milestone")),
            _present(current.get("persona")),
        )
        return current
    return None


class UnwrapStrategy(NamedTuple):
    name: str
    steps: frozenset[Step] | None  # None applies to every step
    apply: Callable[[Any], Any | None]


_MM_ONLY = frozenset({Step.MESSAGE_MULTIPLIER})

UNWRAP_STRATEGIES: tuple[UnwrapStrategy, ...] = (
    UnwrapStrategy("array", None, unwrap_array),
    UnwrapStrategy("assistant_message", _MM_ONLY, unwrap_assistant_message),
    UnwrapStrategy("content_wrapper", _MM_ONLY, unwrap_content_wrapper),
    UnwrapStrategy("deep_markers", _MM_ONLY, descend_to_markers),
)


def unwrap(step: Step, data: Any) -> Any:
    step = Step(step)
    value = data
    for strategy in UNWRAP_STRATEGIES:
        if strategy.steps is not None and step not in strategy.steps:
            continue
        result = strategy.apply(value)
        if result is None:
            continue
        logger.info(
            "Applied unwrap strategy=%s step=%s keys=%s",
            strategy.name, step.value, _keys(result),
        )
        value = result
    return value


def normalize_response(step: Step, data: Any) -> StepResult:
    """Collapse a parsed N8N response body into {payload, status}.

    Status is "failed" only when the unwrapped value says so explicitly;
    anything else, including bodies without a status, counts as completed.
    """
    step = Step(step)
    logger.info(
        "N8N webhook response received step=%s is_array=%s keys=%s status=%s",
        step.value, isinstance(data, list), _keys(data), _field(data, "status"),
    )

    value = unwrap(step, data)
    inner = _field(value, "payload")
    payload = inner if _present(inner) else value
    status = (
        StepStatus.FAILED if _field(value, "status") == "failed"
        else StepStatus.COMPLETED
    )

    logger.info(
        "N8N response processed step=%s status=%s payload_keys=%s expected_structure=%s",
        step.value, status.value, _keys(payload),
        has_marker(payload, ("sub_topics", "milestone", "topics")),
    )
    return StepResult(payload=payload, status=status)


def unwrap_callback_payload(payload: Any) -> Any:
    """Unwrap a messageMultiplier payload pushed through the callback endpoint.

    Callbacks carry the step payload directly, so the assistant message
    sits at the top level rather than under "payload".
    """
    if _field(payload, "role") == "assistant" and _present(_field(payload, "content")):
        logger.info("Unwrapping assistant/content callback payload")
        return payload["content"]
    content = unwrap_content_wrapper(payload)
    if content is not None:
        logger.info("Unwrapping content callback payload")
        return content
    inner = _field(payload, "payload")
    if isinstance(inner, dict):
        logger.info("Unwrapping payload callback payload")
        return inner
    return payload
