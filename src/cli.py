"""Click CLI for inspecting step configuration and dispatching steps by hand."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import click
import httpx

from src.config import N8NConfig, RetryPolicy
from src.models import Step
from src.submissions.manager import SubmissionManager
from src.webhook.dispatch import StepDispatchError, StepTimeoutError, compute_backoff_delay
from src.webhook.service import StepConfigurationError, WebhookService

_STEP_CHOICE = click.Choice([s.value for s in Step])


def _parse_inputs(pairs: tuple[str, ...]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--input")
        inputs[key] = value
    return inputs


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """N8N strategy step relay CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = N8NConfig.from_env()


@cli.command()
@click.pass_context
def urls(ctx: click.Context) -> None:
    """Show the configured webhook URL for every step."""
    config: N8NConfig = ctx.obj["config"]
    click.echo(json.dumps({s.value: config.url_for(s) for s in Step}, indent=2))


@cli.command()
@click.option("--production/--no-production", default=None, help="Override NODE_ENV tuning.")
@click.pass_context
def backoff(ctx: click.Context, production: bool | None) -> None:
    """Print the retry delay schedule in milliseconds."""
    config: N8NConfig = ctx.obj["config"]
    is_production = config.is_production if production is None else production
    policy = RetryPolicy.for_environment(is_production)
    delays = [compute_backoff_delay(a, policy) for a in range(policy.max_retries)]
    click.echo(json.dumps({
        "max_retries": policy.max_retries,
        "timeout_seconds": policy.timeout_seconds,
        "delays_ms": delays,
    }, indent=2))


@cli.command()
@click.argument("step", type=_STEP_CHOICE)
@click.option("--submission-id", required=True, help="Submission ID sent to N8N.")
@click.option("--input", "inputs", multiple=True, help="Input field as key=value.")
@click.option(
    "--previous-output",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file with the previous step's output.",
)
@click.pass_context
def submit(
    ctx: click.Context,
    step: str,
    submission_id: str,
    inputs: tuple[str, ...],
    previous_output: str | None,
) -> None:
    """Dispatch a single step to N8N and print the normalized result."""
    config: N8NConfig = ctx.obj["config"]
    previous = json.loads(Path(previous_output).read_text()) if previous_output else None
    service = WebhookService(config)
    try:
        result = asyncio.run(
            service.submit_step(Step(step), submission_id, _parse_inputs(inputs), previous)
        )
    except (
        StepConfigurationError,
        StepDispatchError,
        StepTimeoutError,
        httpx.HTTPError,
        ValueError,
    ) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(result.model_dump_json(indent=2))


@cli.command("sweep-stale")
@click.option("--db", default="data/submissions.db", help="Submissions database path.")
@click.option("--minutes", default=10, show_default=True, help="Pending age threshold.")
def sweep_stale(db: str, minutes: int) -> None:
    """Mark submissions pending longer than --minutes as failed."""
    manager = SubmissionManager(db)
    results = manager.sweep_stale(timedelta(minutes=minutes))
    click.echo(json.dumps({"updated": len(results), "submissions": results}, indent=2))
