"""Command line interface for inspecting mentionops state."""

from __future__ import annotations

import asyncio
import json
import logging

import typer

from mentionops.config import load_config
from mentionops.coordination import build_admission, get_coordination_store, idempotency_key
from mentionops.persistence import get_ledger

app = typer.Typer(help="CLI for mentionops workflows")

job_app = typer.Typer(help="Commands for inspecting jobs")
admission_app = typer.Typer(help="Commands for managing admission keys")

app.add_typer(job_app, name="job")
app.add_typer(admission_app, name="admission")


@app.callback()
def main(debug: bool = typer.Option(False, help="Enable debug logging")) -> None:
    """mentionops CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=logging.DEBUG if debug or config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@job_app.command("show")
def job_show(job_id: str) -> None:
    """
    Show a job with its ordered step history and tool calls.

    Example:
        mentionops job show 0b6f...
        # Output: Job 0b6f...: completed
        #         1. intent: succeeded
        #         2. validate: succeeded
    """
    ledger = get_ledger()

    async def _load():
        job = await ledger.load_job(job_id)
        if job is None:
            return None, [], {}
        steps = await ledger.list_steps(job_id)
        calls = {s.id: await ledger.list_tool_calls(s.id) for s in steps}
        return job, steps, calls

    job, steps, calls = asyncio.run(_load())
    if job is None:
        typer.echo("Job not found")
        raise typer.Exit(code=1)

    typer.echo(f"Job {job.id}: {job.status}")
    typer.echo(f"Thread: {job.tenant_id}/{job.channel_id}/{job.thread_id}")
    if job.last_error:
        typer.echo(f"Last error: {job.last_error}")
    for step in steps:
        line = f"{step.sequence}. {step.step_type}: {step.status}"
        if step.error:
            line += f" ({step.error})"
        typer.echo(line)
        for call in calls.get(step.id, []):
            typer.echo(f"   tool {call.tool_name}: {call.status} {json.dumps(call.payload, default=str)}")


@job_app.command("latest")
def job_latest(job_id: str) -> None:
    """Print the most recent step of a job."""
    ledger = get_ledger()
    step = asyncio.run(ledger.latest_step(job_id))
    if step is None:
        typer.echo("No steps recorded")
        raise typer.Exit(code=1)
    typer.echo(f"{step.sequence}\t{step.step_type}\t{step.status}")


@admission_app.command("release")
def admission_release(tenant_id: str, event_id: str, event_ts: str) -> None:
    """Clear an admission key left behind by a crashed worker."""
    config = load_config()
    admission = build_admission(get_coordination_store(config=config), config)
    key = idempotency_key(tenant_id, event_id, event_ts)
    asyncio.run(admission.release(key))
    typer.echo(f"Released {key}")


@app.command("channels")
def channels() -> None:
    """List configured execution channels in preference order."""
    config = load_config()
    for spec in sorted(config.workflow.channels, key=lambda c: c.priority):
        typer.echo(
            f"{spec.name}\tpriority={spec.priority}\tactions={','.join(spec.actions)}"
            f"\tcost={spec.cost}\trecord_lock={spec.record_lock}"
        )


if __name__ == "__main__":
    app()
