"""CLI entry-point: batch operations, job maintenance and credits."""

import json
import logging
from pathlib import Path

import typer
from pydantic import TypeAdapter
from rich.console import Console
from rich.table import Table

from bvg.billing import TransactionType, get_credit_ledger
from bvg.config import get_settings
from bvg.errors import BVGError
from bvg.jobs import get_job_store
from bvg.orchestrator import (
    get_batch_service,
    get_event_handler,
    get_orchestrator,
    get_stitch_pipeline,
    sweep_stalled_jobs,
)
from bvg.schemas.models import BaseConfig, Variable
from bvg.variables import expand as expand_variables

app = typer.Typer(help="Bulk avatar video generation")

_variables_adapter = TypeAdapter(list[Variable])


def _load_json(path: str, console: Console):
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error reading {path}: {e}[/red]")
        raise typer.Exit(1)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@app.command()
def expand(
    variables_file: str = typer.Argument(..., help="JSON file: a list of {name, label, values} or {\"variables\": [...]}"),
):
    """Print every combination the variables expand to."""
    console = Console()
    data = _load_json(variables_file, console)
    raw = data.get("variables", []) if isinstance(data, dict) else data
    try:
        combinations = expand_variables(_variables_adapter.validate_python(raw))
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    for i, combo in enumerate(combinations):
        console.print(f"{i:>4}  {json.dumps(combo, ensure_ascii=False)}")
    console.print(f"[green]{len(combinations)} combination(s)[/green]")


@app.command("create-batch")
def create_batch(
    batch_file: str = typer.Argument(..., help="JSON file with base_config, variables and optional sample_size/name"),
    user: str = typer.Option(..., "--user", help="Owning user id"),
    sample_size: int = typer.Option(None, "--sample", help="Run only the first N combinations, then pause"),
):
    """Create a batch and run it in the foreground."""
    console = Console()
    data = _load_json(batch_file, console)
    service = get_batch_service()
    try:
        batch = service.create_batch(
            user,
            BaseConfig.model_validate(data.get("base_config", {})),
            variables=_variables_adapter.validate_python(data.get("variables", [])),
            combinations=data.get("combinations"),
            sample_size=sample_size if sample_size is not None else data.get("sample_size"),
            name=data.get("name", ""),
        )
        console.print(f"Batch {batch.batch_id}: {batch.total} combination(s)")
        result = service.run_batch(batch.batch_id)
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]{result.status.value}[/green]: {result.started} started, {result.failed} failed "
        f"of {result.created} created"
    )


@app.command()
def resume(batch_id: str = typer.Argument(...)):
    """Run the rest of a batch that paused after its sample."""
    console = Console()
    try:
        result = get_batch_service().resume_batch(batch_id)
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{result.status.value}[/green]: {result.created} new job(s), {result.started} started")


@app.command()
def retry(
    target: str = typer.Argument(..., help="Job id (gen_...) or batch id (batch_...)"),
    prompt: str = typer.Option(None, "--prompt", help="Edited visual prompt (single job only)"),
    script: str = typer.Option(None, "--script", help="Edited dialogue (single job only)"),
):
    """Retry a failed job, or every failed job in a batch."""
    console = Console()
    try:
        if target.startswith("batch_"):
            result = get_batch_service().retry_failed_jobs(target)
            console.print(f"Retried {result.succeeded}, failed {result.failed}")
            return
        job = get_orchestrator().retry_failed_phase(target, prompt, script)
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"{job.job_id}: initial={job.initial_status.value} extended={job.extended_status.value}")


@app.command()
def stitch(
    target: str = typer.Argument(..., help="Job id or batch id"),
    trim: float = typer.Option(None, "--trim", help="Seconds trimmed from the start of each spliced segment (0.1-5)"),
):
    """Stitch rendered segments into final videos."""
    console = Console()
    try:
        pipeline = get_stitch_pipeline()
        if target.startswith("batch_"):
            result = get_batch_service().stitch_ready_jobs(target, pipeline, trim)
            console.print(f"Stitched {result.succeeded}, failed {result.failed}, skipped {result.skipped}")
            return
        job = pipeline.stitch(target, trim)
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Final video:[/green] {job.final_video_url}")


@app.command()
def poll(job_id: str = typer.Argument(...)):
    """Fetch render results from the provider for a job stuck in generating."""
    console = Console()
    try:
        outcomes = get_event_handler().poll(job_id)
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if not outcomes:
        console.print("Nothing finished yet.")
    for outcome in outcomes:
        console.print(f"{outcome.phase.value if outcome.phase else '-'}: {outcome.status.value if outcome.status else 'ignored'}")


@app.command()
def sweep(
    timeout: int = typer.Option(None, "--timeout", help="Minutes (default from BVG settings)"),
):
    """Fail renders that have been generating longer than the timeout and release their credits."""
    console = Console()
    settings = get_settings()
    minutes = timeout or settings.render_timeout_minutes
    swept = sweep_stalled_jobs(get_job_store(), get_credit_ledger(), minutes)
    for job_id in swept:
        console.print(f"[yellow]timed out[/yellow] {job_id}")
    console.print(f"{len(swept)} job(s) swept")


@app.command()
def balance(user: str = typer.Argument(...), history: int = typer.Option(0, "--history", help="Show the last N transactions")):
    """Show a user's credit balance."""
    console = Console()
    ledger = get_credit_ledger()
    bal = ledger.get_balance(user)
    console.print(f"balance={bal.balance} reserved={bal.reserved} [green]available={bal.available}[/green]")
    if history:
        table = Table("when", "type", "amount", "balance after")
        for tx in ledger.list_transactions(user, limit=history):
            table.add_row(tx.created_at.isoformat(timespec="seconds"), tx.type.value, str(tx.amount), str(tx.balance_after))
        console.print(table)


@app.command()
def grant(
    user: str = typer.Argument(...),
    credits: int = typer.Argument(...),
    key: str = typer.Option(..., "--key", help="Idempotency key; reusing it is a no-op"),
    purchase: bool = typer.Option(False, "--purchase", help="Record as a purchase instead of a grant"),
):
    """Add credits to a user."""
    console = Console()
    try:
        tx = get_credit_ledger().grant(
            user,
            credits,
            idempotency_key=key,
            type=TransactionType.PURCHASE if purchase else TransactionType.GRANT,
            metadata={"source": "cli"},
        )
    except BVGError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if tx is None:
        console.print(f"[yellow]Key {key} already applied[/yellow]")
    else:
        console.print(f"[green]Granted {credits}[/green]; available {tx.balance_after}")


if __name__ == "__main__":
    app()
