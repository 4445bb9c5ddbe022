"""Typer CLI entrypoint for catalog-sync."""

from __future__ import annotations

import asyncio
import json
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigLocator, ConfigRepository, FilterStrictness, ProviderDirectory, SyncOptions
from .engine import CancelToken, CatalogSyncError, ProviderGateway, RateLimiter
from .engine.protocols import display_name, resolve_protocol
from .engine.rate_limiter import TIER_PRESETS, RateLimitTier
from .events import NullObserver, ProgressObserver
from .logging_conf import configure_logging
from .orchestrator import SyncOrchestrator, SyncOutcome
from .records import ModelRecord
from .ui import SyncProgress

app = typer.Typer(
    help="catalog-sync command line tools",
    no_args_is_help=True,
    rich_markup_mode=None,
)
providers_app = typer.Typer(
    name="providers",
    help="Inspect configured model providers",
    no_args_is_help=True,
    rich_markup_mode=None,
)
limiter_app = typer.Typer(
    name="limiter",
    help="Rate limiter presets",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    providers: ProviderDirectory
    options: SyncOptions
    verbose: bool = False


def build_state(verbose: bool, config_dir: Path | None = None) -> AppState:
    repository = ConfigRepository(ConfigLocator(config_dir))
    try:
        providers = repository.load_providers()
        options = repository.load_sync_options()
    except (ValueError, ValidationError) as exc:
        console.print(f"Invalid configuration: {exc}", style="red", markup=False)
        raise typer.Exit(code=1)
    configure_logging(verbose=verbose, log_dir=options.log_dir)
    return AppState(repository=repository, providers=providers, options=options, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def build_orchestrator(state: AppState, options: SyncOptions, observer: ProgressObserver) -> SyncOrchestrator:
    return SyncOrchestrator(state.providers, options, observer=observer)


def load_existing(path: Path | None) -> list[ModelRecord]:
    if path is None or not path.exists():
        return []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise typer.BadParameter(f"{path} is not valid JSON: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("models") or []
    if not isinstance(payload, list):
        raise typer.BadParameter(f"{path} must contain a JSON array of models")
    try:
        return [ModelRecord.model_validate(entry) for entry in payload]
    except ValidationError as exc:
        raise typer.BadParameter(f"{path} holds an invalid model record: {exc.errors()[0]['msg']}") from exc


async def _run_sync(orchestrator: SyncOrchestrator, existing: Sequence[ModelRecord]) -> SyncOutcome:
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        handler_installed = False
    try:
        async with orchestrator:
            return await orchestrator.run(existing, token)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _render_summary_table(outcome: SyncOutcome) -> Table:
    title = "Sync result (cancelled, partial)" if outcome.cancelled else "Sync result"
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for key, value in outcome.summary.as_dict().items():
        table.add_row(key.capitalize(), str(value))
    return table


def _render_sources_table(outcome: SyncOutcome) -> Table:
    table = Table(title="Per source", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Complete", style="green", justify="right")
    table.add_column("Flagged", style="yellow", justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for source_id, result in outcome.per_source.items():
        table.add_row(
            source_id,
            str(len(result.complete)),
            str(len(result.flagged)),
            outcome.errors.get(source_id, ""),
        )
    return table


def _outcome_payload(outcome: SyncOutcome) -> dict:
    return {
        "summary": outcome.summary.as_dict(),
        "cancelled": outcome.cancelled,
        "errors": outcome.errors,
        "models": [record.model_dump(mode="json") for record in outcome.merged],
        "flagged": [record.model_dump(mode="json") for record in outcome.flagged],
    }


app.add_typer(providers_app, name="providers")
app.add_typer(limiter_app, name="limiter")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.", is_flag=True),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Directory holding providers.yaml and sync.yaml (defaults to $CATALOG_SYNC_HOME or the cwd).",
    ),
) -> None:
    ctx.obj = build_state(verbose, config_dir)


@app.command("sync", help="Fetch every enabled source, filter, translate and merge into a catalog.")
def sync(
    ctx: typer.Context,
    strictness: Optional[FilterStrictness] = typer.Option(
        None, "--strictness", help="Override the content filter policy.", case_sensitive=False
    ),
    tier: Optional[RateLimitTier] = typer.Option(None, "--tier", help="Override the rate limiter tier."),
    no_translate: bool = typer.Option(False, "--no-translate", help="Skip the translation stage.", is_flag=True),
    existing: Optional[Path] = typer.Option(
        None, "--existing", help="JSON file with the current catalog to merge into."
    ),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the merged catalog as JSON."),
    as_json: bool = typer.Option(False, "--json", help="Print the outcome as JSON.", is_flag=True),
    quiet: bool = typer.Option(False, "--quiet", help="Only print the summary line.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    overrides: dict = {}
    if strictness is not None:
        overrides["strictness"] = strictness
    if tier is not None:
        overrides["tier"] = tier.value
    if no_translate:
        overrides["translate"] = False
    options = state.options.model_copy(update=overrides)

    current = load_existing(existing)
    show_progress = not (as_json or quiet)
    with SyncProgress(enabled=show_progress, console=console) as progress:
        observer: ProgressObserver = progress if show_progress else NullObserver()
        orchestrator = build_orchestrator(state, options, observer)
        outcome = asyncio.run(_run_sync(orchestrator, current))

    if output is not None:
        output.write_text(
            json.dumps([record.model_dump(mode="json") for record in outcome.merged], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    if as_json:
        typer.echo(json.dumps(_outcome_payload(outcome), ensure_ascii=False))
    elif quiet:
        summary = outcome.summary
        console.print(
            f"Sync finished: found {summary.found}, added {summary.added}, "
            f"updated {summary.updated}, flagged {summary.flagged}"
        )
    else:
        console.print(_render_summary_table(outcome))
        if outcome.per_source:
            console.print(_render_sources_table(outcome))
    if outcome.cancelled:
        raise typer.Exit(code=130)


@providers_app.command("list", help="Show the provider directory.")
def providers_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    providers = state.providers.providers
    if not providers:
        console.print("No providers configured; add a providers.yaml to the config directory.", style="yellow")
        raise typer.Exit(code=0)
    table = Table(title=f"Providers · {len(providers)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Protocol")
    table.add_column("Enabled", justify="center")
    table.add_column("Credential", justify="center")
    table.add_column("Base URL", style="dim", overflow="fold")
    for key, config in providers.items():
        table.add_row(
            key,
            display_name(key, config),
            resolve_protocol(key, config).value,
            "yes" if config.enabled else "no",
            "yes" if config.has_credential else "-",
            config.base_url or "",
        )
    console.print(table)


@providers_app.command("models", help="List the models one provider exposes.")
def providers_models(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Provider key from providers.yaml."),
) -> None:
    state = _get_state(ctx)
    config = state.providers.get(key)
    if config is None:
        console.print(f"Unknown provider `{key}`.", style="red")
        raise typer.Exit(code=1)

    async def _list() -> list[ModelRecord]:
        async with ProviderGateway(RateLimiter.for_tier(state.options.tier)) as gateway:
            return await gateway.list_models(key, config)

    try:
        records = asyncio.run(_list())
    except CatalogSyncError as exc:
        console.print(f"Listing failed: {exc}", style="red", markup=False)
        raise typer.Exit(code=1)
    table = Table(title=f"{display_name(key, config)} · {len(records)} models", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("Name", style="green")
    table.add_column("Domain", style="magenta")
    table.add_column("Context", justify="right")
    for record in records:
        table.add_row(
            record.id,
            record.name,
            record.domain.value,
            str(record.context_window) if record.context_window else "-",
        )
    console.print(table)


@limiter_app.command("tiers", help="Show the request budget of each rate limit tier.")
def limiter_tiers() -> None:
    table = Table(title="Rate limit tiers", box=box.SIMPLE_HEAD)
    table.add_column("Tier", style="cyan")
    table.add_column("Max requests", justify="right")
    table.add_column("Window (s)", justify="right")
    table.add_column("Min interval (s)", justify="right")
    for tier, preset in TIER_PRESETS.items():
        table.add_row(
            tier.value,
            str(preset.max_requests),
            f"{preset.time_window:g}",
            f"{preset.min_interval:g}",
        )
    console.print(table)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
