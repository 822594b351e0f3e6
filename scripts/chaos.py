# file: scripts/chaos.py
from __future__ import annotations

"""
Host CLI for Chaos Plane.

Examples
--------
# What can viewers trigger right now?
python -m scripts.chaos catalogue

# Opt a failure in and put it in a tier pool
python -m scripts.chaos config eng1_fire --enable --tier Severe

# Preview what a Pick Your Poison input would resolve to
python -m scripts.chaos match "yaw damp"

# Is X-Plane's REST API reachable?
python -m scripts.chaos probe

# Trigger a failure by name, clear it again after 30 s, keep the session log
python -m scripts.chaos trigger "eng1 fire" --reset-after 30 --log-csv outputs/session.csv

# Go live: take channel-point redemptions until Ctrl+C
python -m scripts.chaos run --log-csv outputs/stream.csv

Files
-----
FailureCatalogue.json   shipped failure definitions (required)
FailureConfig.json      per-failure enabled flag + tier (optional)
appsettings.json        Twitch + simulator settings (optional)
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from catalogue.models import ConfigEntry, ResolvedFailure, Tier
from catalogue.store import CatalogueLoadError, CatalogueStore, FailureConfigStore
from config.settings import AppSettings, load_settings, save_settings
from events.eventsub import EventSubClient
from events.router import RedemptionRouter
from events.twitch import TwitchEventSource
from orchestration.bus import OrchestratorEvents
from orchestration.matching import fuzzy_match
from orchestration.orchestrator import FailureOrchestrator
from orchestration.session import SessionLog
from simulator.client import SimulatorClient


app = typer.Typer(add_completion=False, no_args_is_help=True)

CatalogueOpt = typer.Option(Path("FailureCatalogue.json"), "--catalogue", help="Failure catalogue JSON.")
ConfigOpt = typer.Option(Path("FailureConfig.json"), "--config", help="User failure config JSON.")
SettingsOpt = typer.Option(Path("appsettings.json"), "--settings", help="Application settings JSON.")
LogCsvOpt = typer.Option(None, "--log-csv", help="Write the session event log to CSV.")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Debug logging.")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_store(catalogue: Path, config: Path) -> CatalogueStore:
    entries = FailureConfigStore(config).load()
    try:
        return CatalogueStore.load(catalogue, entries)
    except CatalogueLoadError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


def _failure_table(title: str, failures: List[ResolvedFailure]) -> Table:
    tbl = Table(title=title)
    for col in ("id", "name", "category", "tier", "source", "actions", "triggerable"):
        tbl.add_column(col)
    for f in failures:
        assignment = f.tier_assignment
        tbl.add_row(
            f.id,
            f.name,
            f.category,
            assignment.tier.value if assignment.tier else "-",
            assignment.kind.value,
            str(len(f.actions)),
            "yes" if f.is_triggerable else "no",
        )
    return tbl


def _preview(df: pd.DataFrame, name: str, n: int = 10) -> None:
    if df.empty:
        rprint(f"[yellow]{name} is empty[/yellow]")
        return
    tbl = Table(title=f"{name} (last {n})")
    cols = ["time", "kind", "text"]
    for c in cols:
        tbl.add_column(c)
    for _, row in df.tail(n).iterrows():
        tbl.add_row(*[str(row[c]) for c in cols])
    rprint(tbl)


def _export(session: SessionLog, log_csv: Optional[Path]) -> None:
    df = session.to_dataframe()
    _preview(df, "Session log")
    if log_csv is not None:
        log_csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(log_csv, index=False)
        rprint(f"[green]Session log written to {log_csv}[/green]")


def _pick_failure(store: CatalogueStore, query: str) -> ResolvedFailure:
    """Exact id first, then a unique name/category search hit."""
    hit = store.find_by_id(query)
    if hit is not None:
        return hit
    matches = SessionLog.search(store.all, query)
    exact = [f for f in matches if f.name.lower() == query.strip().lower()]
    if len(exact) == 1:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        rprint(f"[yellow]No failure matches {query!r}[/yellow]")
    else:
        rprint(_failure_table(f"{len(matches)} failures match {query!r}; use the id", matches))
    raise typer.Exit(code=2)


def _parse_tier_option(value: str) -> Optional[Tier]:
    if value.strip().lower() in ("", "none"):
        return None
    try:
        return Tier(value)
    except ValueError:
        raise typer.BadParameter(f"{value!r} is not Minor, Moderate, Severe or none", param_hint="--tier")


@app.command()
def catalogue(
    all_failures: bool = typer.Option(False, "--all", help="Include failures that are not triggerable."),
    catalogue: Path = CatalogueOpt,
    config: Path = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """
    List failures with their tier assignment.
    """
    configure_logging(verbose)
    store = _load_store(catalogue, config)
    failures = store.all if all_failures else store.triggerable
    rprint(_failure_table("Failures" if all_failures else "Triggerable failures", failures))
    rprint(f"[cyan]{len(store.triggerable)} of {len(store.all)} failures triggerable[/cyan]")


@app.command("config")
def configure(
    failure: str = typer.Argument(..., help="Failure id, or a name/category search."),
    enable: Optional[bool] = typer.Option(None, "--enable/--disable", help="Opt the failure in or out."),
    tier: Optional[str] = typer.Option(None, help="Minor, Moderate, Severe, or 'none' to unassign."),
    catalogue: Path = CatalogueOpt,
    config: Path = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """
    Enable/disable a failure or assign its tier pool. Without options, show it.
    """
    configure_logging(verbose)
    store = _load_store(catalogue, config)
    target = _pick_failure(store, failure)

    update = {}
    if enable is not None:
        update["enabled"] = enable
    if tier is not None:
        update["tier"] = _parse_tier_option(tier)

    if update:
        cfg = FailureConfigStore(config)
        cfg.load()
        entry = cfg.get_entry(target.id) or ConfigEntry(id=target.id)
        cfg.set_entry(entry.model_copy(update=update))
        cfg.save()
        store.refresh(cfg.entries)
        target = store.find_by_id(target.id)
        rprint(f"[green]Saved {config}[/green]")

    rprint(_failure_table(target.name, [target]))


@app.command()
def match(
    text: str = typer.Argument(..., help="Pick Your Poison input to resolve."),
    catalogue: Path = CatalogueOpt,
    config: Path = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """
    Show which triggerable failure a viewer's free text would select.
    """
    configure_logging(verbose)
    store = _load_store(catalogue, config)
    hit = fuzzy_match(text, store.triggerable)
    if hit is None:
        rprint(f"[yellow]No match for {text!r} (would be refunded)[/yellow]")
        raise typer.Exit(code=2)
    rprint(f"[green]{text!r}[/green] -> [bold]{hit.name}[/bold] ({hit.id}, {hit.effective_tier.value})")


async def _probe(settings: AppSettings) -> bool:
    async with SimulatorClient(settings.simulator) as sim:
        return await sim.probe()


@app.command()
def probe(
    settings_path: Path = SettingsOpt,
    verbose: bool = VerboseOpt,
):
    """
    Check whether the simulator's REST API answers.
    """
    configure_logging(verbose)
    settings = load_settings(settings_path)
    if asyncio.run(_probe(settings)):
        rprint(f"[green]Simulator reachable at {settings.simulator.base_url}[/green]")
    else:
        rprint(f"[red]Simulator not reachable at {settings.simulator.base_url}[/red]")
        raise typer.Exit(code=1)


async def _trigger(
    settings: AppSettings,
    store: CatalogueStore,
    failure: ResolvedFailure,
    reset_after: Optional[float],
) -> Optional[SessionLog]:
    events = OrchestratorEvents()
    session = SessionLog(events)
    source = TwitchEventSource(settings.twitch)
    try:
        async with SimulatorClient(settings.simulator) as sim:
            if not await sim.connect():
                rprint(f"[red]Simulator not reachable at {settings.simulator.base_url}[/red]")
                return None
            orch = FailureOrchestrator(store, sim, source, settings.twitch.reward_ids, events)
            if not await orch.trigger(failure, triggered_by="Host"):
                rprint(f"[red]Could not trigger {failure.name}[/red]")
                return None
            rprint(f"[bold green]Triggered {failure.name}[/bold green]")
            if reset_after is not None:
                rprint(f"[cyan]Resetting in {reset_after:g}s...[/cyan]")
                await asyncio.sleep(reset_after)
                n = await session.reset_all(orch)
                rprint(f"[green]Reset {n} failure(s)[/green]")
    finally:
        await source.aclose()
    return session


@app.command()
def trigger(
    text: str = typer.Argument(..., help="Failure name (fuzzy matched against triggerable failures)."),
    reset_after: Optional[float] = typer.Option(None, help="Reset the failure after N seconds."),
    log_csv: Optional[Path] = LogCsvOpt,
    catalogue: Path = CatalogueOpt,
    config: Path = ConfigOpt,
    settings_path: Path = SettingsOpt,
    verbose: bool = VerboseOpt,
):
    """
    Manually trigger a failure as the host (no Twitch redemption involved).
    """
    configure_logging(verbose)
    settings = load_settings(settings_path)
    store = _load_store(catalogue, config)
    failure = fuzzy_match(text, store.triggerable)
    if failure is None:
        rprint(f"[yellow]No triggerable failure matches {text!r}[/yellow]")
        raise typer.Exit(code=2)

    session = asyncio.run(_trigger(settings, store, failure, reset_after))
    if session is None:
        raise typer.Exit(code=1)
    _export(session, log_csv)


async def _run(
    settings: AppSettings,
    settings_path: Path,
    store: CatalogueStore,
    events: OrchestratorEvents,
    duration: Optional[float],
) -> bool:
    source = TwitchEventSource(settings.twitch)
    try:
        if not await source.connect():
            rprint("[red]Twitch connection failed; check the access token[/red]")
            return False
        if source.settings != settings.twitch:
            # keep the broadcaster identity the token resolved to
            save_settings(settings.model_copy(update={"twitch": source.settings}), settings_path)
        reward_ids = source.settings.reward_ids

        async with SimulatorClient(settings.simulator) as sim:
            if not await sim.connect():
                rprint(f"[yellow]Simulator not reachable at {settings.simulator.base_url}; "
                       f"redemptions are refunded until it is[/yellow]")
            sim.connection_changed.subscribe(
                lambda up: rprint("[green]Simulator connected[/green]" if up else "[red]Simulator lost[/red]")
            )
            orch = FailureOrchestrator(store, sim, source, reward_ids, events)
            router = RedemptionRouter(orch, reward_ids)
            eventsub = EventSubClient(source, router.submit)
            task = eventsub.start()
            rprint(f"[cyan]Listening for redemptions, {len(store.triggerable)} failures armed (Ctrl+C to stop)[/cyan]")
            try:
                if duration is None:
                    await task
                else:
                    await asyncio.wait({task}, timeout=duration)
            finally:
                await eventsub.stop()
                await router.drain()
    finally:
        await source.aclose()
    return True


@app.command()
def run(
    duration: Optional[float] = typer.Option(None, help="Stop after N seconds instead of running until Ctrl+C."),
    log_csv: Optional[Path] = LogCsvOpt,
    catalogue: Path = CatalogueOpt,
    config: Path = ConfigOpt,
    settings_path: Path = SettingsOpt,
    verbose: bool = VerboseOpt,
):
    """
    Go live: trigger failures from channel-point redemptions.
    """
    configure_logging(verbose)
    settings = load_settings(settings_path)
    store = _load_store(catalogue, config)

    events = OrchestratorEvents()
    session = SessionLog(events)
    events.triggered.subscribe(lambda t: rprint(f"[bold green]{escape(t.summary())}[/bold green]"))
    events.no_match.subscribe(lambda viewer, text: rprint(f"[yellow]{escape(viewer)}: no match for {escape(repr(text))}, refunded[/yellow]"))

    try:
        ok = asyncio.run(_run(settings, settings_path, store, events, duration))
    except KeyboardInterrupt:
        rprint("[cyan]Stopped[/cyan]")
        ok = True
    if not ok:
        raise typer.Exit(code=1)
    rprint(f"[cyan]{session.trigger_count} failure(s) triggered this session[/cyan]")
    _export(session, log_csv)


if __name__ == "__main__":
    app()
