# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Sequence

import click

from phaseci.cache import resolve_hints
from phaseci.channels import CHANNELS, channels_in, for_channel
from phaseci.config import Settings
from phaseci.errors import ConfigError, ManifestError
from phaseci.manifest import DEFAULT_MANIFESTS, discover_manifest, load_pipeline
from phaseci.model import Pipeline
from phaseci.runner import plan as build_plan
from phaseci.runner import run_many, run_pipeline
from phaseci.ui.console import Console, get_console, set_console


EXIT_USAGE = 2
EXIT_INTERRUPTED = 130
ALL_CHANNELS = "all"


def _fail_manifest(e: ManifestError) -> None:
    get_console().print_error(
        "Invalid manifest",
        str(e),
        suggestion=(
            "Create one of:\n"
            + "\n".join(f"  {n}" for n in DEFAULT_MANIFESTS)
            + "\n\nOr specify it explicitly:\n  phaseci run --manifest path/to/circle.yml"
        ),
    )
    sys.exit(EXIT_USAGE)


def _load(manifest: Optional[str], workdir: Path, channel: Optional[str]) -> tuple[Path, Pipeline]:
    """Discover + parse the manifest and optionally narrow it to one channel."""
    try:
        path = discover_manifest(manifest, directory=workdir)
        pipeline = load_pipeline(path)
    except ManifestError as e:
        _fail_manifest(e)

    if channel and channel != ALL_CHANNELS:
        known = channels_in(pipeline)
        if known and channel not in known:
            get_console().print_debug(f"channel {channel!r} not mentioned by test phase (found {known})")
        pipeline = for_channel(pipeline, channel)
    return path, pipeline


def _replays(pipeline: Pipeline) -> list[tuple[str, Pipeline]]:
    """One pipeline per channel named by the test phase (for --channel all)."""
    found = channels_in(pipeline)
    if not found:
        get_console().print_error(
            "No channels to replay",
            "The test phase does not name any of: " + ", ".join(CHANNELS),
            suggestion="Run without --channel, or with a single channel.",
        )
        sys.exit(EXIT_USAGE)
    return [(ch, for_channel(pipeline, ch)) for ch in found]


def _settings(ctx: click.Context, **overrides) -> Settings:
    try:
        return Settings.from_env(validate=False).override(debug=ctx.obj.get("debug"), **overrides)
    except ConfigError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(EXIT_USAGE)


manifest_option = click.option(
    "--manifest",
    "-m",
    default=None,
    help="Manifest path (.yml/.yaml or .py). Defaults to circle.yml if present.",
)
phase_option = click.option(
    "--phase",
    "phases",
    multiple=True,
    help="Only run this phase (repeatable). Pipeline order is kept.",
)
channel_option = click.option(
    "--channel",
    type=click.Choice(CHANNELS + (ALL_CHANNELS,)),
    default=None,
    help="Replay the test phase for a single toolchain channel, or each channel in turn with 'all'.",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="PHASECI_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """phaseci: run circle.yml-style phases locally, one command at a time."""
    console = Console(debug=bool(debug))
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@manifest_option
@phase_option
@channel_option
@click.option("--dry-run", is_flag=True, default=False, help="Print commands without running them")
@click.option("--shell", default=None, envvar="PHASECI_SHELL", help="Shell executable used to run commands")
@click.option("--workdir", default=None, envvar="PHASECI_WORKDIR", type=click.Path(file_okay=False), help="Directory commands run in")
@click.option("--cache-dir", default=None, envvar="PHASECI_CACHE_DIR", help="Persist cache_directories here between runs")
@click.option("--cache-keep", default=None, type=int, envvar="PHASECI_CACHE_KEEP", help="Artifacts kept per phase")
@click.pass_context
def run(ctx, manifest, phases, channel, dry_run, shell, workdir, cache_dir, cache_keep):
    """Run the manifest's phases in order, stopping at the first failure."""
    console = get_console()
    settings = _settings(
        ctx,
        dry_run=dry_run,
        shell=shell,
        workdir=workdir,
        cache_root=cache_dir,
        cache_keep=cache_keep,
    )
    path, pipeline = _load(manifest, settings.workdir, channel)

    try:
        selected: Sequence[str] = phases or pipeline.phase_names
        count = len(build_plan(pipeline, phases))
        console.print_run_started(
            manifest=path.name,
            phases=[p for p in pipeline.phase_names if p in selected],
            command_count=count,
            channel=channel,
        )
        console.print_debug(f"shell={settings.shell} workdir={settings.workdir}")

        if channel == ALL_CHANNELS:
            results = run_many(_replays(pipeline), settings=settings, phases=phases)
            console.print_results({
                f"{label}/{phase}": status
                for label, r in results.items()
                for phase, status in r.statuses.items()
            })
            failed = [r for r in results.values() if not r.ok]
            if failed:
                sys.exit(failed[0].exit_code)
            return

        result = run_pipeline(pipeline, settings=settings, phases=phases)
        console.print_results(result.statuses)

        if not result.ok:
            sys.exit(result.exit_code)

    except ManifestError as e:
        _fail_manifest(e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except OSError as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@manifest_option
@phase_option
@channel_option
@click.pass_context
def plan(ctx, manifest, phases, channel):
    """Print the commands a run would execute, in order."""
    console = get_console()
    settings = _settings(ctx)
    _path, pipeline = _load(manifest, settings.workdir, channel)
    try:
        if channel == ALL_CHANNELS:
            for label, replay in _replays(pipeline):
                console.print_header(f"REPLAY: {label}")
                console.print_plan(build_plan(replay, phases))
            return
        lines = build_plan(pipeline, phases)
    except ManifestError as e:
        _fail_manifest(e)

    if not lines:
        console.print_info("(nothing to run)")
        return
    console.print_plan(lines)


@cli.command()
@manifest_option
@click.pass_context
def cache(ctx, manifest):
    """Show the manifest's cache_directories, resolved to absolute paths."""
    console = get_console()
    settings = _settings(ctx)
    _path, pipeline = _load(manifest, settings.workdir, None)

    hints = resolve_hints(pipeline, workdir=settings.workdir)
    if not hints:
        console.print_info("No cache_directories declared.")
        return

    console.print_header("CACHE DIRECTORIES")
    for h in hints:
        console.print_cache_hint(f"[{h.phase}] {h.path}", str(h.resolved), h.exists)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
