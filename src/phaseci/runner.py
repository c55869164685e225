# runner.py
from __future__ import annotations

import os
import subprocess
import sys
import tarfile
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .cache import CacheStore
from .config import Settings
from .errors import CommandFailure, ManifestError
from .model import Command, Phase, Pipeline
from .ui.console import get_console


# phase statuses
OK = "ok"
FAILED = "failed"
NOT_RUN = "not-run"     # never reached because an earlier command failed
SKIPPED = "skipped"     # not selected by --phase


@dataclass
class RunResult:
    statuses: Dict[str, str] = field(default_factory=dict)
    failure: Optional[CommandFailure] = None
    executed: List[Command] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def exit_code(self) -> int:
        if self.failure is None:
            return 0
        # signals come back negative from subprocess; still a failure
        return self.failure.exit_code if self.failure.exit_code > 0 else 1


# ----------------------------------------------------------------------
# Selection / plan
# ----------------------------------------------------------------------

def select_phases(pipeline: Pipeline, phases: Optional[Sequence[str]] = None) -> List[Phase]:
    """Phases to run, always in pipeline order. Unknown names are an error."""
    if not phases:
        return list(pipeline)

    unknown = [p for p in phases if p not in pipeline.phases]
    if unknown:
        raise ManifestError(
            pipeline.source or "<pipeline>",
            f"unknown phase(s) {unknown}; known phases: {pipeline.phase_names}",
        )
    wanted = set(phases)
    return [p for p in pipeline if p.name in wanted]


def plan(pipeline: Pipeline, phases: Optional[Sequence[str]] = None) -> List[Tuple[str, int, str]]:
    """Ordered (phase, index, command) triples that a run would execute."""
    return [(c.phase, c.index, c.run) for p in select_phases(pipeline, phases) for c in p.commands]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def run_command(command: Command, *, settings: Settings) -> None:
    """Run one command in a shell, blocking until it exits. Raises CommandFailure on non-zero exit."""
    env = os.environ.copy()
    env.update(settings.env)

    # keep our own lines ordered with the child's output
    sys.stdout.flush()
    sys.stderr.flush()

    proc = subprocess.run(
        command.run,
        shell=True,
        executable=settings.shell,
        cwd=str(settings.workdir),
        env=env,
    )

    if proc.returncode != 0:
        raise CommandFailure(
            phase=command.phase,
            index=command.index,
            command=command.run,
            exit_code=proc.returncode,
        )


def run_phase(phase: Phase, *, settings: Settings, executed: Optional[List[Command]] = None) -> None:
    console = get_console()
    console.print_phase_start(phase.name, len(phase))

    for command in phase.commands:
        console.print_command(command.index, command.run, dry_run=settings.dry_run)
        if settings.dry_run:
            continue
        run_command(command, settings=settings)
        if executed is not None:
            executed.append(command)

    console.print_success(phase.name)


def _restore_cache(store: CacheStore, pipeline: Pipeline, settings: Settings) -> None:
    console = get_console()
    for phase_name in store.phases_with_hints(pipeline):
        try:
            hit = store.restore(pipeline, phase_name, workdir=settings.workdir)
        except (OSError, tarfile.TarError) as e:
            console.print_cache(f"[{phase_name}] restore failed: {e}")
            continue
        console.print_cache(f"[{phase_name}] {hit.reason}")


def _save_cache(store: CacheStore, pipeline: Pipeline, settings: Settings) -> None:
    console = get_console()
    for phase_name in store.phases_with_hints(pipeline):
        # save errors are reported, never raised
        try:
            key = store.save(pipeline, phase_name, workdir=settings.workdir)
            store.prune(phase_name, keep=settings.cache_keep)
        except (OSError, tarfile.TarError) as e:
            console.print_cache(f"[{phase_name}] save failed: {e}")
            continue
        console.print_cache(f"[{phase_name}] saved ({key[:12]}...)")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    pipeline: Pipeline,
    *,
    settings: Optional[Settings] = None,
    phases: Optional[Sequence[str]] = None,
) -> RunResult:
    """
    Run the selected phases in order, each command strictly after the previous one.

    Stops at the first failing command: nothing after it runs, in that phase
    or any later one. No retries, no parallelism, no timeouts.
    """
    settings = settings or Settings()
    console = get_console()

    selected = select_phases(pipeline, phases)
    selected_names = {p.name for p in selected}
    result = RunResult(statuses={
        name: (NOT_RUN if name in selected_names else SKIPPED) for name in pipeline.phase_names
    })

    store: Optional[CacheStore] = None
    if settings.cache_root is not None and pipeline.cache_directives and not settings.dry_run:
        try:
            store = CacheStore(settings.cache_root)
        except OSError as e:
            console.print_cache(f"unavailable: {e}")
        else:
            _restore_cache(store, pipeline, settings)

    for phase in selected:
        try:
            run_phase(phase, settings=settings, executed=result.executed)
        except CommandFailure as e:
            result.statuses[phase.name] = FAILED
            result.failure = e
            console.print_failure(phase.name, str(e), exit_code=e.exit_code)
            break
        result.statuses[phase.name] = OK

    if store is not None and result.ok:
        _save_cache(store, pipeline, settings)

    return result


def run_many(
    pipelines: Iterable[Tuple[str, Pipeline]],
    *,
    settings: Optional[Settings] = None,
    phases: Optional[Sequence[str]] = None,
) -> Dict[str, RunResult]:
    """
    Replay several pipelines one after another (e.g. one per channel).

    Each replay runs to completion on its own; a failure in one does not
    stop the others.
    """
    console = get_console()
    results: Dict[str, RunResult] = {}
    for label, p in pipelines:
        console.print_header(f"REPLAY: {label}")
        results[label] = run_pipeline(p, settings=settings, phases=phases)
    return results
