# src/phaseci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Union

from .model import CacheDirective, Command, Phase, Pipeline, SECTIONS


# ---------------------------------------------------------------------
# Command helper
# ---------------------------------------------------------------------

def cmd(run: str, *, section: str = "override") -> Command:
    """Create a shell command."""
    if section not in SECTIONS:
        raise ValueError(f"Unknown section {section!r}, expected one of {SECTIONS}")
    return Command(run=run, section=section)


# ---------------------------------------------------------------------
# Phase helper
# ---------------------------------------------------------------------

def phase(
    name: str,
    *commands: Union[Command, str],  # allow: phase("x", "echo hi", cmd(...))
    pre: Optional[List[str]] = None,
    post: Optional[List[str]] = None,
) -> Phase:
    ordered: List[Command] = []
    ordered.extend(cmd(c, section="pre") for c in pre or [])
    for c in commands:
        ordered.append(c if isinstance(c, Command) else cmd(c))
    ordered.extend(cmd(c, section="post") for c in post or [])

    # stable sort keeps declaration order inside each section
    ordered.sort(key=lambda c: SECTIONS.index(c.section))
    return Phase(name=name).with_commands(ordered)


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(*phases: Phase, cache_directories: Optional[List[str]] = None) -> Pipeline:
    """
    Pipeline definition helper.

    Users can write, in phaseci_pipeline.py:
        from phaseci import pipeline, phase

        PIPELINE = pipeline(
            phase("dependencies", "make deps"),
            phase("test", "make test"),
            cache_directories=["~/.cache"],
        )

    Cache directories are attributed to the `dependencies` phase when there
    is one, otherwise to the first phase.
    """
    p = Pipeline()
    for ph in phases:
        p.add_phase(ph)
    owner = "dependencies" if "dependencies" in p.phases else (phases[0].name if phases else "")
    p.cache_directives = [CacheDirective(path=d, phase=owner) for d in cache_directories or []]
    return p


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("channel", ["stable", "nightly", "beta"]).commands(
            lambda v: f"rustup default {v} && cargo test"
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def commands(self, builder: Callable[[Any], str]) -> List[Command]:
        return [cmd(builder(v)) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)
