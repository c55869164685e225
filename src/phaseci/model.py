# model.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Tuple


SECTIONS = ("pre", "override", "post")


@dataclass(frozen=True)
class Command:
    """A single shell command inside a phase. `run` is passed to the shell verbatim."""
    run: str
    phase: str = ""
    index: int = 0
    section: str = "override"

    def __str__(self) -> str:
        return self.run


@dataclass(frozen=True)
class CacheDirective:
    """A directory the host should persist between runs. No executable semantics."""
    path: str
    phase: str = ""


@dataclass(frozen=True)
class Phase:
    """
    A named group of commands.

    Commands run strictly in the order they appear in `commands`
    (pre, then override, then post for manifest phases).
    """
    name: str
    commands: Tuple[Command, ...] = ()

    def __len__(self) -> int:
        return len(self.commands)

    def with_commands(self, commands: List[Command]) -> "Phase":
        # re-number so index always reflects position inside the phase
        renumbered = tuple(
            replace(c, phase=self.name, index=i) for i, c in enumerate(commands)
        )
        return replace(self, commands=renumbered)


@dataclass
class Pipeline:
    """
    Ordered phases + cache hints.

    Phase order is execution order. Parsed once per run and then discarded.
    """
    phases: Dict[str, Phase] = field(default_factory=dict)
    cache_directives: List[CacheDirective] = field(default_factory=list)
    source: Optional[str] = None

    def add_phase(self, phase: Phase) -> None:
        if phase.name in self.phases:
            raise ValueError(f"Duplicate phase name: {phase.name}")
        self.phases[phase.name] = phase

    @property
    def phase_names(self) -> List[str]:
        return list(self.phases)

    def phase(self, name: str) -> Phase:
        return self.phases[name]

    def commands(self) -> Iterator[Command]:
        for p in self.phases.values():
            yield from p.commands

    def __iter__(self) -> Iterator[Phase]:
        return iter(self.phases.values())

    def __len__(self) -> int:
        return len(self.phases)

    def copy(self) -> "Pipeline":
        return Pipeline(
            phases=dict(self.phases),
            cache_directives=list(self.cache_directives),
            source=self.source,
        )
