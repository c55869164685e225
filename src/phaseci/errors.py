# errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class PhaseciError(Exception):
    """Base class for every error phaseci raises on purpose."""


@dataclass
class ManifestError(PhaseciError):
    """The manifest could not be read or does not have the expected shape."""
    source: str
    message: str
    key: Optional[str] = None

    def __str__(self) -> str:
        where = f"{self.source}"
        if self.key:
            where += f" [{self.key}]"
        return f"{where}: {self.message}"


class ConfigError(PhaseciError):
    """Invalid runner settings (environment or CLI)."""


@dataclass
class CommandFailure(PhaseciError):
    """A command exited non-zero. The pipeline stops here."""
    phase: str
    index: int
    command: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.phase}] command #{self.index + 1} failed (exit={self.exit_code}): {self.command}"
