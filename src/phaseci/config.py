# config.py
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

from .errors import ConfigError


ENV_PREFIX = "PHASECI_"
DEFAULT_CACHE_KEEP = 3


def default_shell() -> Optional[str]:
    """bash if we can find it (manifests use `<(...)` and backticks), else the platform shell."""
    return shutil.which("bash")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Settings:
    """Runner settings. CLI options win over PHASECI_* environment variables."""
    workdir: Path = field(default_factory=Path.cwd)
    shell: Optional[str] = field(default_factory=default_shell)
    env: Dict[str, str] = field(default_factory=dict)  # overrides on top of os.environ
    dry_run: bool = False
    cache_root: Optional[Path] = None  # None -> cache hints are informational only
    cache_keep: int = DEFAULT_CACHE_KEEP
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, validate: bool = True) -> "Settings":
        """Read PHASECI_* variables. Pass validate=False when CLI overrides are applied afterwards."""
        environ = os.environ if environ is None else environ
        s = cls()

        if f"{ENV_PREFIX}SHELL" in environ:
            s = replace(s, shell=environ[f"{ENV_PREFIX}SHELL"] or None)
        if f"{ENV_PREFIX}WORKDIR" in environ:
            s = replace(s, workdir=Path(environ[f"{ENV_PREFIX}WORKDIR"]))
        if environ.get(f"{ENV_PREFIX}CACHE_DIR"):
            s = replace(s, cache_root=Path(environ[f"{ENV_PREFIX}CACHE_DIR"]))
        if f"{ENV_PREFIX}CACHE_KEEP" in environ:
            s = replace(s, cache_keep=_env_int(f"{ENV_PREFIX}CACHE_KEEP", environ[f"{ENV_PREFIX}CACHE_KEEP"]))
        if f"{ENV_PREFIX}DEBUG" in environ:
            s = replace(s, debug=_env_bool(environ[f"{ENV_PREFIX}DEBUG"]))

        return s.validated() if validate else s

    def override(self, **changes) -> "Settings":
        """Apply CLI values; None means 'not given'."""
        given = {k: v for k, v in changes.items() if v is not None}
        for k in ("workdir", "cache_root"):
            if k in given:
                given[k] = Path(given[k])
        return replace(self, **given).validated()

    def validated(self) -> "Settings":
        if self.cache_keep < 1:
            raise ConfigError(f"cache_keep must be >= 1, got {self.cache_keep}")
        if not self.workdir.is_dir():
            raise ConfigError(f"workdir does not exist: {self.workdir}")
        return self
