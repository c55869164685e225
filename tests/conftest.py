"""Shared fixtures for phaseci tests."""

import textwrap
from pathlib import Path

import pytest

from phaseci.config import Settings
from phaseci.ui.console import Console, set_console


REPO_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def fresh_console():
    """Every test starts with a non-debug console."""
    set_console(Console())
    yield


@pytest.fixture
def reference_manifest():
    """The circle.yml shipped at the repository root."""
    return REPO_ROOT / "circle.yml"


@pytest.fixture
def write_manifest(tmp_path):
    """Write a YAML manifest into tmp_path and return its path."""

    def _write(text: str, name: str = "circle.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(text))
        return path

    return _write


@pytest.fixture
def settings(tmp_path):
    """Settings that run commands with /bin/sh inside tmp_path."""
    return Settings(workdir=tmp_path, shell=None)


def read_log(path: Path) -> list[str]:
    if not path.exists():
        return []
    return path.read_text().split()
