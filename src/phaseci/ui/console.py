"""Console output formatting utilities for phaseci."""

from __future__ import annotations

import sys
from typing import Iterable, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        manifest: str,
        phases: list[str],
        command_count: int,
        channel: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Manifest: {manifest}")
        print(f"Phases: {', '.join(phases) if phases else '(none)'}")
        print(f"Commands: {command_count}")
        if channel:
            print(f"Channel: {channel}")
        print()

    def print_phase_start(self, name: str, command_count: int) -> None:
        print(f"\nPHASE STARTED: {name} ({command_count} command(s))")

    def print_command(self, index: int, run: str, dry_run: bool = False) -> None:
        prefix = "WOULD RUN" if dry_run else "RUN"
        print(f"{prefix} [{index + 1}]: {run}")

    def print_success(self, name: str) -> None:
        """Print success message."""
        print(f"STATUS: success ({name})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Phase name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        print(f"PHASE FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_cache(self, message: str) -> None:
        print(f"CACHE: {message}")

    def print_cache_hint(self, path: str, resolved: str, exists: bool) -> None:
        state = "present" if exists else "missing"
        print(f"  {path} -> {resolved} ({state})")

    def print_plan(self, lines: Iterable[tuple[str, int, str]]) -> None:
        """Print (phase, index, command) tuples grouped by phase."""
        current = None
        for phase, index, run in lines:
            if phase != current:
                print(f"{phase}:")
                current = phase
            print(f"  {index + 1}. {run}")

    def print_results(self, results: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for phase, status in results.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            print(f"  {phase}: {status_display}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
