# channels.py
# Replaying a pipeline for a single toolchain channel.
from __future__ import annotations

import re
from typing import List, Optional

from .model import Command, Pipeline


CHANNELS = ("stable", "nightly", "beta")

_CHANNEL_RE = re.compile(r"(?<![\w.-])(" + "|".join(CHANNELS) + r")(?![\w.-])")


def channels_named(command: Command | str) -> List[str]:
    """Known channels a command names as whole words, in order, without repeats."""
    text = command.run if isinstance(command, Command) else command
    seen: List[str] = []
    for m in _CHANNEL_RE.finditer(text):
        if m.group(1) not in seen:
            seen.append(m.group(1))
    return seen


def channel_of(command: Command | str) -> Optional[str]:
    """
    The one channel a command selects, or None.

    A command that names several channels (e.g. `update stable && update beta`)
    is not tied to any single one.
    """
    named = channels_named(command)
    return named[0] if len(named) == 1 else None


def channels_in(pipeline: Pipeline, *, phase: str = "test") -> List[str]:
    if phase not in pipeline.phases:
        return []
    out: List[str] = []
    for c in pipeline.phase(phase).commands:
        ch = channel_of(c)
        if ch and ch not in out:
            out.append(ch)
    return out


def for_channel(pipeline: Pipeline, channel: str, *, phase: str = "test") -> Pipeline:
    """
    Copy of `pipeline` where `phase` keeps only the commands for `channel`
    (plus commands tied to no channel). Other phases are left alone.
    """
    if channel not in CHANNELS:
        raise ValueError(f"Unknown channel {channel!r}, expected one of {list(CHANNELS)}")

    out = pipeline.copy()
    if phase not in out.phases:
        return out

    target = out.phase(phase)
    kept = [c for c in target.commands if channel_of(c) in (None, channel)]
    out.phases[phase] = target.with_commands(kept)
    return out
