from .dsl import cmd, phase, pipeline, matrix
from .manifest import load_manifest, load_pipeline, parse_manifest
from .runner import run_pipeline, RunResult
from .model import Command, Phase, Pipeline, CacheDirective

__all__ = [
    "cmd", "phase", "pipeline", "matrix",
    "load_manifest", "load_pipeline", "parse_manifest",
    "run_pipeline", "RunResult",
    "Command", "Phase", "Pipeline", "CacheDirective",
]
