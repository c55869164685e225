# manifest.py
# Turns a circle.yml-style manifest (or a python pipeline file) into a Pipeline.
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ManifestError
from .model import CacheDirective, Command, Phase, Pipeline, SECTIONS


DEFAULT_MANIFESTS = (
    "circle.yml",
    "circle.yaml",
    ".circleci.yml",
    "phaseci_pipeline.py",
)

CACHE_KEY = "cache_directories"


# ----------------------------------------------------------------------
# YAML loading
# ----------------------------------------------------------------------

class DuplicateKeyError(yaml.YAMLError):
    def __init__(self, key: Any, top_level: bool, line: int):
        super().__init__(f"duplicate key {key!r} on line {line}")
        self.key = key
        self.top_level = top_level
        self.line = line


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects a key repeated within one mapping (yaml keeps the last one)."""

    def construct_document(self, node):
        self._root_node = node
        return super().construct_document(node)

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _value_node in node.value:
            # merge keys (<<) are allowed to repeat what they merge
            if not isinstance(key_node, yaml.ScalarNode) or key_node.tag == "tag:yaml.org,2002:merge":
                continue
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise DuplicateKeyError(
                    key,
                    top_level=node is getattr(self, "_root_node", None),
                    line=key_node.start_mark.line + 1,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def _command_list(value: Any, *, source: str, key: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestError(source, f"expected a list of strings, got {type(value).__name__}", key=key)

    out: List[str] = []
    for i, item in enumerate(value):
        # yaml happily gives us ints/bools; a command must be text
        if not isinstance(item, str):
            raise ManifestError(
                source, f"entry #{i + 1} must be a string, got {type(item).__name__}", key=key
            )
        if not item.strip():
            raise ManifestError(source, f"entry #{i + 1} is blank", key=key)
        out.append(item)
    return out


def _parse_phase(name: str, value: Any, *, source: str) -> tuple[Phase, List[CacheDirective]]:
    if value is None:
        return Phase(name=name), []

    # bare list is shorthand for override
    if isinstance(value, list):
        value = {"override": value}

    if not isinstance(value, dict):
        raise ManifestError(source, f"phase must be a mapping or a list, got {type(value).__name__}", key=name)

    unknown = sorted(str(k) for k in value if k not in SECTIONS and k != CACHE_KEY)
    if unknown:
        raise ManifestError(
            source,
            f"unknown keys {unknown}; expected any of {list(SECTIONS) + [CACHE_KEY]}",
            key=name,
        )

    commands: List[Command] = []
    for section in SECTIONS:
        for run in _command_list(value.get(section), source=source, key=f"{name}.{section}"):
            commands.append(Command(run=run, section=section))

    cache_paths = _command_list(value.get(CACHE_KEY), source=source, key=f"{name}.{CACHE_KEY}")
    directives = [CacheDirective(path=p, phase=name) for p in cache_paths]

    return Phase(name=name).with_commands(commands), directives


def parse_manifest(data: Any, *, source: str = "<manifest>") -> Pipeline:
    """
    Build a Pipeline from an already-parsed manifest mapping.

    Keys are phase names, in execution order. Each phase holds optional
    `pre`, `override`, `post` command lists and an optional
    `cache_directories` list.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(source, f"top level must be a mapping of phases, got {type(data).__name__}")

    pipeline = Pipeline(source=source)
    for name, value in data.items():
        if not isinstance(name, str):
            raise ManifestError(source, f"phase names must be strings, got {name!r}")
        phase, directives = _parse_phase(name, value, source=source)
        pipeline.add_phase(phase)
        pipeline.cache_directives.extend(directives)

    return pipeline


def load_manifest(path: str | Path) -> Pipeline:
    """Read a YAML manifest from disk."""
    p = Path(path).expanduser()
    if not p.exists():
        raise ManifestError(str(p), "manifest file not found")

    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.load(f, Loader=UniqueKeyLoader)
    except DuplicateKeyError as e:
        if e.top_level:
            raise ManifestError(str(p), f"duplicate phase (line {e.line})", key=str(e.key)) from e
        raise ManifestError(str(p), f"invalid YAML: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(str(p), f"invalid YAML: {e}") from e

    return parse_manifest(data, source=str(p))


# ----------------------------------------------------------------------
# Python pipeline files
# ----------------------------------------------------------------------

def load_pipeline_module(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file.

    The file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise ManifestError(str(p), "pipeline file not found")

    # any error raised by user code is a manifest error, not a crash
    try:
        globals_dict: Dict[str, Any] = runpy.run_path(str(p), run_name=f"phaseci_pipeline_{p.stem}")

        result = None
        if "PIPELINE" in globals_dict:
            result = globals_dict["PIPELINE"]
        elif callable(globals_dict.get("pipeline")):
            result = globals_dict["pipeline"]()
    except Exception as e:
        raise ManifestError(str(p), f"failed to load pipeline: {e!r}") from e

    if not isinstance(result, Pipeline):
        raise ManifestError(
            str(p),
            "python pipeline must define pipeline() -> Pipeline or PIPELINE = Pipeline(...)",
        )
    if result.source is None:
        result.source = str(p)
    return result


def load_pipeline(path: str | Path) -> Pipeline:
    p = Path(path)
    if p.suffix == ".py":
        return load_pipeline_module(p)
    if p.suffix in (".yml", ".yaml"):
        return load_manifest(p)
    raise ManifestError(str(p), "expected a .yml, .yaml or .py file")


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def find_manifest_files(directory: str | Path = ".") -> List[Path]:
    d = Path(directory)
    return [d / name for name in DEFAULT_MANIFESTS if (d / name).exists()]


def discover_manifest(manifest_arg: Optional[str], directory: str | Path = ".") -> Path:
    """
    Resolve the manifest to use.

    Raises:
        ManifestError: explicit path missing, or zero / several candidates found.
    """
    if manifest_arg:
        p = Path(manifest_arg)
        if not p.exists():
            raise ManifestError(manifest_arg, "manifest file not found")
        return p

    found = find_manifest_files(directory)
    if not found:
        raise ManifestError(
            str(Path(directory).resolve()),
            f"no manifest found; looked for {', '.join(DEFAULT_MANIFESTS)}",
        )
    if len(found) > 1:
        raise ManifestError(
            str(Path(directory).resolve()),
            f"multiple manifests found ({', '.join(f.name for f in found)}); pass --manifest",
        )
    return found[0]
