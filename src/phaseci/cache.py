# cache.py
from __future__ import annotations

import hashlib
import io
import json
import shutil
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .model import CacheDirective, Pipeline

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# cache_directories in a manifest are hints for the CI host. By default we
# only resolve and report them. With a cache root configured, the hinted
# directories are also persisted locally:
#
#   cache_key = hash(
#       phase name,
#       commands of the phase that declared the directories,
#       the declared directory strings,
#   )
#
# Artifact: a tar.gz of the directories plus a manifest.json next to it.
# Paths are stored relative to an anchor so they extract back in place:
#   "~/.multirust"  -> home/.multirust
#   "/opt/tool"     -> abs/opt/tool
#   "target"        -> rel/target        (relative to the workdir)
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".phaseci/cache"
DEFAULT_CACHE_EXCLUDES = [
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


@dataclass(frozen=True)
class ResolvedHint:
    path: str        # as written in the manifest
    resolved: Path   # absolute
    phase: str

    @property
    def exists(self) -> bool:
        return self.resolved.exists()


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict


# ---------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------

def resolve_hint(directive: CacheDirective, *, workdir: str | Path = ".") -> ResolvedHint:
    p = Path(directive.path).expanduser()
    if not p.is_absolute():
        p = Path(workdir) / p
    return ResolvedHint(path=directive.path, resolved=p.resolve(), phase=directive.phase)


def resolve_hints(pipeline: Pipeline, *, workdir: str | Path = ".") -> List[ResolvedHint]:
    """Resolve every cache directive to an absolute path. Informational only."""
    return [resolve_hint(d, workdir=workdir) for d in pipeline.cache_directives]


def _anchor(path: str) -> Tuple[str, Path]:
    """(anchor, path-relative-to-anchor) for a directive path."""
    p = Path(path).expanduser()
    if path.startswith("~") and p.is_relative_to(Path.home()):
        return "home", p.relative_to(Path.home())
    if p.is_absolute():
        return "abs", p.relative_to(p.anchor)
    return "rel", p


def _anchor_root(anchor: str, workdir: Path) -> Path:
    if anchor == "home":
        return Path.home()
    if anchor == "abs":
        return Path(Path.cwd().anchor)
    return workdir


# ---------------------------------------------------------------------
# Hashing helpers
# ---------------------------------------------------------------------

def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file() and not p.is_symlink():
            yield p


def _excluded(rel: Path, globs: List[str]) -> bool:
    return any(rel.match(g) for g in globs)


def compute_cache_key(pipeline: Pipeline, phase_name: str) -> Tuple[str, Dict]:
    """Returns (cache_key, payload) for the directories declared by one phase."""
    phase = pipeline.phases.get(phase_name)
    commands = [c.run for c in phase.commands] if phase else []
    dirs = [d.path for d in pipeline.cache_directives if d.phase == phase_name]

    payload = {
        "v": 1,  # bump this if the hashing format changes
        "phase": phase_name,
        "commands": commands,
        "directories": dirs,
    }
    return _sha256_str(_json_dumps_stable(payload)), payload


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class CacheStore:
    """
    File-based cache store:
      root/
        <phase_name>/
          <key>.tar.gz
          <key>.manifest.json
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _phase_dir(self, phase_name: str) -> Path:
        d = self.root / phase_name
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, phase_name: str, key: str) -> Path:
        return self._phase_dir(phase_name) / f"{key}.tar.gz"

    def manifest_path(self, phase_name: str, key: str) -> Path:
        return self._phase_dir(phase_name) / f"{key}.manifest.json"

    @staticmethod
    def phases_with_hints(pipeline: Pipeline) -> List[str]:
        out: List[str] = []
        for d in pipeline.cache_directives:
            if d.phase not in out:
                out.append(d.phase)
        return out

    def restore(self, pipeline: Pipeline, phase_name: str, *, workdir: str | Path = ".") -> CacheHit:
        """
        Restore cached directories in place (overwrite by extraction).
        A broken artifact is reported as a miss, never raised.
        """
        key, payload = compute_cache_key(pipeline, phase_name)
        art = self.artifact_path(phase_name, key)
        man = self.manifest_path(phase_name, key)

        if not art.exists() or not man.exists():
            return CacheHit(hit=False, key=key, reason="miss", manifest=payload)

        root = Path(workdir).resolve()
        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    anchor, _, rel = member.name.partition("/")
                    rel_path = Path(rel)
                    if anchor not in ("home", "abs", "rel") or rel_path.is_absolute() or ".." in rel_path.parts:
                        continue
                    target = _anchor_root(anchor, root) / rel_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    src = tar.extractfile(member)
                    if src is None:
                        continue
                    with src, target.open("wb") as out:
                        shutil.copyfileobj(src, out)
            stored = json.loads(man.read_text(encoding="utf-8"))
        except (OSError, tarfile.TarError, ValueError) as e:
            return CacheHit(hit=False, key=key, reason=f"artifact exists but restore failed: {e}", manifest=payload)

        return CacheHit(hit=True, key=key, reason="hit: restored artifact", manifest=stored)

    def save(
        self,
        pipeline: Pipeline,
        phase_name: str,
        *,
        workdir: str | Path = ".",
        excludes: Optional[List[str]] = None,
    ) -> str:
        """Save the phase's cache directories. Missing directories are skipped. Returns the key."""
        key, payload = compute_cache_key(pipeline, phase_name)
        root = Path(workdir).resolve()
        exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])

        art = self.artifact_path(phase_name, key)
        man = self.manifest_path(phase_name, key)
        tmp = art.with_suffix(".tmp")

        stored_files: List[str] = []
        try:
            # build in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for d in pipeline.cache_directives:
                    if d.phase != phase_name:
                        continue
                    anchor, rel = _anchor(d.path)
                    base = _anchor_root(anchor, root) / rel
                    if not base.exists():
                        continue
                    files = [base] if base.is_file() else list(_iter_files_under(base))
                    for f in files:
                        rel_file = rel / f.relative_to(base) if f != base else rel
                        if _excluded(rel_file, exclude_globs):
                            continue
                        arcname = f"{anchor}/{rel_file.as_posix()}"
                        tar.add(str(f), arcname=arcname, recursive=False)
                        stored_files.append(arcname)

                manifest_bytes = json.dumps(payload, sort_keys=True, indent=2).encode("utf-8")
                info = tarfile.TarInfo(name=f".phaseci_cache_manifest/{phase_name}/{key}.json")
                info.size = len(manifest_bytes)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(manifest_bytes))

            tmp.replace(art)
            manifest = dict(payload, key=key, files=stored_files, saved_at_unix=int(time.time()))
            man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
        finally:
            if tmp.exists():
                tmp.unlink()

        return key

    def prune(self, phase_name: str, keep: int = 3) -> None:
        """Keep only the newest N artifacts for a phase (by mtime)."""
        d = self._phase_dir(phase_name)
        tars = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        for p in tars[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{key}.manifest.json").unlink(missing_ok=True)
