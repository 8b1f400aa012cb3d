# cache.py
from __future__ import annotations

import hashlib
import io
import os
import platform
import tarfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
from urllib.parse import quote, unquote

from .model import CacheKey, CacheRestore
from .ui.console import get_console

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Run-level caching of one build output dir (e.g. target/):
#   key          = "<platform>-<prefix>-<sha256(lock file)>"
#   restore_keys = ["<platform>-<prefix>-"]
#
# Restore tries the exact key, then each restore key as a prefix (newest
# entry wins). Save runs at the end of every run, whatever the verdict.
# Stores only see opaque bytes: a tar.gz of the cached path.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".railci/cache"
DEFAULT_CACHE_EXCLUDES = [
    "**/.DS_Store",
    "**/*.tmp",
]

_RUNNER_OS = {
    "Linux": "Linux",
    "Darwin": "macOS",
    "Windows": "Windows",
}


class CacheSaveFailed(Exception):
    """Raised by stores and packing when a cache entry cannot be written."""


class CacheStore(Protocol):
    def get(self, key: str) -> Tuple[bool, bytes]: ...

    def put(self, key: str, data: bytes) -> None: ...

    def keys(self) -> List[str]: ...


def runner_os() -> str:
    """Platform identifier in the form hosted runners report it."""
    system = platform.system()
    return _RUNNER_OS.get(system, system or "unknown")


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def hash_files(repo_root: str | Path, *patterns: str) -> str:
    """
    Content hash of every file matching the patterns, relative to repo_root.

    Returns "" when nothing matches, so a missing lock file still yields a
    usable (prefix-only) key.
    """
    root = Path(repo_root).resolve()
    matched: List[Path] = []
    for pat in patterns:
        p = root / pat
        if p.is_file():
            matched.append(p)
            continue
        matched.extend(m for m in sorted(root.glob(pat)) if m.is_file())

    if not matched:
        return ""

    seen = set()
    digests: List[str] = []
    for p in sorted(matched):
        rp = str(p.resolve())
        if rp in seen:
            continue
        seen.add(rp)
        digests.append(_hash_file_contents(p))

    if len(digests) == 1:
        return digests[0]
    return _sha256_bytes("".join(digests).encode("utf-8"))


def compute_cache_key(
    platform_id: str,
    lock_hash: str,
    *,
    prefix: str = "target",
) -> CacheKey:
    base = f"{platform_id}-{prefix}-"
    return CacheKey(key=f"{base}{lock_hash}", restore_keys=[base])


# ---------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------

def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def pack_path(repo_root: str | Path, path: str, *, excludes: Optional[List[str]] = None) -> bytes:
    """tar.gz the given file/dir (relative to repo_root) into bytes."""
    root = Path(repo_root).resolve()
    src = (root / path).resolve()
    if not src.exists():
        raise CacheSaveFailed(f"Path does not exist: {path}")

    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])
    files = [src] if src.is_file() else list(_iter_files_under(src))

    buf = io.BytesIO()
    try:
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for f in files:
                rel = _relpath(f, root)
                if _matches_any_glob(rel, exclude_globs):
                    continue
                tar.add(str(f), arcname=rel, recursive=False)
    except (OSError, tarfile.TarError) as e:
        raise CacheSaveFailed(f"Could not pack {path}: {e}") from e
    return buf.getvalue()


def unpack_into(repo_root: str | Path, data: bytes) -> None:
    """Overwrite-by-extraction of a packed cache entry into repo_root."""
    root = Path(repo_root).resolve()
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        tar.extractall(path=str(root), filter="data")


# ---------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------

class MemoryCacheStore:
    """In-process key/value store. Later puts replace earlier ones."""

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}

    def get(self, key: str) -> Tuple[bool, bytes]:
        if key in self._entries:
            return True, self._entries[key]
        return False, b""

    def put(self, key: str, data: bytes) -> None:
        # re-insert so the newest write sorts first in keys()
        self._entries.pop(key, None)
        self._entries[key] = data

    def keys(self) -> List[str]:
        return list(reversed(self._entries))


class FileCacheStore:
    """
    File-based cache store:
      root/
        <quoted key>.tar.gz
    """

    SUFFIX = ".tar.gz"

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{self.SUFFIX}"

    def get(self, key: str) -> Tuple[bool, bytes]:
        art = self.artifact_path(key)
        if not art.exists():
            return False, b""
        return True, art.read_bytes()

    def put(self, key: str, data: bytes) -> None:
        art = self.artifact_path(key)
        tmp = art.with_name(f"{art.name}.{os.getpid()}.tmp")
        try:
            # write to tmp, then atomic rename: concurrent writers race, last one wins
            tmp.write_bytes(data)
            tmp.replace(art)
        except OSError as e:
            raise CacheSaveFailed(f"Could not write cache entry {key!r}: {e}") from e
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def keys(self) -> List[str]:
        arts = [p for p in self.root.glob(f"*{self.SUFFIX}") if p.is_file()]
        arts.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        return [unquote(p.name[: -len(self.SUFFIX)]) for p in arts]

    def prune(self, prefix: str, keep: int = 3) -> None:
        """Keep only the newest N entries whose key starts with prefix."""
        stale = [k for k in self.keys() if k.startswith(prefix)][keep:]
        for k in stale:
            self.artifact_path(k).unlink(missing_ok=True)


# ---------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------

class CacheManager:
    """Restore at run start, save at run end. Cache problems never fail a run."""

    def __init__(self, store: CacheStore, *, repo_root: str | Path = "."):
        self.store = store
        self.repo_root = Path(repo_root).resolve()

    def compute_key(
        self,
        lock_file: str,
        *,
        platform_id: Optional[str] = None,
        prefix: str = "target",
    ) -> CacheKey:
        try:
            lock_hash = hash_files(self.repo_root, lock_file)
        except OSError as e:
            # an unreadable lock file degrades to the prefix-only key
            get_console().print_warning(f"could not hash {lock_file}: {e}")
            lock_hash = ""
        return compute_cache_key(platform_id or runner_os(), lock_hash, prefix=prefix)

    def restore(self, key: str, restore_keys: Iterable[str] = ()) -> CacheRestore:
        try:
            return self._lookup(key, list(restore_keys))
        except OSError as e:
            get_console().print_warning(f"cache restore failed: {e}")
            return CacheRestore(hit=False)

    def _lookup(self, key: str, restore_keys: List[str]) -> CacheRestore:
        found, data = self.store.get(key)
        if found:
            return CacheRestore(hit=True, data=data, matched_key=key)

        if restore_keys:
            # keys() is newest first, so the first match per prefix is the newest
            stored = self.store.keys()
            for prefix in restore_keys:
                for candidate in stored:
                    if candidate.startswith(prefix):
                        found, data = self.store.get(candidate)
                        if found:
                            return CacheRestore(hit=False, data=data, matched_key=candidate)

        return CacheRestore(hit=False)

    def restore_into(self, key: str, restore_keys: Iterable[str] = ()) -> CacheRestore:
        """restore() and extract whatever was found into the repo root."""
        result = self.restore(key, restore_keys)
        if result.data is None:
            return result
        try:
            unpack_into(self.repo_root, result.data)
        except (OSError, tarfile.TarError) as e:
            get_console().print_warning(f"cache exists but restore failed: {e}")
            return CacheRestore(hit=False)
        return result

    def save(self, key: str, path: str, *, keep: Optional[int] = None) -> bool:
        """
        Pack `path` and store it under `key`. Returns False (and warns) on failure.

        With `keep`, stores that support pruning drop all but the newest `keep`
        entries sharing the key's restore prefix.
        """
        console = get_console()
        try:
            data = pack_path(self.repo_root, path)
            self.store.put(key, data)
            prune = getattr(self.store, "prune", None)
            if keep is not None and callable(prune):
                prune(key.rsplit("-", 1)[0] + "-", keep=keep)
        except (CacheSaveFailed, OSError) as e:
            console.print_warning(f"cache save failed: {e}")
            return False
        return True
