from __future__ import annotations
import os, shutil, logging
from pathlib import Path

log = logging.getLogger(__name__)


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


# ----- probes (never raise) -----

def file_exists(p: str | Path | None) -> bool:
    if not p:
        return False
    try:
        return Path(p).is_file()
    except (OSError, ValueError):
        return False


def dir_exists(p: str | Path | None) -> bool:
    if not p:
        return False
    try:
        return Path(p).is_dir()
    except (OSError, ValueError):
        return False


# ----- tolerant file ops (return bool) -----

def safe_copy(src: Path, dst: Path) -> bool:
    """Copy src → dst, creating parent dirs. Returns False instead of raising."""
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
        return True
    except OSError as e:
        log.warning("[io] copy failed %s → %s: %s", src, dst, e)
        return False


def safe_delete(p: Path) -> bool:
    try:
        if p.exists():
            p.unlink()
        return True
    except OSError as e:
        log.warning("[io] delete failed %s: %s", p, e)
        return False


# ----- strict file ops -----

def safe_replace(src_tmp: Path, dst: Path) -> None:
    """Atomic-ish replace on same volume. Caller ensures src_tmp is complete."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    os.replace(str(src_tmp), str(dst))


def copy_file_incremental(src: Path, dst: Path) -> bool:
    """Copy src over dst unless dst already has the same size and mtime.

    Returns True when a copy happened. mtime is preserved so the staged file
    carries the source timestamp.
    """
    if src == dst:
        return False
    if dst.exists():
        s, d = src.stat(), dst.stat()
        if s.st_size == d.st_size and int(s.st_mtime) == int(d.st_mtime):
            return False
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(dst.name + ".tmp_copy")
    shutil.copy2(src, tmp)
    safe_replace(tmp, dst)
    return True


def delete_files(root: Path, pattern: str) -> list[Path]:
    """Delete every file under root matching pattern (recursive)."""
    removed: list[Path] = []
    if not root.exists():
        return removed
    for p in root.rglob(pattern):
        if p.is_file():
            p.unlink()
            removed.append(p)
    return removed


def rm_tree(root: Path) -> None:
    if root.exists():
        shutil.rmtree(root)
