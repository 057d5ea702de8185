from __future__ import annotations
import logging
from pathlib import Path
from typing import Collection, Iterable, Mapping

from . import fingerprint as fp
from .core.io import file_exists
from .manifest import Manifest

log = logging.getLogger(__name__)


def _pairs(records: Mapping[str, object] | Iterable[tuple[str, object]]) -> list[tuple[str, object]]:
    if isinstance(records, Mapping):
        return list(records.items())
    return list(records)


def _text(value: object) -> str:
    return value.encode() if isinstance(value, (fp.Hash, fp.Timestamp)) else str(value)


def write(records: Mapping[str, object] | Iterable[tuple[str, object]], path: str | Path) -> bool:
    """Write `dest<TAB>fingerprint` lines in iteration order.

    Nothing is written for an empty manifest; returns whether a file was written.
    """
    pairs = _pairs(records)
    if not pairs:
        return False
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("".join(f"{dest}\t{_text(v)}\n" for dest, v in pairs), encoding="utf-8")
    return True


def read_pairs(path: str | Path) -> list[tuple[str, str]]:
    """Every well-formed line as (dest, fingerprint text); lines without a tab are skipped."""
    raw = Path(path).read_text(encoding="utf-8", errors="replace")
    out: list[tuple[str, str]] = []
    skipped = 0
    for line in raw.splitlines():
        dest, sep, value = line.partition("\t")
        if not sep:
            if line.strip():
                skipped += 1
            continue
        out.append((dest, value.strip()))
    if skipped:
        log.warning("[manifest] skipped %d malformed line(s) in %s", skipped, path)
    return out


def read(path: str | Path) -> dict[str, str]:
    return dict(read_pairs(path))


def merge_into(target: dict[str, fp.Fingerprint], pairs: Iterable[tuple[str, str]],
               hash_tracked: Collection[str]) -> int:
    """Decode pairs and merge them into target, keeping the newest record per path."""
    n = 0
    for dest, text in pairs:
        seen = fp.decode(dest, text, hash_tracked)
        cur = target.get(dest)
        target[dest] = seen if cur is None else fp.newest(cur, seen)
        n += 1
    return n


def read_merged(path: str | Path, hash_tracked: Collection[str]) -> dict[str, fp.Fingerprint]:
    """Read a staged manifest; a missing file means nothing was staged."""
    merged: dict[str, fp.Fingerprint] = {}
    if file_exists(path):
        merge_into(merged, read_pairs(path), hash_tracked)
    return merged


# ----- build-log dumps -----

def dump_manifest(manifest: Manifest, path: str | Path) -> bool:
    """Diagnostic `"source" "dest"` listing; nothing is written for an empty manifest."""
    if not manifest:
        return False
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("".join(f'"{e.source_path}" "{e.dest_path}"\n' for e in manifest), encoding="utf-8")
    return True


def write_paths(paths: Iterable[str], path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("".join(f"{x}\n" for x in paths), encoding="utf-8")
