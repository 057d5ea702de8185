from __future__ import annotations
import logging, re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from .core.io import file_exists
from .errors import InvalidChunkNameError
from .manifest import Manifest

log = logging.getLogger(__name__)

CHUNK_LIST_NAME = "pakchunklist.txt"
CHUNK_LAYER_LIST_NAME = "pakchunklayers.txt"
DEFAULT_CHUNK_ID = 0

_CHUNK_ID = re.compile(r"chunk(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class ChunkMembership:
    """Destination paths (lower-cased) that belong to one chunk."""
    name: str
    paths: frozenset[str] = frozenset()

    @classmethod
    def from_lines(cls, name: str, lines: Iterable[str]) -> "ChunkMembership":
        return cls(name, frozenset(s.strip().lower() for s in lines if s.strip()))

    def contains(self, dest_path: str) -> bool:
        d = dest_path.lower()
        return (d in self.paths
                or d.replace("/", "\\") in self.paths
                or d.replace("\\", "/") in self.paths)


@dataclass
class Chunk:
    id: int
    name: str
    entries: Manifest = field(default_factory=Manifest)


def chunk_id_from_name(name: str) -> int:
    m = _CHUNK_ID.search(name)
    if not m:
        raise InvalidChunkNameError(f"unable to parse chunk id from {name!r}")
    return int(m.group(1))


# ----- loading -----

def chunk_list_exists(list_file: Path) -> bool:
    return file_exists(list_file)


def read_membership(path: Path) -> ChunkMembership:
    lines = Path(path).read_text(encoding="utf-8-sig").splitlines()
    return ChunkMembership.from_lines(Path(path).stem, lines)


def load_memberships(list_file: Path, base_dir: Path | None = None) -> list[ChunkMembership]:
    """Read the chunk list file, then every per-chunk file it names (in order)."""
    list_file = Path(list_file)
    base = Path(base_dir) if base_dir else list_file.parent
    names = [s.strip() for s in list_file.read_text(encoding="utf-8-sig").splitlines() if s.strip()]
    return [read_membership(base / n) for n in names]


# ----- partition -----

def partition(manifest: Manifest, memberships: Sequence[ChunkMembership],
              default_name: str = "pakchunk0") -> list[Chunk]:
    """Assign every entry to the first chunk whose membership lists its destination.

    Unmatched entries go to chunk 0. Overlapping memberships are not an error:
    the lower index wins. Each chunk keeps the manifest's relative order.
    """
    names = [m.name for m in memberships] or [default_name]
    chunks = [Chunk(i, n, Manifest(manifest.case_sensitive)) for i, n in enumerate(names)]
    for e in manifest:
        idx = DEFAULT_CHUNK_ID
        for i, m in enumerate(memberships):
            if m.contains(e.dest_path):
                idx = i
                break
        chunks[idx].entries.add(e.source_path, e.dest_path)
    log.info("[chunk] partitioned %d file(s) into %d chunk(s): %s", len(manifest), len(chunks),
             ", ".join(f"{c.name}={len(c.entries)}" for c in chunks))
    return chunks
