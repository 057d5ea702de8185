from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Iterator

from .errors import DuplicateKeyError


def to_slash(p: str) -> str:
    return p.replace("\\", "/")


def join_slash(*parts: str) -> str:
    """Join path fragments with forward slashes, collapsing duplicate separators."""
    out = "/".join(to_slash(p).strip("/") for p in parts if p and to_slash(p).strip("/"))
    if parts and to_slash(parts[0]).startswith("/"):
        out = "/" + out
    return out


@dataclass(frozen=True)
class ManifestEntry:
    source_path: str
    dest_path: str


class Manifest:
    """Insertion-ordered source → destination mapping with unique source keys.

    With case_sensitive=False, sources that differ only in case are the same key
    (the first spelling seen is kept).
    """

    def __init__(self, case_sensitive: bool = True, entries: Iterable[tuple[str, str]] = ()):
        self.case_sensitive = case_sensitive
        self._items: dict[str, ManifestEntry] = {}
        for src, dst in entries:
            self.add(src, dst)

    def _key(self, source: str) -> str:
        return source if self.case_sensitive else source.lower()

    def add(self, source: str, dest: str) -> None:
        key = self._key(source)
        cur = self._items.get(key)
        if cur is not None:
            if cur.dest_path != dest:
                raise DuplicateKeyError(source, cur.dest_path, dest)
            return
        self._items[key] = ManifestEntry(source, dest)

    def get(self, source: str) -> str | None:
        e = self._items.get(self._key(source))
        return e.dest_path if e else None

    def __contains__(self, source: object) -> bool:
        return isinstance(source, str) and self._key(source) in self._items

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"Manifest({len(self)} entries, case_sensitive={self.case_sensitive})"

    def items(self) -> list[tuple[str, str]]:
        return [(e.source_path, e.dest_path) for e in self._items.values()]

    def dest_paths(self) -> list[str]:
        return [e.dest_path for e in self._items.values()]

    def copy(self) -> "Manifest":
        return Manifest(self.case_sensitive, self.items())

    def lowercased(self) -> "Manifest":
        """Copy with every destination lower-cased; sources untouched."""
        return Manifest(self.case_sensitive, [(s, d.lower()) for s, d in self.items()])

    def response_entries(self, internal_root: str) -> "Manifest":
        """Re-root destinations under the archive internal root.

        Archives are case-insensitive, so sources differing only in case collide.
        """
        out = Manifest(case_sensitive=False)
        for e in self:
            dest = join_slash(internal_root, e.dest_path)
            if e.source_path in out:
                raise DuplicateKeyError(e.source_path, out.get(e.source_path) or "", dest)
            out.add(e.source_path, dest)
        return out
