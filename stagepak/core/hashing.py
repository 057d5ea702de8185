from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable

import xxhash

_READ_SIZE = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    return xxhash.xxh3_128(data).hexdigest()


def hash_file(p: Path) -> str:
    h = xxhash.xxh3_128()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(_READ_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def hash_files(paths: Iterable[Path], workers: int = 1, on_done=None) -> list[str]:
    """Hash paths, returning digests in input order.

    on_done(path) is called from the calling thread as each result is collected.
    """
    paths = list(paths)
    if workers <= 1 or len(paths) < 2:
        out = []
        for p in paths:
            out.append(hash_file(p))
            if on_done:
                on_done(p)
        return out
    with ThreadPoolExecutor(max_workers=workers) as ex:
        out = []
        for p, digest in zip(paths, ex.map(hash_file, paths)):
            out.append(digest)
            if on_done:
                on_done(p)
        return out
