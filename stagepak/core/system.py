from __future__ import annotations
import logging
from pathlib import Path

import psutil

log = logging.getLogger(__name__)


def _existing_parent(p: Path) -> Path:
    while not p.exists() and p.parent != p:
        p = p.parent
    return p


def check_resources(stage_dir: Path, min_ram_gb: float = 2, min_disk_gb: float = 10) -> None:
    """Warn when the stage volume or memory looks too small for a staging run."""
    mem = psutil.virtual_memory().available / (1024**3)
    disk = psutil.disk_usage(str(_existing_parent(Path(stage_dir).resolve()))).free / (1024**3)
    if mem < min_ram_gb:
        log.warning("[system] low memory (%.1f GB available)", mem)
    if disk < min_disk_gb:
        log.warning("[system] low disk space on stage volume (%.1f GB free)", disk)


def optimal_threads(cap: int = 8) -> int:
    # hashing is IO bound: one thread per physical core, 1GB RAM per thread
    cores = max(psutil.cpu_count(logical=False) or 1, 1)
    ram_gb = psutil.virtual_memory().total / (1024**3)
    by_ram = max(1, int(ram_gb))
    return max(1, min(by_ram, cores, cap))
