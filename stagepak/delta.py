"""Incremental deployment: which staged files must be transferred again."""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Callable, Collection, Mapping, Sequence

from . import fingerprint as fp
from . import persistence
from .config import StagingConfig
from .core.io import file_exists
from .paths import PACKED_DELTA_NAME, PACKED_MANIFEST_NAME, VERBATIM_DELTA_NAME, VERBATIM_MANIFEST_NAME

log = logging.getLogger(__name__)

# The staged manifests themselves are deployed with the verbatim files.
BOOKKEEPING_FILES = (VERBATIM_MANIFEST_NAME, PACKED_MANIFEST_NAME)

Retriever = Callable[[StagingConfig], "tuple[Sequence[Path], Sequence[Path]] | None"]


class DeployCategory(enum.Enum):
    PACKED = "packed"
    VERBATIM = "verbatim"

    @property
    def manifest_name(self) -> str:
        return PACKED_MANIFEST_NAME if self is DeployCategory.PACKED else VERBATIM_MANIFEST_NAME

    @property
    def delta_name(self) -> str:
        return PACKED_DELTA_NAME if self is DeployCategory.PACKED else VERBATIM_DELTA_NAME


def merge_prior_manifests(manifests: Sequence[Path],
                          hash_tracked: Collection[str]) -> dict[str, fp.Fingerprint]:
    """Merge device-side manifests, highest priority first.

    A manifest that is missing or lists nothing means the device holds nothing
    we can trust: everything merged so far is dropped and lower-priority
    manifests are not consulted. Every manifest is deleted once seen.
    """
    merged: dict[str, fp.Fingerprint] = {}
    searching = True
    for path in manifests:
        path = Path(path)
        if searching:
            pairs = persistence.read_pairs(path) if file_exists(path) else []
            added = persistence.merge_into(merged, pairs, hash_tracked)
            if added == 0:
                log.info("[delta] %s is missing or lists no files, redeploying everything", path.name)
                merged.clear()
                searching = False
        path.unlink(missing_ok=True)
    return merged


def compute_delta(prior: Mapping[str, fp.Fingerprint], staged: Mapping[str, fp.Fingerprint],
                  category: DeployCategory) -> list[str]:
    out = [dest for dest, f in staged.items() if fp.needs_transfer(f, prior.get(dest))]
    if category is not DeployCategory.VERBATIM:
        out.extend(BOOKKEEPING_FILES)
    # TODO: list files deployed previously but no longer staged so the device can delete them
    return out


def write_delta(stage_dir: Path, category: DeployCategory, prior: Mapping[str, fp.Fingerprint],
                hash_tracked: Collection[str]) -> list[str]:
    staged = persistence.read_merged(Path(stage_dir) / category.manifest_name, hash_tracked)
    delta = compute_delta(prior, staged, category)
    persistence.write_paths(delta, Path(stage_dir) / category.delta_name)
    log.info("[delta] %s: %d of %d staged file(s) need transfer", category.value,
             len(delta), len(staged))
    return delta


def run_iterative_deploy(cfg: StagingConfig, retrieve: Retriever) -> dict[DeployCategory, list[str]]:
    """Fetch device manifests via retrieve and write both delta files into the stage dir."""
    hash_tracked = cfg.stage_platform.hash_tracked
    prior: dict[DeployCategory, dict[str, fp.Fingerprint]] = {c: {} for c in DeployCategory}
    found = retrieve(cfg)
    if found:
        packed, verbatim = found
        prior[DeployCategory.PACKED] = merge_prior_manifests(packed, hash_tracked)
        prior[DeployCategory.VERBATIM] = merge_prior_manifests(verbatim, hash_tracked)
    else:
        log.info("[delta] no deployed manifests retrieved, redeploying everything")
    return {c: write_delta(cfg.stage_dir, c, prior[c], hash_tracked) for c in DeployCategory}
