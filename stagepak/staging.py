"""Staging run: build manifests, produce archives, copy and fingerprint files."""

from __future__ import annotations

import fnmatch
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from . import fingerprint as fp
from . import paths, persistence
from .archiver import Archiver
from .chunks import chunk_list_exists, load_memberships, partition
from .config import StagingConfig
from .core.hashing import hash_files
from .core.io import copy_file_incremental, delete_files, dir_exists, file_exists, rm_tree, safe_delete
from .core.system import check_resources, optimal_threads
from .delta import DeployCategory, Retriever, run_iterative_deploy
from .errors import DuplicateKeyError, ManifestWriteError, StagingError
from .logging_utils import progress
from .manifest import Manifest, join_slash, to_slash
from .orchestrator import ArchiveOrchestrator, ChunkResult
from .patchtool import DEFAULT_TOOL_LOCK, PatchTool

log = logging.getLogger(__name__)


@dataclass
class StageResult:
    archives: list[ChunkResult] = field(default_factory=list)
    copied: int = 0
    manifests: list[Path] = field(default_factory=list)
    deltas: dict[DeployCategory, list[str]] | None = None


def _is_under(p: Path, root: Path) -> bool:
    try:
        p.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


class StagingContext:
    """Holds the packed-set and verbatim-set manifests for one staging run."""

    def __init__(self, cfg: StagingConfig):
        self.cfg = cfg
        self.case_sensitive = cfg.stage_platform.case_sensitive
        self.packed = Manifest(self.case_sensitive)
        self.verbatim = Manifest(self.case_sensitive)
        self._owners: dict[str, str] = {}

    # ----- building the manifests -----

    def stage_file(self, source: str | Path, dest: str, verbatim: bool = False, remap: bool = True) -> None:
        dest = to_slash(dest)
        if remap:
            dest = self.cfg.stage_platform.remap(dest)
        src = str(source)
        key = dest if self.case_sensitive else dest.lower()
        owner = self._owners.get(key)
        if owner is not None and Path(owner) != Path(src):
            # two different files would land on the same staged path
            raise DuplicateKeyError(dest, owner, src)
        (self.verbatim if verbatim else self.packed).add(src, dest)
        self._owners[key] = src

    def default_dest(self, source_dir: Path) -> str:
        cfg = self.cfg
        if _is_under(source_dir, cfg.project_root):
            rel = source_dir.resolve().relative_to(cfg.project_root.resolve()).as_posix()
            return join_slash(cfg.stage_project_root, rel)
        if _is_under(source_dir, cfg.engine_root):
            return source_dir.resolve().relative_to(cfg.engine_root.resolve()).as_posix()
        raise StagingError(f"{source_dir} is outside the project and engine roots")

    def stage_files(self, source_dir: str | Path, pattern: str = "*", recursive: bool = True,
                    excludes: Iterable[str] = (), dest_dir: str | None = None,
                    verbatim: bool = False, allow_none: bool = False, remap: bool = True,
                    debug: bool = False) -> int:
        """Stage every file under source_dir matching pattern. Returns files added."""
        if debug and self.cfg.no_debug_info:
            return 0
        source_dir = Path(source_dir)
        if not dir_exists(source_dir):
            if allow_none:
                return 0
            raise StagingError(f"stage source directory {source_dir} does not exist")

        excludes = tuple(excludes)
        found = source_dir.rglob(pattern) if recursive else source_dir.glob(pattern)
        base = dest_dir if dest_dir is not None else self.default_dest(source_dir)
        added = 0
        for f in sorted(found):
            if not f.is_file():
                continue
            rel = f.relative_to(source_dir).as_posix()
            if any(fnmatch.fnmatch(rel, x) or fnmatch.fnmatch(f.name, x) for x in excludes):
                continue
            self.stage_file(f, join_slash(base, rel), verbatim=verbatim, remap=remap)
            added += 1
        if added == 0 and not allow_none:
            raise StagingError(f"no files found to stage in {source_dir} ({pattern})")
        return added

    def stage_directory_rules(self) -> int:
        """Stage the configured always-stage directories under the project content root."""
        cfg = self.cfg
        content = cfg.project_root / "Content"
        stage_content = join_slash(cfg.stage_project_root, "Content")
        n = 0
        for rule in cfg.stage_dirs:
            n += self.stage_files(content / rule.relative_path,
                                  dest_dir=join_slash(stage_content, rule.relative_path),
                                  verbatim=rule.verbatim, allow_none=True)
        return n

    def apply_lowercase_policy(self) -> None:
        plat = self.cfg.stage_platform
        if plat.lowercase_verbatim:
            self.verbatim = self.verbatim.lowercased()
        if self.cfg.should_create_archive:
            if plat.lowercase_archive_internal:
                self.packed = self.packed.lowercased()
        elif plat.lowercase_packed:
            self.packed = self.packed.lowercased()

    # ----- stage directory -----

    def prepare_stage_dir(self) -> None:
        cfg = self.cfg
        if not cfg.no_clean_stage and not cfg.iterative_deploy:
            log.info("[stage] cleaning %s", cfg.stage_dir)
            rm_tree(cfg.stage_dir)
        else:
            removed = delete_files(cfg.stage_dir, "*" + cfg.archive_extension)
            if removed:
                log.info("[stage] removed %d old archive(s)", len(removed))

    def dump_manifests(self, base_name: str) -> None:
        base = self.cfg.log_dir / base_name
        persistence.dump_manifest(self.verbatim, f"{base}_VerbatimFiles.txt")
        persistence.dump_manifest(self.packed, f"{base}_PackedFiles.txt")

    def create_archives(self, archiver: Archiver | None = None,
                        patch_tool: PatchTool | None = None) -> list[ChunkResult]:
        cfg = self.cfg
        self.dump_manifests("PrePak")
        archiver = archiver or Archiver(paths.archiver_path(cfg), cfg.log_dir)
        if patch_tool is None and cfg.chunk_install:
            patch_tool = PatchTool(paths.patch_tool_path(cfg), DEFAULT_TOOL_LOCK)
        orch = ArchiveOrchestrator(cfg, archiver, self.verbatim, patch_tool)

        list_file = paths.chunk_list_path(cfg)
        if cfg.use_chunk_manifests and chunk_list_exists(list_file):
            log.info("[stage] creating archives using chunk manifests")
            return orch.run(partition(self.packed, load_memberships(list_file)))
        log.info("[stage] creating archive using staging manifest")
        return [orch.process(cfg.project_name, self.packed, 0)]

    # ----- copy + fingerprint -----

    def fingerprints(self, manifest: Manifest) -> list[tuple[str, fp.Fingerprint]]:
        """Fingerprint every entry, hashing tracked files on a small thread pool."""
        cfg = self.cfg
        tracked = cfg.stage_platform.hash_tracked
        entries = list(manifest)
        hashed = [e for e in entries if fp.classify(e.dest_path, tracked) is fp.FingerprintKind.HASH]
        digests: dict[str, str] = {}
        if hashed:
            with progress(len(hashed), "Hashing") as bar:
                staged = [cfg.stage_dir / e.dest_path for e in hashed]
                for e, d in zip(hashed, hash_files(staged, optimal_threads(), on_done=lambda _: bar.update(1))):
                    digests[e.dest_path] = d
        return [(e.dest_path, fp.fingerprint_file(e.dest_path, tracked, Path(e.source_path),
                                                  cfg.stage_dir / e.dest_path, digests.get(e.dest_path)))
                for e in entries]

    def copy_manifest_files(self, manifest: Manifest, manifest_name: str | None) -> tuple[int, Path | None]:
        """Copy entries into the stage dir and write its fingerprinted manifest."""
        cfg = self.cfg
        manifest_path = cfg.stage_dir / manifest_name if manifest_name else None
        if manifest_path is not None:
            safe_delete(manifest_path)

        copied = 0
        with progress(len(manifest), "Staging") as bar:
            for e in manifest:
                src = Path(e.source_path)
                dst = cfg.stage_dir / e.dest_path
                if src != dst and copy_file_incremental(src, dst):
                    copied += 1
                bar.update(1)

        if manifest_path is None or not manifest:
            return copied, None
        persistence.write(self.fingerprints(manifest), manifest_path)
        if not file_exists(manifest_path):
            raise ManifestWriteError(f"failed to write manifest {manifest_path}")
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(manifest_path, cfg.log_dir / manifest_name)
        return copied, manifest_path

    def copy_using_staging_manifest(self, result: StageResult) -> None:
        groups = [(self.verbatim, paths.VERBATIM_MANIFEST_NAME)]
        if not self.cfg.should_create_archive:
            groups.append((self.packed, paths.PACKED_MANIFEST_NAME))
        for manifest, name in groups:
            copied, written = self.copy_manifest_files(manifest, name)
            result.copied += copied
            if written:
                result.manifests.append(written)

    # ----- whole run -----

    def apply(self, archiver: Archiver | None = None, patch_tool: PatchTool | None = None,
              retrieve: Retriever | None = None) -> StageResult:
        cfg = self.cfg
        log.info("[stage] %s → %s (%s, %d packed, %d verbatim)", cfg.project_name, cfg.stage_dir,
                 cfg.stage_platform.name, len(self.packed), len(self.verbatim))
        check_resources(cfg.stage_dir)
        self.apply_lowercase_policy()
        self.prepare_stage_dir()

        result = StageResult()
        if cfg.should_create_archive:
            result.archives = self.create_archives(archiver, patch_tool)
        self.dump_manifests("FinalCopy")
        self.copy_using_staging_manifest(result)

        if cfg.iterative_deploy:
            result.deltas = run_iterative_deploy(cfg, retrieve or (lambda _cfg: None))
        log.info("[stage] done, %d file(s) copied", result.copied)
        return result
