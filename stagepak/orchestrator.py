"""Per-chunk archive production.

For every chunk the orchestrator computes where its archive lands in the stage
directory, reuses an archive already produced for the cook-source platform when
staging a derived platform, otherwise runs the archiver (optionally against a
prior release as patch base), handles chunk-install packaging and finally
registers the archive in the verbatim manifest so it is kept and copied.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from . import paths
from .archiver import ArchiveRequest, Archiver
from .chunks import Chunk, chunk_id_from_name
from .config import StagingConfig
from .core.io import dir_exists, ensure_dir, file_exists, rm_tree, safe_copy, safe_delete
from .errors import MissingPatchBaseError, StagingError
from .manifest import Manifest
from .patchtool import PatchTool

log = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    chunk_id: int
    name: str
    target_path: Path
    relative_path: str
    reused: bool = False
    built: bool = False
    skipped: bool = False
    registered: bool = False
    patch_base: Path | None = None
    raw_data_path: Path | None = None


def choose_order_file(cfg: StagingConfig) -> Path:
    game, editor = paths.order_file_candidates(cfg)
    return game if file_exists(game) else editor


class ArchiveOrchestrator:
    def __init__(self, cfg: StagingConfig, archiver: Archiver, register: Manifest,
                 patch_tool: PatchTool | None = None):
        self.cfg = cfg
        self.archiver = archiver
        self.register = register
        self.patch_tool = patch_tool

    # ----- steps -----

    def target_path(self, chunk_name: str) -> tuple[Path, str]:
        rel = paths.relative_archive_path(self.cfg, self.cfg.stage_platform, chunk_name,
                                          patch=self.cfg.generating_patch)
        return self.cfg.stage_dir / rel, rel

    def try_reuse(self, chunk_name: str, target: Path) -> bool:
        """Copy the cook-source platform's archive instead of building one."""
        cfg = self.cfg
        if not cfg.reuses_cross_platform:
            return False
        if cfg.source_stage_dir is None:
            log.info("[archive] no source stage dir for %s, creating new archive", cfg.source_platform.name)
            return False
        src_rel = paths.relative_archive_path(cfg, cfg.source_platform, chunk_name,
                                              patch=cfg.generating_patch)
        src = cfg.source_stage_dir / src_rel
        if not file_exists(src):
            log.info("[archive] no source archive at %s, creating new archive", src)
            return False
        ensure_dir(target.parent)
        if safe_copy(src, target):
            log.info("[archive] copying source archive from %s to %s instead of creating new archive", src, target)
            return True
        log.info("[archive] failed to copy source archive from %s to %s, creating new archive", src, target)
        return False

    def patch_base(self, chunk_name: str) -> Path | None:
        cfg = self.cfg
        if not (cfg.generating_patch and cfg.has_based_on_release):
            return None
        name = paths.archive_file_name(chunk_name, cfg.cook_platform, cfg.archive_extension)
        return paths.release_archive_path(cfg, cfg.based_on_release_version, name)

    def build_new(self, entries: Manifest, target: Path, patch_base: Path | None) -> bool:
        cfg = self.cfg
        response = entries.response_entries(cfg.archive_internal_root)
        if not response:
            return False
        if patch_base is not None and not file_exists(patch_base):
            raise MissingPatchBaseError(f"patch base {patch_base} for {target.name} does not exist")
        req = ArchiveRequest(
            output=target,
            order_file=choose_order_file(cfg),
            sign_key=cfg.sign_key,
            installed=cfg.installed,
            utf8_output=cfg.utf8_output,
            patch_base=patch_base,
            platform_options=cfg.stage_platform.archive_options,
            compressed=cfg.compressed,
        )
        return self.archiver.create(response, req) is not None

    def copy_to_release(self, target: Path) -> None:
        """Keep the archive under Releases/<version> as a future patch base."""
        dst = paths.release_archive_path(self.cfg, self.cfg.create_release_version, target.name)
        ensure_dir(dst.parent)
        shutil.copy2(target, dst)
        log.info("[archive] release copy %s", dst)

    def install_chunk(self, chunk_id: int, chunk_name: str, target: Path,
                      patch_base: Path | None) -> Path:
        """Move a non-base chunk into the raw data area and generate its install manifest."""
        cfg = self.cfg
        if self.patch_tool is None:
            raise StagingError("chunk install requested but no patch tool is configured")
        self.patch_tool.ensure_exists()

        version = cfg.chunk_install_version
        raw_dir = paths.chunk_raw_data_dir(cfg, chunk_name)
        raw_archive = raw_dir / paths.archive_file_name(chunk_name, cfg.cook_platform,
                                                        cfg.archive_extension, cfg.generating_patch)
        if file_exists(raw_archive):
            safe_delete(raw_archive)
        ensure_dir(raw_dir)
        shutil.copy2(target, raw_archive)
        target.unlink()

        if cfg.generating_patch:
            if patch_base is None or not file_exists(patch_base):
                raise MissingPatchBaseError(f"no source archive for patch archive {target}")
            # the unpatched archive ships alongside the patch
            src_raw = raw_dir / paths.archive_file_name(chunk_name, cfg.cook_platform, cfg.archive_extension)
            shutil.copy2(patch_base, src_raw)

        manifest_dir = paths.chunk_manifest_dir(cfg)
        ensure_dir(manifest_dir)
        app_name = f"{cfg.project_name}_{chunk_name}"
        produced = self.patch_tool.generate(raw_dir, paths.chunk_cloud_dir(cfg), app_name, version, chunk_id)
        shutil.copy2(produced, raw_dir / produced.name)
        shutil.copy2(produced, manifest_dir / produced.name)
        log.info("[chunk] %s installed out-of-band at %s", chunk_name, raw_dir)
        return raw_dir

    # ----- per chunk -----

    def process(self, chunk_name: str, entries: Manifest, chunk_id: int = 0) -> ChunkResult:
        cfg = self.cfg
        target, rel = self.target_path(chunk_name)
        result = ChunkResult(chunk_id, chunk_name, target, rel)

        result.reused = self.try_reuse(chunk_name, target)
        result.patch_base = self.patch_base(chunk_name)
        if not result.reused:
            result.built = self.build_new(entries, target, result.patch_base)
            if not result.built:
                result.skipped = True
                log.info("[archive] chunk %s is empty, no archive", chunk_name)
                return result

        if cfg.create_release_version:
            self.copy_to_release(target)

        if cfg.chunk_install:
            install_id = chunk_id_from_name(chunk_name)
            if install_id != 0:
                result.raw_data_path = self.install_chunk(install_id, chunk_name, target, result.patch_base)
                return result

        self.register.add(str(target), rel)
        result.registered = True
        return result

    def clear_chunk_install_output(self) -> None:
        manifest_dir = paths.chunk_manifest_dir(self.cfg)
        if dir_exists(manifest_dir):
            for f in manifest_dir.glob("*.manifest"):
                safe_delete(f)
        version_dir = paths.chunk_version_dir(self.cfg)
        if dir_exists(version_dir):
            rm_tree(version_dir)

    def run(self, chunks: Sequence[Chunk]) -> list[ChunkResult]:
        """Produce every chunk's archive in id order."""
        if self.cfg.chunk_install:
            self.clear_chunk_install_output()
        results = [self.process(c.name, c.entries, c.id) for c in sorted(chunks, key=lambda c: c.id)]

        layers = paths.chunk_layer_source(self.cfg)
        if file_exists(layers):
            dst = paths.chunk_layer_dest(self.cfg)
            ensure_dir(dst.parent)
            shutil.copy2(layers, dst)
        return results
