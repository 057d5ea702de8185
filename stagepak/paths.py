# stagepak/paths.py
from __future__ import annotations
import sys
from pathlib import Path

from .chunks import CHUNK_LAYER_LIST_NAME, CHUNK_LIST_NAME
from .config import PlatformPolicy, StagingConfig
from .errors import ConfigError
from .manifest import join_slash

# ---- Host tool locations (<engine_root>/Engine/Binaries/<host>/<tool>) ----
_HOST_BINARY_DIRS = {
    "win32": "Win64",
    "cygwin": "Win64",
    "darwin": "Mac",
    "linux": "Linux",
}

ARCHIVER_NAME = "UnrealPak"
PATCH_TOOL_NAME = "BuildPatchTool"

# ---- Stage bookkeeping files ----
PACKED_MANIFEST_NAME = "Manifest_PackedFiles.txt"
VERBATIM_MANIFEST_NAME = "Manifest_VerbatimFiles.txt"
PACKED_DELTA_NAME = "Manifest_DeltaPackedFiles.txt"
VERBATIM_DELTA_NAME = "Manifest_DeltaVerbatimFiles.txt"

PATCH_SUFFIX = "_P"
GAME_ORDER_FILE = "GameOpenOrder.log"
EDITOR_ORDER_FILE = "EditorOpenOrder.log"


def host_binary_dir(platform: str | None = None) -> str:
    plat = platform or sys.platform
    for prefix, name in _HOST_BINARY_DIRS.items():
        if plat.startswith(prefix):
            return name
    raise ConfigError(f"unknown host platform for engine tools - {plat}")


def tool_path(engine_root: Path, name: str, platform: str | None = None) -> Path:
    host = host_binary_dir(platform)
    exe = name + ".exe" if host.startswith("Win") else name
    return Path(engine_root) / "Engine" / "Binaries" / host / exe


def archiver_path(cfg: StagingConfig) -> Path:
    return cfg.archiver_exe or tool_path(cfg.engine_root, ARCHIVER_NAME)


def patch_tool_path(cfg: StagingConfig) -> Path:
    return cfg.patch_tool_exe or tool_path(cfg.engine_root, PATCH_TOOL_NAME)


# ---- Packaging inputs ----

def tmp_packaging_path(cfg: StagingConfig) -> Path:
    return cfg.tmp_packaging_dir or (cfg.project_root / "Saved" / "TmpPackaging" / cfg.cook_platform)


def chunk_list_path(cfg: StagingConfig) -> Path:
    return tmp_packaging_path(cfg) / CHUNK_LIST_NAME


def chunk_layer_source(cfg: StagingConfig) -> Path:
    return tmp_packaging_path(cfg) / CHUNK_LAYER_LIST_NAME


def chunk_layer_dest(cfg: StagingConfig) -> Path:
    return cfg.project_root / "Build" / cfg.cook_platform / "ChunkLayerInfo" / CHUNK_LAYER_LIST_NAME


def order_file_candidates(cfg: StagingConfig) -> tuple[Path, Path]:
    base = cfg.project_root / "Build" / cfg.cook_platform / "FileOpenOrder"
    return base / GAME_ORDER_FILE, base / EDITOR_ORDER_FILE


# ---- Archive naming ----

def archive_file_name(chunk_name: str, cook_platform: str, ext: str, patch: bool = False) -> str:
    return f"{chunk_name}-{cook_platform}{PATCH_SUFFIX if patch else ''}{ext}"


def relative_archive_path(cfg: StagingConfig, platform: PlatformPolicy, chunk_name: str,
                          patch: bool = False) -> str:
    """Archive location relative to a stage root, after lowercase policy and remap."""
    rel = join_slash(cfg.stage_project_root, cfg.archive_subdir,
                     archive_file_name(chunk_name, platform.cook_platform, cfg.archive_extension, patch))
    if platform.lowercase_packed:
        rel = rel.lower()
    return platform.remap(rel)


def release_archive_path(cfg: StagingConfig, version: str, file_name: str) -> Path:
    return cfg.project_root / "Releases" / version / cfg.cook_platform / file_name


# ---- Chunk install layout ----

def chunk_install_base(cfg: StagingConfig) -> Path:
    if not cfg.chunk_install_dir:
        raise ConfigError("chunk install directory is not configured")
    return cfg.chunk_install_dir / cfg.cook_platform


def chunk_manifest_dir(cfg: StagingConfig) -> Path:
    return chunk_install_base(cfg) / "ManifestDir"


def chunk_cloud_dir(cfg: StagingConfig) -> Path:
    return chunk_install_base(cfg) / "CloudDir"


def chunk_version_dir(cfg: StagingConfig) -> Path:
    return chunk_install_base(cfg) / cfg.chunk_install_version


def chunk_raw_data_dir(cfg: StagingConfig, chunk_name: str) -> Path:
    return chunk_version_dir(cfg) / chunk_name


__all__ = [
    "ARCHIVER_NAME", "PATCH_TOOL_NAME",
    "PACKED_MANIFEST_NAME", "VERBATIM_MANIFEST_NAME", "PACKED_DELTA_NAME", "VERBATIM_DELTA_NAME",
    "PATCH_SUFFIX", "GAME_ORDER_FILE", "EDITOR_ORDER_FILE",
    "host_binary_dir", "tool_path", "archiver_path", "patch_tool_path",
    "tmp_packaging_path", "chunk_list_path", "chunk_layer_source", "chunk_layer_dest",
    "order_file_candidates", "archive_file_name", "relative_archive_path", "release_archive_path",
    "chunk_install_base", "chunk_manifest_dir", "chunk_cloud_dir", "chunk_version_dir",
    "chunk_raw_data_dir",
]
