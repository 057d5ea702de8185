import shutil

import pytest

from conftest import write_file
from stagepak import fingerprint as fp
from stagepak import persistence
from stagepak.archiver import Archiver
from stagepak.config import PlatformPolicy, StageDirectoryRule
from stagepak.core.hashing import hash_bytes
from stagepak.delta import BOOKKEEPING_FILES, DeployCategory
from stagepak.errors import DuplicateKeyError, StagingError
from stagepak.paths import PACKED_MANIFEST_NAME, VERBATIM_MANIFEST_NAME
from stagepak.staging import StagingContext

PLATFORM = PlatformPolicy("Linux", "LinuxNoEditor", hash_tracked=frozenset({"Demo/Binaries/Linux/Demo"}))


@pytest.fixture
def project(make_config):
    cfg = make_config(stage_platform=PLATFORM)
    root = cfg.project_root
    write_file(root / "Content/Maps/Level.umap", b"map", mtime=1_700_000_000)
    write_file(root / "Content/Textures/Rock.uasset", b"tex", mtime=1_700_000_000)
    write_file(root / "Content/Movies/Intro.mp4", b"mov", mtime=1_700_000_000)
    write_file(root / "Binaries/Linux/Demo", b"exe", mtime=1_700_000_000)
    write_file(root / "Binaries/Linux/Demo.debug", b"dbg", mtime=1_700_000_000)
    return cfg


def _stage(cfg):
    sc = StagingContext(cfg)
    sc.stage_files(cfg.project_root / "Content", excludes=["Movies/*"])
    sc.stage_files(cfg.project_root / "Binaries/Linux", pattern="Demo", verbatim=True)
    sc.stage_files(cfg.project_root / "Binaries/Linux", pattern="*.debug", verbatim=True, debug=True)
    sc.stage_directory_rules()
    return sc


def test_stage_files_builds_relative_destinations(project):
    sc = _stage(project.with_options(stage_dirs=(StageDirectoryRule("Movies", verbatim=True),)))
    assert sc.packed.dest_paths() == ["Demo/Content/Maps/Level.umap", "Demo/Content/Textures/Rock.uasset"]
    assert sc.verbatim.dest_paths() == ["Demo/Binaries/Linux/Demo", "Demo/Binaries/Linux/Demo.debug",
                                        "Demo/Content/Movies/Intro.mp4"]


def test_debug_files_dropped_without_debug_info(project):
    sc = _stage(project.with_options(no_debug_info=True))
    assert "Demo/Binaries/Linux/Demo.debug" not in sc.verbatim.dest_paths()


def test_two_sources_on_one_destination_rejected(project, tmp_path):
    sc = StagingContext(project)
    sc.stage_file(project.project_root / "Content/Maps/Level.umap", "Demo/Content/Level.umap")
    other = write_file(tmp_path / "elsewhere/Level.umap")
    with pytest.raises(DuplicateKeyError):
        sc.stage_file(other, "Demo/Content/Level.umap", verbatim=True)


def test_missing_source_dir(project):
    sc = StagingContext(project)
    with pytest.raises(StagingError):
        sc.stage_files(project.project_root / "Nope")
    assert sc.stage_files(project.project_root / "Nope", allow_none=True) == 0


def test_apply_without_archive_copies_everything(project):
    sc = _stage(project)
    result = sc.apply()

    stage = project.stage_dir
    assert (stage / "Demo/Content/Maps/Level.umap").read_bytes() == b"map"
    assert (stage / "Demo/Binaries/Linux/Demo").read_bytes() == b"exe"
    assert result.copied == 4
    assert result.archives == []

    verbatim = persistence.read(stage / VERBATIM_MANIFEST_NAME)
    assert verbatim["Demo/Binaries/Linux/Demo"] == hash_bytes(b"exe")
    assert verbatim["Demo/Binaries/Linux/Demo.debug"] == "2023-11-14T22:13:20.000Z"
    packed = persistence.read(stage / PACKED_MANIFEST_NAME)
    assert list(packed) == ["Demo/Content/Maps/Level.umap", "Demo/Content/Textures/Rock.uasset"]
    assert (project.log_dir / VERBATIM_MANIFEST_NAME).exists()
    assert (project.log_dir / "FinalCopy_PackedFiles.txt").exists()


def test_apply_with_archive_registers_it_verbatim(project, archiver_runner):
    cfg = project.with_options(create_archive=True)
    sc = _stage(cfg)
    result = sc.apply(archiver=Archiver(cfg.archiver_exe, cfg.log_dir, runner=archiver_runner))

    assert [r.name for r in result.archives] == ["Demo"]
    pak = cfg.stage_dir / "Demo/Content/Paks/Demo-LinuxNoEditor.pak"
    assert pak.exists()
    assert not (cfg.stage_dir / "Demo/Content/Maps/Level.umap").exists()
    assert not (cfg.stage_dir / PACKED_MANIFEST_NAME).exists()
    verbatim = persistence.read(cfg.stage_dir / VERBATIM_MANIFEST_NAME)
    assert "Demo/Content/Paks/Demo-LinuxNoEditor.pak" in verbatim
    assert (cfg.log_dir / "PrePak_PackedFiles.txt").exists()

    response = (cfg.log_dir / "PakList_Demo-LinuxNoEditor.txt").read_text(encoding="utf-8-sig")
    assert '"../../../Demo/Content/Maps/Level.umap"' in response


def test_apply_with_chunk_manifests(project, archiver_runner):
    cfg = project.with_options(create_archive=True)
    tmp = cfg.project_root / "Saved/TmpPackaging/LinuxNoEditor"
    write_file(tmp / "pakchunk0.txt", "")
    write_file(tmp / "pakchunk1.txt", "demo/content/maps/level.umap\n")
    write_file(tmp / "pakchunklist.txt", "pakchunk0.txt\npakchunk1.txt\n")
    sc = _stage(cfg)
    result = sc.apply(archiver=Archiver(cfg.archiver_exe, cfg.log_dir, runner=archiver_runner))

    assert [r.name for r in result.archives] == ["pakchunk0", "pakchunk1"]
    assert (cfg.stage_dir / "Demo/Content/Paks/pakchunk1-LinuxNoEditor.pak").exists()
    assert len(archiver_runner.calls) == 2


def test_lowercase_policy(project):
    cfg = project.with_options(stage_platform=PlatformPolicy("Linux", "LinuxNoEditor", lowercase_packed=True,
                                                             lowercase_verbatim=True))
    sc = _stage(cfg)
    sc.apply_lowercase_policy()
    assert "demo/content/maps/level.umap" in sc.packed.dest_paths()
    assert "demo/binaries/linux/demo" in sc.verbatim.dest_paths()


def test_iterative_deploy_only_lists_changed_files(project, tmp_path):
    cfg = project.with_options(iterative_deploy=True)
    first = _stage(cfg).apply()
    assert "Demo/Content/Maps/Level.umap" in first.deltas[DeployCategory.PACKED]

    device = tmp_path / "device"
    device.mkdir()
    shutil.copy2(cfg.stage_dir / PACKED_MANIFEST_NAME, device / "packed.txt")
    shutil.copy2(cfg.stage_dir / VERBATIM_MANIFEST_NAME, device / "verbatim.txt")

    write_file(cfg.project_root / "Content/Textures/Rock.uasset", b"tex2", mtime=1_800_000_000)
    write_file(cfg.project_root / "Binaries/Linux/Demo", b"exe", mtime=1_800_000_000)

    second = _stage(cfg).apply(retrieve=lambda _cfg: ([device / "packed.txt"], [device / "verbatim.txt"]))
    assert second.deltas[DeployCategory.PACKED] == ["Demo/Content/Textures/Rock.uasset", *BOOKKEEPING_FILES]
    # same bytes, only the mtime moved
    assert second.deltas[DeployCategory.VERBATIM] == []
    assert not (device / "packed.txt").exists()


def test_lowercased_binaries_stay_hash_tracked(project):
    cfg = project.with_options(stage_platform=PlatformPolicy(
        "Linux", "LinuxNoEditor", lowercase_verbatim=True, hash_tracked=PLATFORM.hash_tracked))
    _stage(cfg).apply()
    verbatim = persistence.read(cfg.stage_dir / VERBATIM_MANIFEST_NAME)
    assert verbatim["demo/binaries/linux/demo"] == hash_bytes(b"exe")
    assert verbatim["demo/binaries/linux/demo.debug"] == "2023-11-14T22:13:20.000Z"


def test_fingerprints_go_through_classifier(project, monkeypatch):
    seen = []
    real = fp.fingerprint_file

    def spy(dest, tracked, source, staged, digest=None):
        seen.append((dest, digest))
        return real(dest, tracked, source, staged, digest)

    monkeypatch.setattr(fp, "fingerprint_file", spy)
    sc = _stage(project)
    sc.apply()
    assert ("Demo/Binaries/Linux/Demo", hash_bytes(b"exe")) in seen
    assert ("Demo/Content/Maps/Level.umap", None) in seen
