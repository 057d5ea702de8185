import threading
import time
from pathlib import Path

import pytest

from conftest import FakePatchToolRunner
from stagepak.errors import ArchiveBuildFailedError, StagingError
from stagepak.patchtool import PatchTool, ToolBuildLock, build_command


def test_lock_builds_missing_tool_once_across_threads(tmp_path):
    exe = tmp_path / "bin" / "patchtool"
    lock = ToolBuildLock()
    started = threading.Barrier(6)

    def build(path: Path):
        time.sleep(0.05)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("tool")

    def worker():
        started.wait()
        lock.ensure(exe, build)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert lock.builds == 1
    assert exe.exists()


def test_existing_tool_is_not_rebuilt(tmp_path):
    exe = tmp_path / "patchtool"
    exe.write_text("tool")
    lock = ToolBuildLock()
    assert lock.ensure(exe, lambda p: pytest.fail("should not build")) is False
    assert lock.builds == 0


def test_default_builder_refuses(tmp_path):
    tool = PatchTool(tmp_path / "missing", ToolBuildLock())
    with pytest.raises(StagingError):
        tool.ensure_exists()


def test_command_args(tmp_path):
    cmd = build_command(Path("bpt"), Path("/raw"), Path("/cloud"), "Demo_pakchunk2", "1.0", 2)
    assert cmd[0] == "bpt"
    assert '-BuildRoot="/raw"' in cmd
    assert '-CloudDir="/cloud"' in cmd
    assert "-AppID=1" in cmd
    assert '-AppName="Demo_pakchunk2"' in cmd
    assert '-BuildVersion="1.0"' in cmd
    assert '-customint="ChunkID=2"' in cmd
    assert cmd[-1] == "-stdout"


def test_generate_returns_manifest_in_cloud_dir(tmp_path):
    runner = FakePatchToolRunner()
    tool = PatchTool(tmp_path / "bpt", ToolBuildLock(), runner=runner)
    out = tool.generate(tmp_path / "raw", tmp_path / "cloud", "Demo_pakchunk1", "v1", 1)
    assert out == tmp_path / "cloud" / "Demo_pakchunk1v1.manifest"
    assert out.exists()


def test_generate_failure_raises(tmp_path):
    tool = PatchTool(tmp_path / "bpt", ToolBuildLock(), runner=FakePatchToolRunner(returncode=1))
    with pytest.raises(ArchiveBuildFailedError):
        tool.generate(tmp_path / "raw", tmp_path / "cloud", "Demo_pakchunk1", "v1", 1)
