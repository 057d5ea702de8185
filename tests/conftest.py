import os
import re
import subprocess
from pathlib import Path

import pytest

from stagepak.config import PlatformPolicy, StagingConfig

os.environ.setdefault("STAGEPAK_TQDM", "1")


class FakeArchiverRunner:
    """Stands in for the archiver executable: records argv, writes the output file."""

    def __init__(self, returncode: int = 0):
        self.returncode = returncode
        self.calls: list[list[str]] = []

    def __call__(self, cmd, check=False, on_output=None, **kwargs):
        self.calls.append(list(cmd))
        if on_output:
            on_output("packing")
        if self.returncode == 0:
            out = Path(cmd[1])
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(b"archive:" + out.name.encode())
        return subprocess.CompletedProcess(cmd, self.returncode, "packing\n", "" if self.returncode == 0 else "boom\n")


class FakePatchToolRunner:
    """Stands in for the patch-manifest generator: drops <AppName><Version>.manifest in CloudDir."""

    def __init__(self, returncode: int = 0):
        self.returncode = returncode
        self.calls: list[list[str]] = []

    @staticmethod
    def arg(cmd, name):
        for a in cmd:
            m = re.match(rf'^-{name}="?(.*?)"?$', a)
            if m:
                return m.group(1)
        return None

    def __call__(self, cmd, check=False, on_output=None, **kwargs):
        self.calls.append(list(cmd))
        if self.returncode == 0:
            cloud = Path(self.arg(cmd, "CloudDir"))
            cloud.mkdir(parents=True, exist_ok=True)
            name = self.arg(cmd, "AppName") + self.arg(cmd, "BuildVersion") + ".manifest"
            (cloud / name).write_text("manifest", encoding="utf-8")
        return subprocess.CompletedProcess(cmd, self.returncode, "", "")


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides) -> StagingConfig:
        platform = overrides.pop("stage_platform", None) or PlatformPolicy(name="Linux", cook_platform="LinuxNoEditor")
        base = dict(
            project_name="Demo",
            project_root=tmp_path / "Demo",
            engine_root=tmp_path / "Engine",
            stage_dir=tmp_path / "Stage" / "LinuxNoEditor",
            log_dir=tmp_path / "Logs",
            stage_platform=platform,
            archiver_exe=tmp_path / "bin" / "archiver",
            patch_tool_exe=tmp_path / "bin" / "patchtool",
        )
        base.update(overrides)
        return StagingConfig(**base)

    return _make


@pytest.fixture
def archiver_runner():
    return FakeArchiverRunner()


@pytest.fixture
def patch_runner():
    return FakePatchToolRunner()


def write_file(path: Path, data: bytes | str = b"x", mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode()
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path
