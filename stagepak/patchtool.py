from __future__ import annotations
import logging, subprocess, threading
from pathlib import Path
from typing import Callable

from .core.io import ensure_dir, file_exists
from .core.proc import run_quiet
from .errors import ArchiveBuildFailedError, StagingError

log = logging.getLogger(__name__)

ToolBuilder = Callable[[Path], None]

APP_ID = 1  # constant for chunk installs
DATA_AGE_THRESHOLD = 12


class ToolBuildLock:
    """Mutex guarding the check-exists / build-if-missing sequence for a tool.

    Share one instance between every pipeline run in the process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.builds = 0

    def ensure(self, exe: Path, build: ToolBuilder) -> bool:
        """Build exe if it is missing. Returns True if this call built it."""
        if file_exists(exe):
            return False
        with self._lock:
            if file_exists(exe):
                return False
            log.info("[tool] %s missing, building it", exe)
            build(exe)
            self.builds += 1
            return True


DEFAULT_TOOL_LOCK = ToolBuildLock()


def no_builder(exe: Path) -> None:
    raise StagingError(f"{exe} does not exist and no tool builder is configured")


def build_command(exe: Path, raw_data_dir: Path, cloud_dir: Path, app_name: str,
                  version: str, chunk_id: int) -> list[str]:
    return [
        str(exe),
        f'-BuildRoot="{raw_data_dir}"',
        f'-CloudDir="{cloud_dir}"',
        f"-AppID={APP_ID}",
        f'-AppName="{app_name}"',
        f'-BuildVersion="{version}"',
        '-AppLaunch=""',
        f"-DataAgeThreshold={DATA_AGE_THRESHOLD}",
        '-AppArgs=""',
        '-custom="bIsPatch=false"',
        f'-customint="ChunkID={chunk_id}"',
        '-customint="PakReadOrdering=0"',
        "-stdout",
    ]


def manifest_file_name(app_name: str, version: str) -> str:
    return f"{app_name}{version}.manifest"


class PatchTool:
    """The external patch-manifest generator used for chunk installs."""

    def __init__(self, exe: Path, lock: ToolBuildLock, build: ToolBuilder = no_builder,
                 runner: Callable[..., subprocess.CompletedProcess] = run_quiet):
        self.exe = Path(exe)
        self.lock = lock
        self.build = build
        self.runner = runner

    def ensure_exists(self) -> None:
        self.lock.ensure(self.exe, self.build)

    def generate(self, raw_data_dir: Path, cloud_dir: Path, app_name: str,
                 version: str, chunk_id: int) -> Path:
        """Run the generator; returns where it leaves the manifest (in cloud_dir)."""
        ensure_dir(cloud_dir)
        cmd = build_command(self.exe, raw_data_dir, cloud_dir, app_name, version, chunk_id)
        log.info("[tool] generating chunk manifest for %s (chunk %d)", app_name, chunk_id)
        res = self.runner(cmd, check=False, on_output=lambda line: log.debug("[tool] %s", line))
        if res.returncode != 0:
            raise ArchiveBuildFailedError(self.exe.name, res.returncode, cmd, (res.stdout or "") + (res.stderr or ""))
        return cloud_dir / manifest_file_name(app_name, version)
