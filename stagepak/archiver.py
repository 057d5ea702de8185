from __future__ import annotations
import logging, os, shlex, subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .core.io import ensure_dir, file_exists
from .core.proc import run_quiet
from .errors import ArchiveBuildFailedError
from .manifest import Manifest

log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class ArchiveRequest:
    output: Path
    order_file: Path
    sign_key: str | None = None
    installed: bool = False
    utf8_output: bool = False
    patch_base: Path | None = None
    platform_options: str = ""
    compressed: bool = False


def write_response_file(entries: Manifest, path: Path, compressed: bool = False) -> Path:
    """One `"source" "dest"` line per entry, UTF-8 with BOM."""
    ensure_dir(path.parent)
    suffix = " -compress" if compressed else ""
    lines = [f'"{e.source_path}" "{e.dest_path}"{suffix}\n' for e in entries]
    path.write_text("".join(lines), encoding="utf-8-sig")
    return path


def split_options(options: str, posix: bool | None = None) -> list[str]:
    """Split the platform's extra archiver options into argv tokens.

    Outside POSIX the backslashes of Windows paths are kept; surrounding quotes are dropped.
    """
    if posix is None:
        posix = os.name != "nt"
    tokens = shlex.split(options, posix=posix)
    if not posix:
        tokens = [t[1:-1] if len(t) > 1 and t[0] == t[-1] == '"' else t for t in tokens]
    return tokens


def build_command(exe: Path, response_file: Path, req: ArchiveRequest) -> list[str]:
    cmd = [str(exe), str(req.output), f"-create={response_file}"]
    if req.sign_key:
        cmd.append(f"-sign={req.sign_key}")
    if req.installed:
        cmd.append("-installed")
    cmd.append(f"-order={req.order_file}")
    if req.utf8_output:
        cmd.append("-UTF8Output")
    if req.patch_base:
        cmd.append(f"-generatepatch={req.patch_base}")
    if req.platform_options.strip():
        cmd.extend(split_options(req.platform_options))
    return cmd


class Archiver:
    """Runs the external archiver over a response file built from a manifest."""

    def __init__(self, exe: Path, log_dir: Path, runner: Runner = run_quiet):
        self.exe = Path(exe)
        self.log_dir = Path(log_dir)
        self.runner = runner

    def response_file_path(self, output: Path) -> Path:
        return self.log_dir / f"PakList_{Path(output).stem}.txt"

    def create(self, entries: Manifest, req: ArchiveRequest) -> Path | None:
        """Build req.output from entries. Returns None for an empty entry set."""
        if not entries:
            log.info("[archive] nothing to pack for %s", req.output.name)
            return None
        response = write_response_file(entries, self.response_file_path(req.output), req.compressed)
        if not file_exists(req.order_file):
            log.info("[archive] no order file at %s, packing unordered", req.order_file)
        ensure_dir(req.output.parent)

        cmd = build_command(self.exe, response, req)
        log.info("[archive] running %s for %s (%d file(s))", self.exe.name, req.output.name, len(entries))
        res = self.runner(cmd, check=False, on_output=lambda line: log.debug("[archive] %s", line))
        if res.returncode != 0:
            raise ArchiveBuildFailedError(self.exe.name, res.returncode, cmd, (res.stdout or "") + (res.stderr or ""))
        log.info("[archive] done %s", req.output.name)
        return req.output
