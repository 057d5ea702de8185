"""Typed failures raised by the staging engine."""

from __future__ import annotations


class StagingError(RuntimeError):
    pass


class ConfigError(StagingError):
    pass


class DuplicateKeyError(StagingError):
    """A manifest key would map to two different destinations."""

    def __init__(self, key: str, existing: str, new: str):
        super().__init__(f"manifest already maps {key!r} to {existing!r}, cannot remap to {new!r}")
        self.key = key
        self.existing = existing
        self.new = new


class ManifestWriteError(StagingError, OSError):
    pass


class ArchiveBuildFailedError(StagingError):
    def __init__(self, tool: str, returncode: int, cmd: list[str], output: str = ""):
        super().__init__(f"{tool} exited with code {returncode}")
        self.tool = tool
        self.returncode = returncode
        self.cmd = cmd
        self.output = output


class MissingPatchBaseError(StagingError):
    pass


class InvalidChunkNameError(StagingError):
    pass


class TimestampParseError(StagingError, ValueError):
    def __init__(self, path: str, value: str):
        super().__init__(f"cannot parse timestamp {value!r} for {path}")
        self.path = path
        self.value = value
