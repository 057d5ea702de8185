"""Staging configuration: platform policy and run options, loaded once from JSON."""

from __future__ import annotations

import enum
import json
import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .manifest import to_slash

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")
_PATH_RULE = re.compile(r'^\(\s*Path\s*=\s*"([^"]*)"\s*\)$')


def _resolve_env(value: Any) -> Any:
    if not value or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if match:
        return os.getenv(match.group(1)) or ""
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


class ArchivePolicy(enum.Enum):
    ALWAYS = "always"
    NEVER = "never"
    DONT_CARE = "dont_care"


@dataclass(frozen=True)
class RemapRule:
    prefix: str
    replacement: str


@dataclass(frozen=True)
class PlatformPolicy:
    """Per-platform staging policy supplied by the build pipeline."""
    name: str
    cook_platform: str
    lowercase_verbatim: bool = False
    lowercase_packed: bool = False
    lowercase_archive_internal: bool = False
    archive_policy: ArchivePolicy = ArchivePolicy.DONT_CARE
    archive_options: str = ""
    hash_tracked: frozenset[str] = frozenset()
    remaps: tuple[RemapRule, ...] = ()
    case_sensitive: bool = True

    def remap(self, rel_path: str) -> str:
        """Rewrite the first matching path prefix; unmatched paths pass through."""
        p = to_slash(rel_path)
        for rule in self.remaps:
            if p.lower().startswith(rule.prefix.lower()):
                return rule.replacement + p[len(rule.prefix):]
        return p

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformPolicy":
        if not data.get("name"):
            raise ConfigError("platform policy requires a name")
        try:
            policy = ArchivePolicy(data.get("archive_policy", "dont_care"))
        except ValueError:
            raise ConfigError(f"unknown archive_policy {data.get('archive_policy')!r}") from None
        remaps = tuple(RemapRule(to_slash(r[0]), to_slash(r[1])) for r in data.get("remaps", []))
        return cls(
            name=data["name"],
            cook_platform=data.get("cook_platform") or data["name"],
            lowercase_verbatim=_as_bool(data.get("lowercase_verbatim", False)),
            lowercase_packed=_as_bool(data.get("lowercase_packed", False)),
            lowercase_archive_internal=_as_bool(data.get("lowercase_archive_internal", False)),
            archive_policy=policy,
            archive_options=_resolve_env(data.get("archive_options", "")) or "",
            hash_tracked=frozenset(to_slash(p) for p in data.get("hash_tracked", [])),
            remaps=remaps,
            case_sensitive=_as_bool(data.get("case_sensitive", True)),
        )


@dataclass(frozen=True)
class StageDirectoryRule:
    """An extra content directory that is always staged, relative to the content root."""
    relative_path: str
    verbatim: bool = False

    @classmethod
    def parse(cls, text: str, verbatim: bool = False) -> "StageDirectoryRule":
        """Accepts `(Path="Movies")` or a bare `Movies`."""
        s = text.strip()
        m = _PATH_RULE.match(s)
        if m:
            return cls(to_slash(m.group(1)), verbatim)
        if '"' in s or "(" in s:
            raise ConfigError(f"malformed stage directory entry {text!r}")
        return cls(to_slash(s), verbatim)


@dataclass(frozen=True)
class StagingConfig:
    project_name: str
    project_root: Path
    engine_root: Path
    stage_dir: Path
    log_dir: Path
    stage_platform: PlatformPolicy
    cook_source_platform: PlatformPolicy | None = None
    source_stage_dir: Path | None = None
    stage_project_root: str = ""
    archive_internal_root: str = "../../../"
    archive_subdir: str = "Content/Paks"
    archive_extension: str = ".pak"
    create_archive: bool = False
    skip_archive: bool = False
    sign_key: str | None = None
    compressed: bool = False
    installed: bool = False
    utf8_output: bool = False
    generating_patch: bool = False
    based_on_release_version: str | None = None
    create_release_version: str | None = None
    chunk_install: bool = False
    chunk_install_dir: Path | None = None
    chunk_install_version: str = ""
    use_chunk_manifests: bool = True
    tmp_packaging_dir: Path | None = None
    iterative_deploy: bool = False
    no_clean_stage: bool = False
    no_debug_info: bool = False
    stage_dirs: tuple[StageDirectoryRule, ...] = ()
    archiver_exe: Path | None = None
    patch_tool_exe: Path | None = None

    def __post_init__(self) -> None:
        if not self.stage_project_root:
            object.__setattr__(self, "stage_project_root", self.project_name)
        if self.chunk_install and (not self.chunk_install_dir or not self.chunk_install_version):
            raise ConfigError("chunk_install requires chunk_install_dir and chunk_install_version")

    # ----- derived -----

    @property
    def source_platform(self) -> PlatformPolicy:
        return self.cook_source_platform or self.stage_platform

    @property
    def cook_platform(self) -> str:
        return self.stage_platform.cook_platform

    @property
    def reuses_cross_platform(self) -> bool:
        return self.source_platform.name != self.stage_platform.name

    @property
    def has_based_on_release(self) -> bool:
        return bool(self.based_on_release_version)

    @property
    def should_create_archive(self) -> bool:
        if self.skip_archive:
            return False
        policy = self.stage_platform.archive_policy
        if policy is ArchivePolicy.ALWAYS:
            return True
        if policy is ArchivePolicy.NEVER:
            return False
        return self.create_archive or bool(self.sign_key)

    def with_options(self, **changes: Any) -> "StagingConfig":
        return replace(self, **changes)

    # ----- loading -----

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> "StagingConfig":
        base = base_dir or Path.cwd()

        def _path(key: str, default: Path | None = None) -> Path | None:
            raw = _resolve_env(data.get(key))
            if not raw:
                return default
            p = Path(raw)
            return p if p.is_absolute() else (base / p)

        for key in ("project_name", "project_root", "stage_dir", "stage_platform"):
            if not data.get(key):
                raise ConfigError(f"missing required config key {key!r}")

        project_root = _path("project_root")
        stage_dir = _path("stage_dir")
        rules = tuple(StageDirectoryRule.parse(s) for s in data.get("stage_dirs_packed", []))
        rules += tuple(StageDirectoryRule.parse(s, verbatim=True) for s in data.get("stage_dirs_verbatim", []))
        source = data.get("cook_source_platform")

        known = {f.name for f in fields(cls)} - {"stage_dirs"} | {"stage_dirs_packed", "stage_dirs_verbatim"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config key(s): {', '.join(unknown)}")
        flags = {k: _as_bool(data[k]) for k in (
            "create_archive", "skip_archive", "compressed", "installed", "utf8_output",
            "generating_patch", "chunk_install", "use_chunk_manifests", "iterative_deploy",
            "no_clean_stage", "no_debug_info") if k in data}
        strings = {k: _resolve_env(data[k]) for k in (
            "stage_project_root", "archive_internal_root", "archive_subdir", "archive_extension",
            "sign_key", "based_on_release_version", "create_release_version",
            "chunk_install_version") if k in data}

        return cls(
            project_name=data["project_name"],
            project_root=project_root,
            engine_root=_path("engine_root", project_root.parent),
            stage_dir=stage_dir,
            log_dir=_path("log_dir", stage_dir.parent / "Logs"),
            stage_platform=PlatformPolicy.from_dict(data["stage_platform"]),
            cook_source_platform=PlatformPolicy.from_dict(source) if source else None,
            source_stage_dir=_path("source_stage_dir"),
            chunk_install_dir=_path("chunk_install_dir"),
            tmp_packaging_dir=_path("tmp_packaging_dir"),
            archiver_exe=_path("archiver_exe"),
            patch_tool_exe=_path("patch_tool_exe"),
            stage_dirs=rules,
            **flags,
            **strings,
        )

    @classmethod
    def load(cls, path: str | Path) -> "StagingConfig":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid config {p}: {e}") from e
        return cls.from_dict(data, base_dir=p.parent)

    def save_json(self, path: str | Path) -> None:
        """Write the options back out (paths as strings)."""
        def _plat(pp: PlatformPolicy) -> dict[str, Any]:
            return {
                "name": pp.name, "cook_platform": pp.cook_platform,
                "lowercase_verbatim": pp.lowercase_verbatim, "lowercase_packed": pp.lowercase_packed,
                "lowercase_archive_internal": pp.lowercase_archive_internal,
                "archive_policy": pp.archive_policy.value, "archive_options": pp.archive_options,
                "hash_tracked": sorted(pp.hash_tracked),
                "remaps": [[r.prefix, r.replacement] for r in pp.remaps],
                "case_sensitive": pp.case_sensitive,
            }

        data: dict[str, Any] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if f.name == "stage_dirs" or v is None:
                continue
            if isinstance(v, PlatformPolicy):
                v = _plat(v)
            elif isinstance(v, Path):
                v = str(v)
            data[f.name] = v
        data["stage_dirs_packed"] = [r.relative_path for r in self.stage_dirs if not r.verbatim]
        data["stage_dirs_verbatim"] = [r.relative_path for r in self.stage_dirs if r.verbatim]
        Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")
