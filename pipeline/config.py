"""pipeline.config

YAML configuration for review runs.

Why this exists
---------------
Everything that used to be hard-coded in the CI workflow (toolchain pin, perf
kit version, workload archives, self-hosted runner paths) lives in one YAML
file so that a host can be reconfigured without touching code.

Design goals
------------
- Permissive: every key is optional and falls back to the built-in default.
- Secrets never live here; tokens come from the environment (see
  :mod:`pipeline.wiring`).
- Relative paths are anchored at the directory holding the config file.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pipeline.bindings import (
    BINDINGS,
    CORE_REPOSITORY,
    DEFAULT_TOOLCHAIN,
    PERF_KIT_REF,
    PERF_KIT_REPOSITORY,
    BindingInfo,
    get_binding,
)
from pipeline.errors import ConfigurationError


DEFAULT_CONFIG_NAME = "review_ci.yaml"

DEFAULT_WORKLOADS: Dict[str, List[str]] = {
    "dacapo": ["/usr/share/benchmarks/dacapo/dacapo-2006-10-MR2.jar"],
}


# ----------------------------
# YAML model
# ----------------------------

@dataclass(frozen=True)
class PerfKitConfig:
    """Where the comparison toolkit comes from.

    If ``path`` is set, a pre-installed checkout is used as-is (typical for
    self-hosted benchmark hosts); otherwise ``repository@ref`` is checked out
    into the run's working directory.
    """

    repository: str = PERF_KIT_REPOSITORY
    ref: str = PERF_KIT_REF
    path: Optional[str] = None


@dataclass(frozen=True)
class BindingSettings:
    """Per-binding overrides layered on top of :data:`pipeline.bindings.BINDINGS`."""

    repository: Optional[str] = None
    manifest: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineConfig:
    target_branch: str = "master"
    toolchain: str = DEFAULT_TOOLCHAIN
    core_repository: str = CORE_REPOSITORY
    bindings: Dict[str, BindingSettings] = field(default_factory=dict)
    perf_kit: PerfKitConfig = field(default_factory=PerfKitConfig)
    workloads: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_WORKLOADS))

    work_root: str = "work"
    artifacts_root: str = "artifacts"
    lock_path: str = "work/.benchmark-host.lock"
    lock_timeout_minutes: Optional[int] = None

    test_timeout_minutes: int = 60
    comment_limit: int = 65536
    max_workers: int = 4
    github_api: str = "https://api.github.com"

    # Directory relative paths are anchored at (the config file's directory).
    base_dir: Optional[str] = None

    # ----------------------------
    # Derived values
    # ----------------------------

    def binding(self, key: str) -> BindingInfo:
        info = get_binding(key)
        settings = self.bindings.get(key)
        if settings is None:
            return info
        env = dict(info.env)
        env.update(settings.env or {})
        return dataclasses.replace(
            info,
            repository=settings.repository or info.repository,
            manifest=settings.manifest or info.manifest,
            env=env,
        )

    def resolve_path(self, value: str) -> Path:
        p = Path(value).expanduser()
        if p.is_absolute():
            return p
        base = Path(self.base_dir) if self.base_dir else Path.cwd()
        return (base / p).resolve()

    @property
    def work_path(self) -> Path:
        return self.resolve_path(self.work_root)

    @property
    def artifacts_path(self) -> Path:
        return self.resolve_path(self.artifacts_root)

    @property
    def lock_file(self) -> Path:
        return self.resolve_path(self.lock_path)

    @property
    def perf_kit_path(self) -> Optional[Path]:
        return self.resolve_path(self.perf_kit.path) if self.perf_kit.path else None

    @property
    def test_timeout_seconds(self) -> int:
        return int(self.test_timeout_minutes) * 60

    # ----------------------------
    # Conversions
    # ----------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_branch": self.target_branch,
            "toolchain": self.toolchain,
            "core_repository": self.core_repository,
            "bindings": {
                k: {"repository": v.repository, "manifest": v.manifest, "env": dict(v.env or {})}
                for k, v in self.bindings.items()
            },
            "perf_kit": {
                "repository": self.perf_kit.repository,
                "ref": self.perf_kit.ref,
                "path": self.perf_kit.path,
            },
            "workloads": {k: list(v) for k, v in self.workloads.items()},
            "work_root": self.work_root,
            "artifacts_root": self.artifacts_root,
            "lock_path": self.lock_path,
            "lock_timeout_minutes": self.lock_timeout_minutes,
            "test_timeout_minutes": self.test_timeout_minutes,
            "comment_limit": self.comment_limit,
            "max_workers": self.max_workers,
            "github_api": self.github_api,
        }

    @staticmethod
    def from_dict(raw: Dict[str, Any], *, base_dir: Optional[Path] = None) -> "PipelineConfig":
        raw = raw or {}
        defaults = PipelineConfig()

        bindings: Dict[str, BindingSettings] = {}
        bindings_raw = raw.get("bindings") or {}
        if not isinstance(bindings_raw, dict):
            raise ConfigurationError("'bindings' must be a mapping of binding key -> settings")
        for key, b_raw in bindings_raw.items():
            if key not in BINDINGS:
                raise ConfigurationError(f"Unknown binding {key!r} in config. Valid: {sorted(BINDINGS)}")
            b_raw = b_raw or {}
            if not isinstance(b_raw, dict):
                raise ConfigurationError(f"Settings for binding {key!r} must be a mapping")
            env_raw = b_raw.get("env") or {}
            if not isinstance(env_raw, dict):
                raise ConfigurationError(f"'env' for binding {key!r} must be a mapping")
            bindings[key] = BindingSettings(
                repository=b_raw.get("repository"),
                manifest=b_raw.get("manifest"),
                env={str(k): str(v) for k, v in env_raw.items()},
            )

        pk_raw = raw.get("perf_kit") or {}
        if not isinstance(pk_raw, dict):
            raise ConfigurationError("'perf_kit' must be a mapping")
        perf_kit = PerfKitConfig(
            repository=str(pk_raw.get("repository") or PERF_KIT_REPOSITORY),
            ref=str(pk_raw.get("ref") or PERF_KIT_REF),
            path=pk_raw.get("path") or None,
        )

        workloads_raw = raw.get("workloads")
        if workloads_raw is None:
            workloads = dict(DEFAULT_WORKLOADS)
        elif isinstance(workloads_raw, dict):
            workloads = {}
            for suite, files in workloads_raw.items():
                if isinstance(files, str):
                    files = [files]
                if not isinstance(files, list):
                    raise ConfigurationError(f"Workload suite {suite!r} must list files")
                workloads[str(suite)] = [str(f) for f in files]
        else:
            raise ConfigurationError("'workloads' must be a mapping of suite -> files")

        lock_timeout = raw.get("lock_timeout_minutes")

        try:
            return PipelineConfig(
                target_branch=str(raw.get("target_branch") or defaults.target_branch),
                toolchain=str(raw.get("toolchain") or defaults.toolchain),
                core_repository=str(raw.get("core_repository") or defaults.core_repository),
                bindings=bindings,
                perf_kit=perf_kit,
                workloads=workloads,
                work_root=str(raw.get("work_root") or defaults.work_root),
                artifacts_root=str(raw.get("artifacts_root") or defaults.artifacts_root),
                lock_path=str(raw.get("lock_path") or defaults.lock_path),
                lock_timeout_minutes=int(lock_timeout) if lock_timeout is not None else None,
                test_timeout_minutes=int(raw.get("test_timeout_minutes", defaults.test_timeout_minutes)),
                comment_limit=int(raw.get("comment_limit", defaults.comment_limit)),
                max_workers=max(1, int(raw.get("max_workers", defaults.max_workers))),
                github_api=str(raw.get("github_api") or defaults.github_api).rstrip("/"),
                base_dir=str(base_dir) if base_dir else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid config value: {e}") from e


# ----------------------------
# YAML IO
# ----------------------------

def load_config(path: Optional[str | Path] = None) -> PipelineConfig:
    """Load the pipeline config from YAML.

    ``path=None`` looks for ``review_ci.yaml`` in the current directory and
    falls back to built-in defaults when it does not exist.
    """
    import yaml

    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return PipelineConfig(base_dir=str(Path.cwd()))
        p = candidate.resolve()
    else:
        p = Path(path).expanduser().resolve()
        if not p.exists():
            raise ConfigurationError(f"Config file not found: {p}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config file is not valid YAML: {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config YAML must be a mapping/object at top level: {p}")
    return PipelineConfig.from_dict(raw, base_dir=p.parent)


def dump_config(path: str | Path, config: PipelineConfig) -> Path:
    """Write a config YAML to the given path."""
    import yaml

    p = Path(path).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    text = yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False, width=120)
    p.write_text(text, encoding="utf-8")
    return p
