"""pipeline.bindings

Central registry of the bindings exercised against a core revision.

Why this exists
---------------
Several parts of the pipeline need to agree on the *same* binding facts:
- which bindings are supported (validation, CLI choices)
- where each binding lives and which manifest declares the core dependency
- which override directive keys belong to which binding
- which comparison script in the perf kit drives it
- extra environment its scripts expect (e.g. ``JAVA_HOME`` for JikesRVM)

These facts are defined *once* here. Entries are pure data: no filesystem
access, no subprocess execution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set

from pipeline.errors import ConfigurationError


CORE_REPOSITORY = "mmtk/mmtk-core"
CORE_DIRECTIVE_PREFIX = "MMTK_CORE"

PERF_KIT_REPOSITORY = "mmtk/ci-perf-kit"
PERF_KIT_REF = "0.4.3"

DEFAULT_TOOLCHAIN = "nightly-2020-07-08"

SETUP_SCRIPT = ".github/scripts/ci-setup.sh"
TEST_SCRIPT = ".github/scripts/ci-test.sh"


@dataclass(frozen=True)
class BindingInfo:
    """Static metadata describing one binding."""

    key: str
    label: str
    repository: str
    directive_prefix: str
    compare_script: str

    # Cargo manifest (relative to the checkout) declaring the core dependency.
    manifest: str = "mmtk/Cargo.toml"
    dependency: str = "mmtk"

    setup_script: str = SETUP_SCRIPT
    test_script: str = TEST_SCRIPT

    env: Dict[str, str] = field(default_factory=dict)

    @property
    def report_artifact(self) -> str:
        return f"{self.key}-compare-report.md"

    @property
    def log_artifact(self) -> str:
        return f"{self.key}-log"


BINDINGS: Dict[str, BindingInfo] = {
    "jikesrvm": BindingInfo(
        key="jikesrvm",
        label="JikesRVM",
        repository="mmtk/mmtk-jikesrvm",
        directive_prefix="JIKESRVM",
        compare_script="jikesrvm-compare.sh",
        env={"JAVA_HOME": "/usr/lib/jvm/java-1.8.0-openjdk-amd64"},
    ),
    "openjdk": BindingInfo(
        key="openjdk",
        label="OpenJDK",
        repository="mmtk/mmtk-openjdk",
        directive_prefix="OPENJDK",
        compare_script="openjdk-compare.sh",
    ),
}

SUPPORTED_BINDINGS: Set[str] = set(BINDINGS)
DEFAULT_BINDINGS: List[str] = ["jikesrvm", "openjdk"]


def get_binding(key: str) -> BindingInfo:
    info = BINDINGS.get(key)
    if info is None:
        raise ConfigurationError(f"Unknown binding {key!r}. Valid: {sorted(SUPPORTED_BINDINGS)}")
    return info
