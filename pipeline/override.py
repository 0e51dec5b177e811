"""pipeline.override

Point a binding's core-library dependency at a local checkout.

The binding declares the core library in its Cargo manifest, e.g.::

    [dependencies]
    mmtk = { git = "https://github.com/mmtk/mmtk-core.git", rev = "1a2b3c" }

:func:`apply_override` rewrites exactly that one line in place::

    mmtk = { path = "/work/run-42/trunk-core" }

Source selectors (``git``, ``rev``, ``branch``, ``tag``, ``version``,
``registry``) are dropped; every other inline key (``features``,
``default-features``, ...) is kept. Every other byte of the manifest is left
untouched, including line endings and comments.

Manifest shapes we do not recognise raise :class:`OverrideError`: a binding we
cannot point at a local core cannot be tested against it.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import List, Optional, Tuple

from pipeline.errors import OverrideError
from pipeline.models import MaterializedSource, OverridePatch


SOURCE_KEYS = frozenset({"git", "rev", "branch", "tag", "version", "registry", "path"})

_SECTION_RE = re.compile(r"^\s*\[\s*([^\[\]]+?)\s*\]\s*(#.*)?$")


def _split_line_ending(line: str) -> Tuple[str, str]:
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def _split_comment(text: str) -> Tuple[str, str]:
    """Split a TOML value from a trailing ``# comment`` (quote aware)."""
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\" and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "#":
            return text[:i], text[i:]
        i += 1
    return text, ""


def _split_top_level(text: str) -> List[str]:
    """Split inline-table contents on commas outside strings/brackets."""
    parts: List[str] = []
    depth = 0
    quote: Optional[str] = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\" and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return [p.strip() for p in parts if p.strip()]


def _toml_string(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes.
    return json.dumps(value)


def _rewrite_value(value: str, core_path: Path, manifest: Path, dependency: str) -> str:
    value = value.strip()
    path_entry = f"path = {_toml_string(str(core_path))}"

    if value.startswith(('"', "'")):
        return "{ " + path_entry + " }"

    if value.startswith("{") and value.endswith("}"):
        kept = [path_entry]
        for entry in _split_top_level(value[1:-1]):
            key, sep, _ = entry.partition("=")
            if not sep:
                raise OverrideError(f"Cannot parse {dependency!r} dependency entry {entry!r} in {manifest}")
            if key.strip().strip("\"'") not in SOURCE_KEYS:
                kept.append(entry)
        return "{ " + ", ".join(kept) + " }"

    raise OverrideError(
        f"Unsupported {dependency!r} dependency declaration in {manifest}: {value!r} "
        "(expected a version string or an inline table)"
    )


def apply_override(
    binding_source: MaterializedSource,
    core_source: MaterializedSource,
    *,
    manifest: str = "mmtk/Cargo.toml",
    dependency: str = "mmtk",
) -> OverridePatch:
    """Rewrite the binding's core dependency to ``core_source.path`` in place."""
    manifest_path = Path(binding_source.path) / manifest
    if not manifest_path.is_file():
        raise OverrideError(f"Binding manifest not found: {manifest_path}")

    core_path = Path(core_source.path).resolve()
    try:
        with manifest_path.open("r", encoding="utf-8", newline="") as f:
            lines = f.readlines()
    except (OSError, UnicodeError) as e:
        raise OverrideError(f"Cannot read {manifest_path}: {e}") from e

    dep_re = re.compile(rf"^(?P<indent>\s*){re.escape(dependency)}(?P<sep>\s*=\s*)(?P<rest>.*)$")
    table_re = re.compile(rf"^\s*\[\s*dependencies\s*\.\s*{re.escape(dependency)}\s*\]")

    section = ""
    matches: List[int] = []
    for idx, raw in enumerate(lines):
        body, _ = _split_line_ending(raw)
        if table_re.match(body):
            raise OverrideError(
                f"{manifest_path} declares [dependencies.{dependency}] as a table; "
                "only inline declarations can be overridden"
            )
        m = _SECTION_RE.match(body)
        if m:
            section = m.group(1)
            continue
        if section == "dependencies" and dep_re.match(body):
            matches.append(idx)

    if not matches:
        raise OverrideError(f"No '{dependency} = ...' entry under [dependencies] in {manifest_path}")
    if len(matches) > 1:
        raise OverrideError(f"Multiple '{dependency} = ...' entries under [dependencies] in {manifest_path}")

    idx = matches[0]
    body, ending = _split_line_ending(lines[idx])
    m = dep_re.match(body)
    assert m is not None
    value, comment = _split_comment(m.group("rest"))
    trailing = value[len(value.rstrip()):]

    new_value = _rewrite_value(value, core_path, manifest_path, dependency)
    patched_body = f"{m.group('indent')}{dependency}{m.group('sep')}{new_value}{trailing}{comment}"
    patch = OverridePatch(
        manifest=manifest_path,
        dependency=dependency,
        original_line=body,
        patched_line=patched_body,
    )
    if not patch.changed:
        return patch

    lines[idx] = patched_body + ending
    try:
        with manifest_path.open("w", encoding="utf-8", newline="") as f:
            f.writelines(lines)
    except (OSError, UnicodeError) as e:
        raise OverrideError(f"Cannot write {manifest_path}: {e}") from e

    print(f"  🔧 {manifest}: {dependency} -> {core_path}")
    return patch
