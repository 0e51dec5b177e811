"""pipeline.revisions

Resolve the four refs a run compares from defaults and override directives.

Directive grammar
-----------------
Pull request descriptions and comments may carry free-text ``KEY=VALUE``
tokens, e.g.::

    Please compare against JIKESRVM_BINDING_BRANCH_REF=fix-barrier

A token is a directive when its left-hand side is an upper-case identifier.
Each binding recognises a closed set of keys (see :func:`directive_keys`).

* A recognised key with an empty value, a value that is not a valid git ref
  name, or whitespace around ``=`` raises :class:`ConfigurationError`.
* Sentence punctuation after a value (``.;:!?)`` and closing quotes) is
  dropped, so ``Please use BRANCH_CORE_REF=abc123.`` names ``abc123``.
* A key that belongs to another binding is ignored.
* Any other key is ignored, unless it is a near-miss of a recognised key
  (``MMTK_CORE_BRANCH=...``); typos like that are rejected loudly instead of
  silently running against the default revision.

Texts are applied in order, so a later comment overrides the description.
"""

from __future__ import annotations

import difflib
import logging
import re
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, Tuple

from pipeline.bindings import BINDINGS, CORE_DIRECTIVE_PREFIX, BindingInfo
from pipeline.errors import ConfigurationError
from pipeline.models import REVISION_FIELDS, RevisionSet, RunContext

logger = logging.getLogger(__name__)


GENERIC_KEYS: Dict[str, str] = {
    "TRUNK_BINDING_REF": "trunk_binding_ref",
    "TRUNK_CORE_REF": "trunk_core_ref",
    "BRANCH_BINDING_REF": "branch_binding_ref",
    "BRANCH_CORE_REF": "branch_core_ref",
}

NEAR_MISS_CUTOFF = 0.85

TRAILING_PUNCTUATION = ".;:!?)`'\""

_TOKEN_SPLIT = re.compile(r"[\s,]+")
_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_SPACED_ASSIGN_RE = re.compile(r"\b([A-Z][A-Z0-9_]*)(?:\s+=|=\s)")
_REF_FORBIDDEN = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def directive_keys(binding: BindingInfo) -> Dict[str, str]:
    """Recognised directive keys for ``binding`` mapped to RevisionSet fields."""
    p = binding.directive_prefix
    keys = dict(GENERIC_KEYS)
    keys.update(
        {
            f"{p}_BINDING_TRUNK_REF": "trunk_binding_ref",
            f"{p}_BINDING_BRANCH_REF": "branch_binding_ref",
            # Single-revision form used by the correctness flow.
            f"{p}_BINDING_REF": "branch_binding_ref",
            f"{CORE_DIRECTIVE_PREFIX}_TRUNK_REF": "trunk_core_ref",
            f"{CORE_DIRECTIVE_PREFIX}_BRANCH_REF": "branch_core_ref",
        }
    )
    return keys


def all_directive_keys() -> Set[str]:
    out: Set[str] = set()
    for info in BINDINGS.values():
        out.update(directive_keys(info))
    return out


def is_valid_ref(value: str) -> bool:
    """Conservative subset of ``git check-ref-format`` rules (also accepts SHAs)."""
    if not value or value.startswith(("-", "/")):
        return False
    if value.endswith(("/", ".", ".lock")):
        return False
    if ".." in value or "@{" in value or "//" in value:
        return False
    return _REF_FORBIDDEN.search(value) is None


def iter_directives(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(KEY, VALUE)`` for every directive-looking token in ``text``."""
    for token in _TOKEN_SPLIT.split(text or ""):
        # Directives are often written as inline code in Markdown.
        token = token.strip("`'\"")
        if "=" not in token:
            continue
        key, _, value = token.partition("=")
        if _KEY_RE.match(key.lstrip("(")):
            # Trailing sentence punctuation belongs to the prose, not the ref.
            yield key.lstrip("("), value.rstrip(TRAILING_PUNCTUATION)


def _check_spacing(text: str, candidates: Set[str]) -> None:
    for m in _SPACED_ASSIGN_RE.finditer(text or ""):
        if m.group(1) in candidates:
            raise ConfigurationError(
                f"Malformed override directive near {m.group(0).strip()!r}: "
                f"write it as {m.group(1)}=<ref> without spaces"
            )


def parse_directives(texts: Iterable[str], binding: BindingInfo) -> Dict[str, str]:
    """Parse override directives for ``binding`` into ``{revision_field: ref}``."""
    known = directive_keys(binding)
    everything = all_directive_keys()
    foreign = everything - set(known)

    out: Dict[str, str] = {}
    for text in texts:
        _check_spacing(text, set(known))
        seen: Dict[str, Tuple[str, str]] = {}
        for key, value in iter_directives(text):
            if key in known:
                if not is_valid_ref(value):
                    raise ConfigurationError(
                        f"Malformed override directive {key}={value!r}: expected a branch, tag or commit"
                    )
                field_name = known[key]
                prev = seen.get(field_name)
                if prev is not None and prev[1] != value:
                    raise ConfigurationError(
                        f"Conflicting override directives {prev[0]}={prev[1]} and {key}={value}"
                    )
                seen[field_name] = (key, value)
                out[field_name] = value
            elif key in foreign:
                continue
            else:
                close = difflib.get_close_matches(key, sorted(everything), n=1, cutoff=NEAR_MISS_CUTOFF)
                if close:
                    raise ConfigurationError(
                        f"Unrecognized override directive {key!r}; did you mean {close[0]!r}?"
                    )
                logger.debug("ignoring unrecognized directive key %s", key)
    return out


def resolve(
    ctx: RunContext,
    directives: Optional[Mapping[str, str]] = None,
    *,
    baseline: str = "master",
) -> RevisionSet:
    """Compute the RevisionSet for a run.

    Trunk refs and the branch binding ref default to ``baseline``; the branch
    core ref defaults to the pull request head commit. Deterministic and
    side-effect free.
    """
    values = {
        "trunk_binding_ref": baseline,
        "trunk_core_ref": baseline,
        "branch_binding_ref": baseline,
        "branch_core_ref": ctx.head_sha,
    }
    for name, ref in (directives or {}).items():
        if name not in REVISION_FIELDS:
            raise ConfigurationError(f"Unknown revision field {name!r}")
        values[name] = ref

    missing = [name for name in REVISION_FIELDS if not (values.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(f"Revision(s) could not be resolved: {', '.join(missing)}")
    return RevisionSet(**values)


def resolve_revisions(
    ctx: RunContext,
    texts: Iterable[str],
    binding: BindingInfo,
    *,
    baseline: str = "master",
) -> RevisionSet:
    """Parse directives from ``texts`` and resolve them in one step."""
    return resolve(ctx, parse_directives(texts, binding), baseline=baseline)
