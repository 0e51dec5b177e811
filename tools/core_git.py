"""tools/core_git.py

Git checkout helpers.

A checkout materializes one repository at exactly one ref into an empty
directory. GitHub slugs (``owner/repo``), full URLs and local paths are all
accepted as the repository identity; local paths keep tests and offline hosts
working without network access.

Tokens are handed to git through ``GIT_CONFIG_*`` environment variables as an
``http.extraheader``; they never land in ``.git/config``, argv or logs.
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Dict, List, Optional

from .core_cmd import Cancellable, CmdResult, run_cmd, which_or_raise


GITHUB_URL = "https://github.com"

FETCH_TIMEOUT_SECONDS = 30 * 60


class GitError(RuntimeError):
    """A git command failed."""

    def __init__(self, message: str, *, result: Optional[CmdResult] = None) -> None:
        super().__init__(message)
        self.result = result


def repository_url(identity: str) -> str:
    """Turn a repository identity into something ``git fetch`` understands.

    Examples:
      mmtk/mmtk-core                      -> "https://github.com/mmtk/mmtk-core.git"
      https://github.com/mmtk/mmtk-core   -> unchanged
      /srv/mirrors/mmtk-core              -> unchanged (local path)
    """
    if "://" in identity or identity.startswith("git@"):
        return identity
    p = Path(identity).expanduser()
    if identity.startswith((".", "/", "~")) or p.exists():
        return str(p.resolve())
    return f"{GITHUB_URL}/{identity.strip('/')}.git"


def auth_env(url: str, token: Optional[str]) -> Dict[str, str]:
    """Environment that authenticates HTTPS requests to GitHub with ``token``."""
    if not token or not url.startswith(GITHUB_URL + "/"):
        return {}
    basic = base64.b64encode(f"x-access-token:{token}".encode("utf-8")).decode("ascii")
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": f"http.{GITHUB_URL}/.extraheader",
        "GIT_CONFIG_VALUE_0": f"AUTHORIZATION: basic {basic}",
        "GIT_TERMINAL_PROMPT": "0",
    }


def _git(
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
    cancel: Optional[Cancellable] = None,
) -> CmdResult:
    git = which_or_raise("git")
    return run_cmd(
        [git, *args],
        cwd=cwd,
        env=env if env is not None else {},
        timeout_seconds=timeout_seconds,
        print_stderr=False,
        print_stdout=False,
        cancel=cancel,
    )


def _check(res: CmdResult, what: str) -> CmdResult:
    if res.cancelled:
        raise GitError(f"{what}: cancelled", result=res)
    if res.timed_out:
        raise GitError(f"{what}: timed out after {res.elapsed_seconds:.0f}s", result=res)
    if res.exit_code != 0:
        detail = (res.stderr or res.stdout).strip().splitlines()
        tail = detail[-1] if detail else f"exit code {res.exit_code}"
        raise GitError(f"{what}: {tail}", result=res)
    return res


def _resolve_fetched(dest: Path, ref: str, env: Dict[str, str]) -> Optional[str]:
    for candidate in (f"refs/remotes/origin/{ref}", f"refs/tags/{ref}", ref):
        res = _git(["-C", str(dest), "rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"], env=env)
        sha = (res.stdout or "").strip()
        if res.exit_code == 0 and sha:
            return sha
    return None


def checkout_ref(
    repository: str,
    ref: str,
    dest: Path,
    *,
    token: Optional[str] = None,
    include_submodules: bool = False,
    cancel: Optional[Cancellable] = None,
) -> str:
    """Materialize ``repository`` at ``ref`` into ``dest`` and return the commit SHA.

    Tries a shallow fetch of exactly ``ref`` first (branches, tags and SHAs on
    GitHub); falls back to fetching all branches and tags when the remote
    refuses to serve the ref directly.
    """
    url = repository_url(repository)
    env = auth_env(url, token)

    dest = Path(dest)
    if dest.exists() and any(dest.iterdir()):
        raise GitError(f"checkout destination is not empty: {dest}")
    dest.mkdir(parents=True, exist_ok=True)

    _check(_git(["init", "-q", str(dest)], env=env), "git init")
    _check(_git(["-C", str(dest), "remote", "add", "origin", url], env=env), "git remote add")

    shallow = _git(
        ["-C", str(dest), "fetch", "-q", "--no-tags", "--depth", "1", "origin", ref],
        env=env,
        cancel=cancel,
    )
    if shallow.cancelled:
        _check(shallow, f"fetch {ref}")

    if shallow.ok:
        _check(_git(["-C", str(dest), "checkout", "-q", "--detach", "FETCH_HEAD"], env=env), f"checkout {ref}")
    else:
        _check(
            _git(
                [
                    "-C",
                    str(dest),
                    "fetch",
                    "-q",
                    "origin",
                    "+refs/heads/*:refs/remotes/origin/*",
                    "+refs/tags/*:refs/tags/*",
                ],
                env=env,
                cancel=cancel,
            ),
            f"fetch {url}",
        )
        sha = _resolve_fetched(dest, ref, env)
        if sha is None:
            raise GitError(f"ref {ref!r} not found in {url}")
        _check(_git(["-C", str(dest), "checkout", "-q", "--detach", sha], env=env), f"checkout {ref}")

    if include_submodules:
        _check(_git(["-C", str(dest), "submodule", "sync", "--recursive"], env=env), "submodule sync")
        _check(
            _git(
                ["-C", str(dest), "submodule", "update", "--init", "--recursive"],
                env=env,
                cancel=cancel,
            ),
            "submodule update",
        )

    commit = get_git_commit(dest)
    if commit is None:
        raise GitError(f"could not determine HEAD after checkout of {ref!r}")
    return commit


def get_git_commit(repo_path: Path) -> Optional[str]:
    """Return the current commit SHA for the repo at repo_path.

    Returns None if repo_path is not a git repo or git is unavailable.
    """
    res = run_cmd(
        ["git", "-C", str(repo_path), "rev-parse", "HEAD"],
        timeout_seconds=20,
        print_stderr=False,
        print_stdout=False,
    )
    sha = (res.stdout or "").strip()
    return sha if res.exit_code == 0 and sha else None
