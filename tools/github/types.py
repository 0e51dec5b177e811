from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GitHubConfig:
    """Connection settings for GitHub REST API calls."""
    token: str
    repository: str  # owner/name
    api_root: str = "https://api.github.com"
