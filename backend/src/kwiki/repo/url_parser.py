"""Parse repository targets into stable wiki identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

# Reserved target that documents the prompt template system itself
TEMPLATE_DOCS_TARGET = "template-docs"
TEMPLATE_DOCS_PACKAGE_PATH = "template-docs/example"


class UnsupportedRepositoryError(ValueError):
    """Raised when a target is not a supported repository host."""

    pass


@dataclass
class ParsedRepoUrl:
    """Result of parsing a repository URL."""

    source_type: str  # github, gitlab, bitbucket, git
    host: str
    owner: str
    repo: str
    package_path: str  # host/owner/repo, doubles as the wiki id
    original_url: str


@dataclass
class RepositoryInfo:
    """Facts about a repository used to build page prompts."""

    name: str
    url: str
    language: str = "Unknown"
    framework: str = ""
    description: str = ""
    topics: list[str] = field(default_factory=list)


# Known hosts mapped to source types
KNOWN_HOSTS = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "bitbucket.org": "bitbucket",
}

# Hosts the repository pipeline can document
SUPPORTED_SOURCE_TYPES = ("github", "gitlab")

# SSH URL pattern: git@host:owner/repo.git
SSH_PATTERN = re.compile(r"^git@([^:]+):([^/]+)/(.+?)(?:\.git)?/?$")

# HTTPS URL pattern for git repos
HTTPS_PATTERN = re.compile(r"^https?://([^/]+)/([^/]+)/(.+?)(?:\.git)?/?$")

# Browse suffixes that are not part of the repository name
_BROWSE_SUFFIX = re.compile(r"/(?:tree|blob|-)/.*$")


def _clean_repo_name(repo: str) -> str:
    repo = _BROWSE_SUFFIX.sub("", repo)
    repo = repo.split("/")[0]
    return repo[: -len(".git")] if repo.endswith(".git") else repo


def parse_repo_url(url: str) -> Optional[ParsedRepoUrl]:
    """
    Parse an HTTPS or SSH repository URL.

    Returns None when the input is not a recognizable repository URL.
    """
    url = url.strip()
    match = SSH_PATTERN.match(url) or HTTPS_PATTERN.match(url)
    if not match:
        return None

    host, owner, repo = match.groups()
    host = host.lower()
    repo = _clean_repo_name(repo)
    return ParsedRepoUrl(
        source_type=KNOWN_HOSTS.get(host, "git"),
        host=host,
        owner=owner,
        repo=repo,
        package_path=f"{host}/{owner}/{repo}",
        original_url=url,
    )


def derive_package_path(target: str) -> str:
    """Derive the stable wiki id for a generation target.

    ``template-docs`` maps to ``template-docs/example``; GitHub and GitLab URLs
    map to ``host/owner/repo``; anything else is keyed by the hex encoding of
    the target under ``unknown/``.
    """
    target = target.strip()
    if not target:
        return "unknown"
    if target == TEMPLATE_DOCS_TARGET:
        return TEMPLATE_DOCS_PACKAGE_PATH

    parsed = parse_repo_url(target)
    if parsed is not None and parsed.source_type in SUPPORTED_SOURCE_TYPES:
        return parsed.package_path

    return f"unknown/{target.encode('utf-8').hex()}"


def normalize_target(target: str) -> str:
    """Case-fold and trim a trailing slash or ``.git`` so equivalent URLs compare equal."""
    target = target.strip().lower().rstrip("/")
    return target[: -len(".git")] if target.endswith(".git") else target


def wiki_title(package_path: str) -> str:
    """Title from the last path segment: ``my-project`` -> ``My Project``."""
    name = package_path.rstrip("/").split("/")[-1]
    if not name:
        return "Unknown Project"
    return name.replace("-", " ").title()


def wiki_description(package_path: str, target: str) -> str:
    parts = package_path.split("/")
    if len(parts) >= 2:
        return f"Documentation for {parts[-2]}/{parts[-1]} from {target}"
    return f"Documentation for {package_path}"


def analyze_repository(target: str) -> RepositoryInfo:
    """Build repository facts from a GitHub or GitLab URL.

    Raises:
        UnsupportedRepositoryError: If the target is not a GitHub/GitLab URL.
    """
    parsed = parse_repo_url(target)
    if parsed is None or parsed.source_type not in SUPPORTED_SOURCE_TYPES:
        raise UnsupportedRepositoryError(f"Unsupported repository: {target}")

    name = f"{parsed.owner}/{parsed.repo}"
    return RepositoryInfo(
        name=name,
        url=target,
        framework="Web Framework" if parsed.source_type == "github" else "Application",
        description=f"Documentation for {name}",
    )
