"""Repository target parsing."""

from kwiki.repo.url_parser import (
    TEMPLATE_DOCS_TARGET,
    ParsedRepoUrl,
    RepositoryInfo,
    UnsupportedRepositoryError,
    analyze_repository,
    derive_package_path,
    normalize_target,
    parse_repo_url,
    wiki_description,
    wiki_title,
)

__all__ = [
    "TEMPLATE_DOCS_TARGET",
    "ParsedRepoUrl",
    "RepositoryInfo",
    "UnsupportedRepositoryError",
    "analyze_repository",
    "derive_package_path",
    "normalize_target",
    "parse_repo_url",
    "wiki_description",
    "wiki_title",
]
