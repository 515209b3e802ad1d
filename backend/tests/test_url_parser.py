"""Repository target parsing tests."""

import pytest
from hypothesis import assume, given, settings, strategies as st

from kwiki.repo import (
    UnsupportedRepositoryError,
    analyze_repository,
    derive_package_path,
    normalize_target,
    parse_repo_url,
    wiki_description,
    wiki_title,
)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://github.com/owner/repo", "github.com/owner/repo"),
        ("https://github.com/owner/repo.git", "github.com/owner/repo"),
        ("https://github.com/owner/repo/", "github.com/owner/repo"),
        ("https://github.com/owner/repo/tree/main/src", "github.com/owner/repo"),
        ("git@github.com:owner/repo.git", "github.com/owner/repo"),
        ("https://gitlab.com/group/project/-/blob/main/README.md", "gitlab.com/group/project"),
        ("https://GitHub.com/owner/repo", "github.com/owner/repo"),
    ],
)
def test_supported_urls_map_to_host_owner_repo(url, expected):
    assert derive_package_path(url) == expected


def test_template_docs_has_reserved_path():
    assert derive_package_path("template-docs") == "template-docs/example"


def test_unsupported_host_is_keyed_by_hex():
    target = "https://bitbucket.org/team/repo"

    assert derive_package_path(target) == f"unknown/{target.encode('utf-8').hex()}"


def test_blank_target_is_unknown():
    assert derive_package_path("   ") == "unknown"


def test_parse_repo_url_details():
    parsed = parse_repo_url("git@gitlab.com:group/project.git")

    assert parsed.source_type == "gitlab"
    assert parsed.owner == "group"
    assert parsed.repo == "project"
    assert parse_repo_url("not a url") is None


def test_normalize_target_folds_case_and_suffixes():
    assert normalize_target(" https://GitHub.com/Owner/Repo/ ") == "https://github.com/owner/repo"
    assert normalize_target("https://github.com/owner/repo.git") == "https://github.com/owner/repo"
    assert normalize_target("https://github.com/owner/repo.git/") == "https://github.com/owner/repo"


def test_title_and_description():
    assert wiki_title("github.com/owner/my-project") == "My Project"
    assert wiki_description("github.com/owner/repo", "https://github.com/owner/repo") == (
        "Documentation for owner/repo from https://github.com/owner/repo"
    )


def test_analyze_repository_builds_facts():
    repo = analyze_repository("https://github.com/owner/repo")

    assert repo.name == "owner/repo"
    assert repo.framework == "Web Framework"
    assert repo.language == "Unknown"
    assert analyze_repository("https://gitlab.com/g/p").framework == "Application"


def test_analyze_repository_rejects_other_hosts():
    with pytest.raises(UnsupportedRepositoryError):
        analyze_repository("https://bitbucket.org/team/repo")


class TestPackagePathProperties:
    """Package paths are stable identifiers."""

    @given(target=st.text(min_size=1, max_size=80))
    @settings(max_examples=100, deadline=None)
    def test_derivation_is_deterministic(self, target):
        assert derive_package_path(target) == derive_package_path(target)

    @given(target=st.text(min_size=1, max_size=80))
    @settings(max_examples=100, deadline=None)
    def test_non_url_targets_are_unknown(self, target):
        assume(target.strip() and target.strip() != "template-docs")
        assume("://" not in target and not target.strip().startswith("git@"))

        assert derive_package_path(target).startswith("unknown/")

    @given(
        owner=st.from_regex(r"[a-z0-9][a-z0-9-]{0,15}", fullmatch=True),
        repo=st.from_regex(r"[a-z0-9][a-z0-9_.-]{0,15}", fullmatch=True),
    )
    @settings(max_examples=100, deadline=None)
    def test_equivalent_github_urls_share_an_id(self, owner, repo):
        assume(not repo.endswith(".git") and not repo.endswith("."))

        base = f"https://github.com/{owner}/{repo}"
        assert derive_package_path(base) == derive_package_path(base + ".git")
        assert derive_package_path(base) == derive_package_path(base + "/")
