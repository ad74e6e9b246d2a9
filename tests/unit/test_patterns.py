"""Tests for include/exclude pattern matching."""

import pytest

from gitea_mirror.patterns import RepositoryFilter, match_pattern, organization_in_scope


@pytest.mark.unit
class TestMatchPattern:
    """Test glob matching of repository full names."""

    def test_trailing_wildcard_matches_owner_prefix(self):
        assert match_pattern("foo/bar", "foo/*") is True

    def test_different_owner_does_not_match(self):
        assert match_pattern("foo/bar", "baz/*") is False

    def test_match_is_anchored(self):
        """Test that a bare repository name does not match a full name."""
        assert match_pattern("foo/bar", "bar") is False
        assert match_pattern("foo/bar", "foo") is False

    def test_leading_wildcard_matches_any_owner(self):
        assert match_pattern("alice/private-repo", "*/private-repo") is True
        assert match_pattern("alice/private-repo-2", "*/private-repo") is False

    def test_wildcard_matches_empty_run(self):
        assert match_pattern("foo/", "foo/*") is True
        assert match_pattern("", "*") is True

    def test_wildcard_in_middle(self):
        assert match_pattern("acme/api-server", "acme/api*server") is True
        assert match_pattern("acme/api-client", "acme/api*server") is False

    @pytest.mark.parametrize("pattern", ["foo/b?r", "foo/b.r", "foo/[b]ar"])
    def test_other_metacharacters_are_literal(self, pattern):
        """Test that only '*' is special."""
        assert match_pattern("foo/bar", pattern) is False

    def test_literal_dot_matches_itself(self):
        assert match_pattern("foo/site.io", "foo/site.io") is True


@pytest.mark.unit
class TestRepositoryFilter:
    """Test include/exclude filtering."""

    def test_defaults_allow_everything(self):
        repo_filter = RepositoryFilter()
        assert repo_filter.allows("any/repo") is True

    def test_wildcard_include_disables_include_filtering(self):
        repo_filter = RepositoryFilter(include=["*", "acme/*"])
        assert repo_filter.allows("other/repo") is True

    def test_include_list_restricts(self):
        repo_filter = RepositoryFilter(include=["acme/*"])
        assert repo_filter.allows("acme/api") is True
        assert repo_filter.allows("other/api") is False

    def test_exclude_wins_over_include(self):
        repo_filter = RepositoryFilter(include=["acme/*"], exclude=["acme/secret"])
        assert repo_filter.allows("acme/api") is True
        assert repo_filter.allows("acme/secret") is False

    def test_exclude_with_default_include(self):
        repo_filter = RepositoryFilter(include=["*"], exclude=["*/private-repo"])
        assert repo_filter.allows("alice/private-repo") is False
        assert repo_filter.allows("alice/public-repo") is True


@pytest.mark.unit
class TestOrganizationInScope:
    """Test organization include/exclude lists."""

    def test_no_lists_means_in_scope(self):
        assert organization_in_scope("acme") is True

    def test_excluded_organization(self):
        assert organization_in_scope("acme", exclude_orgs=["acme"]) is False

    def test_include_list_requires_membership(self):
        assert organization_in_scope("acme", include_orgs=["acme"]) is True
        assert organization_in_scope("other", include_orgs=["acme"]) is False

    def test_wildcard_include_list(self):
        assert organization_in_scope("other", include_orgs=["*"]) is True

    def test_exclude_wins(self):
        assert organization_in_scope("acme", include_orgs=["acme"], exclude_orgs=["acme"]) is False
