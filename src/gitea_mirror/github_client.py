"""GitHub API client for repository, organization and issue discovery."""

from contextlib import contextmanager
from typing import Iterator, List

import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from .config import MirrorConfig
from .exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
)
from .logging_config import get_logger
from .models import Issue, Organization, OrganizationType, Repository

logger = get_logger("github_client")

PER_PAGE = 100


@contextmanager
def translate_github_errors(operation: str) -> Iterator[None]:
    """
    Translate PyGithub and requests exceptions into the mirror error taxonomy.

    PyGithub paginates lazily, so iteration over a PaginatedList must
    happen inside this context for page fetches to be translated too.

    Args:
        operation: Short description used in error messages
    """
    try:
        yield
    except BadCredentialsException as e:
        raise AuthenticationError(f"GitHub rejected credentials while {operation}") from e
    except RateLimitExceededException as e:
        reset = e.headers.get("x-ratelimit-reset") if e.headers else None
        raise RateLimitError(
            f"GitHub rate limit exhausted while {operation}",
            reset_at=float(reset) if reset else None,
        ) from e
    except UnknownObjectException as e:
        raise NotFoundError(f"GitHub resource not found while {operation}") from e
    except GithubException as e:
        if e.status in (401, 403):
            raise AuthenticationError(
                f"GitHub denied access while {operation}: {e.data}", status=e.status
            ) from e
        raise ProviderError(
            f"GitHub API error while {operation}: {e.status} {e.data}", status=e.status
        ) from e
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Could not reach GitHub while {operation}: {e}") from e


def _passes_visibility_policy(repo, config: MirrorConfig) -> bool:
    """Apply skip-forks and private-repository toggles."""
    if config.github.skip_forks and repo.fork:
        return False
    if repo.private and not config.github.private_repositories:
        return False
    return True


def _to_repository(repo, config: MirrorConfig, is_starred: bool = False) -> Repository:
    owner = repo.owner
    return Repository(
        name=repo.name,
        full_name=repo.full_name,
        owner=owner.login,
        url=repo.html_url,
        clone_url=repo.clone_url or "",
        organization=owner.login if owner.type == "Organization" else None,
        description=repo.description or "",
        is_private=bool(repo.private),
        is_fork=bool(repo.fork),
        has_issues=bool(repo.has_issues),
        is_starred=is_starred,
        config_id=config.id,
    )


class GitHubClient:
    """Client for GitHub API operations."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 60.0,
        gh_instance=None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub personal access token
            base_url: GitHub API base URL (default: https://api.github.com)
            timeout: Seconds before an API call is abandoned
            gh_instance: Optional Github instance for testing (default: None)
        """
        self.token = token
        self.base_url = base_url
        self.gh = (
            gh_instance
            if gh_instance is not None
            else Github(
                auth=Auth.Token(token),
                base_url=base_url,
                timeout=int(timeout),
                per_page=PER_PAGE,
            )
        )

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "GitHubClient":
        return cls(
            token=config.github.token,
            base_url=config.github.api_url,
            timeout=config.request_timeout,
        )

    def test_connection(self) -> dict:
        """
        Verify the token by fetching the authenticated user.

        Returns:
            Dictionary with login and avatar_url

        Raises:
            AuthenticationError: If the token is rejected
            NetworkError: If GitHub cannot be reached
        """
        with translate_github_errors("testing the connection"):
            user = self.gh.get_user()
            return {"login": user.login, "avatar_url": getattr(user, "avatar_url", "")}

    def list_user_repositories(self, config: MirrorConfig) -> List[Repository]:
        """
        List repositories of the authenticated user, newest-updated first.

        Forks are dropped when ``skip_forks`` is set and private repositories
        unless ``private_repositories`` is set.

        Args:
            config: Active mirror configuration

        Returns:
            Complete list of repositories (all pages)
        """
        with translate_github_errors("listing user repositories"):
            repos = [
                _to_repository(repo, config)
                for repo in self.gh.get_user().get_repos(sort="updated", direction="desc")
                if _passes_visibility_policy(repo, config)
            ]
        logger.debug(f"Found {len(repos)} user repositories")
        return repos

    def list_starred_repositories(self, config: MirrorConfig) -> List[Repository]:
        """
        List repositories starred by the authenticated user, flagged ``is_starred``.

        Args:
            config: Active mirror configuration

        Returns:
            Complete list of starred repositories (all pages)
        """
        with translate_github_errors("listing starred repositories"):
            repos = [
                _to_repository(repo, config, is_starred=True)
                for repo in self.gh.get_user().get_starred(sort="updated", direction="desc")
                if _passes_visibility_policy(repo, config)
            ]
        logger.debug(f"Found {len(repos)} starred repositories")
        return repos

    def list_organization_repositories(
        self, org_name: str, config: MirrorConfig
    ) -> List[Repository]:
        """
        List repositories of one organization, newest-updated first.

        Args:
            org_name: Organization login
            config: Active mirror configuration

        Returns:
            Complete list of organization repositories (all pages)

        Raises:
            NotFoundError: If the organization does not exist
        """
        with translate_github_errors(f"listing repositories of organization {org_name}"):
            org = self.gh.get_organization(org_name)
            repos = [
                _to_repository(repo, config)
                for repo in org.get_repos(sort="updated", direction="desc")
                if _passes_visibility_policy(repo, config)
            ]
        logger.debug(f"Found {len(repos)} repositories in organization {org_name}")
        return repos

    def list_user_organizations(self) -> List[Organization]:
        """List organizations the authenticated user is a member of."""
        with translate_github_errors("listing organizations"):
            return [
                Organization(
                    name=org.login,
                    type=OrganizationType.MEMBER,
                    avatar_url=getattr(org, "avatar_url", "") or "",
                    description=getattr(org, "description", "") or "",
                )
                for org in self.gh.get_user().get_orgs()
            ]

    def list_issues(self, owner: str, repo: str) -> List[Issue]:
        """
        List open and closed issues of a repository.

        The GitHub issues endpoint also returns pull requests; those are
        dropped.

        Args:
            owner: Repository owner login
            repo: Repository name

        Returns:
            Issues in API order (all pages)
        """
        with translate_github_errors(f"listing issues of {owner}/{repo}"):
            source = self.gh.get_repo(f"{owner}/{repo}")
            issues = []
            for issue in source.get_issues(state="all"):
                if issue.pull_request is not None:
                    continue
                issues.append(
                    Issue(
                        number=issue.number,
                        title=issue.title,
                        body=issue.body or "",
                        state=issue.state,
                        author=issue.user.login if issue.user else "ghost",
                        labels=[label.name for label in issue.labels if label.name],
                        created_at=issue.created_at,
                        updated_at=issue.updated_at,
                        closed_at=issue.closed_at,
                    )
                )
        return issues

    def get_clone_url(self, full_name: str) -> str:
        """
        Resolve the HTTPS clone URL of a repository.

        Raises:
            NotFoundError: If the repository no longer exists
        """
        with translate_github_errors(f"reading repository {full_name}"):
            return self.gh.get_repo(full_name).clone_url
