"""Gitea API client for organizations, mirror migrations and issues."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from .config import MirrorConfig
from .exceptions import (
    AuthenticationError,
    ClonePendingError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
)
from .logging_config import get_logger
from .retry import RetryConfig, retry_with_backoff

logger = get_logger("gitea_client")

DEFAULT_LABEL_COLOR = "#ededed"
PAGE_LIMIT = 50


def format_issue_body(author: str, body: Optional[str], source_url: Optional[str] = None) -> str:
    """
    Prefix an issue body with provenance text.

    Lets readers tell mirrored issues from ones opened on the forge itself.

    Args:
        author: Login of the original issue author
        body: Original issue body (may be empty)
        source_url: Link to the original issue, if known

    Returns:
        Body with a "Mirrored from GitHub" header
    """
    header = "*Mirrored from GitHub*"
    if source_url:
        header = f"*Mirrored from GitHub: {source_url}*"
    return f"{header}\n\nOriginal issue by @{author}\n\n{body or ''}"


class GiteaClient:
    """Client for Gitea REST API (``/api/v1``) operations."""

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize Gitea client.

        Args:
            url: Gitea base URL (e.g. https://git.example.com)
            token: Gitea access token
            timeout: Seconds before a request is abandoned
            session: Optional requests session for testing
        """
        self.url = url.rstrip("/")
        self.api_url = f"{self.url}/api/v1"
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"token {token}",
                "Accept": "application/json",
            }
        )
        self._label_cache: Dict[Tuple[str, str], Dict[str, int]] = {}

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "GiteaClient":
        return cls(config.gitea.url, config.gitea.token, timeout=config.request_timeout)

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and translate failures into the mirror error taxonomy.

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            NetworkError: Connection refused, DNS failure or timeout
            AuthenticationError: HTTP 401/403
            NotFoundError: HTTP 404
            RateLimitError: HTTP 429
            ProviderError: Any other non-2xx status
        """
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(
                method, url, json=json, params=params, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Could not connect to Gitea while {operation}: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"Gitea rejected credentials while {operation} (HTTP {status})", status=status
            )
        if status == 404:
            raise NotFoundError(f"Gitea resource not found while {operation}", status=status)
        if status == 429:
            reset = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Gitea rate limit hit while {operation}",
                reset_at=float(reset) if reset and reset.isdigit() else None,
            )
        if status >= 400:
            raise ProviderError(
                f"Gitea API error while {operation}: HTTP {status} {response.text[:200]}",
                status=status,
            )

        if not response.content:
            return None
        return response.json()

    def test_connection(self) -> Dict[str, str]:
        """
        Verify URL and token by fetching the authenticated user.

        Returns:
            Dictionary with login, full_name and avatar_url

        Raises:
            NetworkError: If Gitea cannot be reached
            AuthenticationError: If the token is invalid
            NotFoundError: If the URL does not point at a Gitea API
        """
        data = self._request("GET", "/user", "testing the connection")
        return {
            "login": data.get("login") or data.get("username", ""),
            "full_name": data.get("full_name", ""),
            "avatar_url": data.get("avatar_url", ""),
        }

    def get_organization(self, name: str) -> Dict[str, Any]:
        """
        Fetch an organization.

        Raises:
            NotFoundError: If the organization does not exist
        """
        return self._request("GET", f"/orgs/{name}", f"reading organization {name}")

    def ensure_organization(
        self, name: str, visibility: str = "public", description: str = ""
    ) -> Dict[str, Any]:
        """
        Return an organization, creating it first if it does not exist.

        Idempotent: never fails because the organization already exists,
        including when another writer creates it between the lookup and the create.

        Args:
            name: Organization name
            visibility: public, private or limited
            description: Description used if the organization is created

        Returns:
            Organization JSON
        """
        try:
            return self.get_organization(name)
        except NotFoundError:
            pass

        logger.info(f"Creating Gitea organization {name}")
        try:
            return self._request(
                "POST",
                "/orgs",
                f"creating organization {name}",
                json={"username": name, "description": description, "visibility": visibility},
            )
        except ProviderError as e:
            if getattr(e, "status", None) in (409, 422):
                return self.get_organization(name)
            raise

    def get_repository(self, owner: str, name: str) -> Dict[str, Any]:
        """
        Fetch a repository.

        Raises:
            NotFoundError: If the repository does not exist
        """
        return self._request("GET", f"/repos/{owner}/{name}", f"reading repository {owner}/{name}")

    def repository_exists(self, owner: str, name: str) -> bool:
        try:
            self.get_repository(owner, name)
            return True
        except NotFoundError:
            return False

    def mirror_repository(
        self,
        clone_url: str,
        name: str,
        is_private: bool = False,
        owner: Optional[str] = None,
        auth_token: Optional[str] = None,
        auth_username: Optional[str] = None,
        description: str = "",
    ) -> Dict[str, Any]:
        """
        Ask Gitea to clone a repository as a pull mirror.

        Fire/acknowledge: success means Gitea accepted the migration, not
        that the clone has finished.

        Args:
            clone_url: HTTPS clone URL of the source repository
            name: Destination repository name
            is_private: Whether the destination repository is private
            owner: Destination user or organization (None: token's own user)
            auth_token: Source credentials for private repositories
            auth_username: Source login paired with auth_token
            description: Destination repository description

        Returns:
            Repository JSON returned by Gitea
        """
        payload: Dict[str, Any] = {
            "clone_addr": clone_url,
            "repo_name": name,
            "mirror": True,
            "private": is_private,
            "service": "git",
            "description": description,
        }
        if owner:
            payload["repo_owner"] = owner
        if auth_token:
            payload["auth_username"] = auth_username or "oauth2"
            payload["auth_password"] = auth_token

        target = f"{owner}/{name}" if owner else name
        return self._request("POST", "/repos/migrate", f"mirroring into {target}", json=payload)

    def trigger_mirror_sync(self, owner: str, name: str) -> None:
        """Ask Gitea to pull the latest changes into an existing mirror."""
        self._request(
            "POST", f"/repos/{owner}/{name}/mirror-sync", f"syncing mirror {owner}/{name}"
        )

    def wait_for_mirror(
        self, owner: str, name: str, config: Optional[RetryConfig] = None, sleep=None
    ) -> Dict[str, Any]:
        """
        Poll a destination repository until its initial clone has content.

        Args:
            owner: Destination owner
            name: Destination repository name
            config: Polling schedule (default: poll for up to 5 minutes)
            sleep: Sleep function, replaceable in tests

        Returns:
            Repository JSON once the clone is complete

        Raises:
            ClonePendingError: If the clone is still running at the deadline
        """

        def check_clone() -> Dict[str, Any]:
            try:
                repo = self.get_repository(owner, name)
            except NotFoundError as e:
                raise ClonePendingError(f"Repository {owner}/{name} not created yet") from e
            if repo.get("empty", False):
                raise ClonePendingError(f"Repository {owner}/{name} is still being cloned")
            return repo

        kwargs: Dict[str, Any] = {"config": config or RetryConfig.for_timeout(300.0)}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return retry_with_backoff(check_clone, **kwargs)

    def _list_labels(self, owner: str, repo: str) -> Dict[str, int]:
        labels: Dict[str, int] = {}
        page = 1
        while True:
            batch = self._request(
                "GET",
                f"/repos/{owner}/{repo}/labels",
                f"listing labels of {owner}/{repo}",
                params={"page": page, "limit": PAGE_LIMIT},
            )
            if not batch:
                break
            for label in batch:
                labels[label["name"]] = label["id"]
            if len(batch) < PAGE_LIMIT:
                break
            page += 1
        return labels

    def ensure_labels(self, owner: str, repo: str, names: Iterable[str]) -> List[int]:
        """
        Resolve label names to Gitea label ids, creating missing labels.

        Gitea's issue API takes label ids, not names.

        Returns:
            Label ids in the order of ``names``
        """
        key = (owner, repo)
        if key not in self._label_cache:
            self._label_cache[key] = self._list_labels(owner, repo)
        known = self._label_cache[key]

        ids = []
        for name in names:
            if name not in known:
                created = self._request(
                    "POST",
                    f"/repos/{owner}/{repo}/labels",
                    f"creating label {name} in {owner}/{repo}",
                    json={"name": name, "color": DEFAULT_LABEL_COLOR},
                )
                known[name] = created["id"]
            ids.append(known[name])
        return ids

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: Optional[str],
        author: str,
        labels: Optional[List[str]] = None,
        closed: bool = False,
        source_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create one issue, prefixed with provenance text.

        Args:
            owner: Destination owner
            repo: Destination repository name
            title: Issue title
            body: Original issue body
            author: Original author login, credited in the provenance header
            labels: Label names (created on demand)
            closed: Create the issue in closed state
            source_url: Link to the original issue

        Returns:
            Issue JSON returned by Gitea
        """
        payload: Dict[str, Any] = {
            "title": title,
            "body": format_issue_body(author, body, source_url),
            "closed": closed,
        }
        if labels:
            payload["labels"] = self.ensure_labels(owner, repo, labels)

        return self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            f"creating issue in {owner}/{repo}",
            json=payload,
        )
