"""Unit tests for GiteaClient class."""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from gitea_mirror.exceptions import (
    AuthenticationError,
    ClonePendingError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
)
from gitea_mirror.gitea_client import GiteaClient, format_issue_body
from gitea_mirror.retry import RetryConfig

BASE = "https://gitea.example.com/api/v1"


def make_response(status=200, data=None, headers=None):
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status
    response.content = json.dumps(data).encode() if data is not None else b""
    response.json.return_value = data
    response.text = json.dumps(data) if data is not None else ""
    response.headers = headers or {}
    return response


@pytest.fixture
def client():
    return GiteaClient("https://gitea.example.com/", "gitea-token", timeout=30)


@pytest.mark.unit
class TestGiteaClientRequests:
    """Test request plumbing and error translation."""

    def test_session_configured(self, client):
        assert client.api_url == BASE
        assert client.session.headers["Authorization"] == "token gitea-token"
        assert client.session.headers["Accept"] == "application/json"

    def test_test_connection(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(data={"login": "mirror-bot"})
        ) as mock_request:
            user = client.test_connection()

        assert user["login"] == "mirror-bot"
        mock_request.assert_called_once_with(
            "GET", f"{BASE}/user", json=None, params=None, timeout=30
        )

    @pytest.mark.parametrize(
        "status, error_class",
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (429, RateLimitError),
            (500, ProviderError),
            (422, ProviderError),
        ],
    )
    def test_status_codes_translated(self, client, status, error_class):
        with patch.object(client.session, "request", return_value=make_response(status)):
            with pytest.raises(error_class):
                client.test_connection()

    def test_provider_error_carries_status(self, client):
        with patch.object(client.session, "request", return_value=make_response(500, {"message": "x"})):
            with pytest.raises(ProviderError) as exc_info:
                client.get_repository("alice", "api")

        assert exc_info.value.status == 500

    def test_rate_limit_retry_after(self, client):
        response = make_response(429, headers={"Retry-After": "30"})
        with patch.object(client.session, "request", return_value=response):
            with pytest.raises(RateLimitError) as exc_info:
                client.test_connection()

        assert exc_info.value.reset_at == 30.0

    @pytest.mark.parametrize(
        "error",
        [requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")],
    )
    def test_transport_errors_become_network_errors(self, client, error):
        with patch.object(client.session, "request", side_effect=error):
            with pytest.raises(NetworkError):
                client.test_connection()

    def test_empty_body_returns_none(self, client):
        with patch.object(client.session, "request", return_value=make_response(200)):
            assert client.trigger_mirror_sync("alice", "api") is None

    def test_repository_exists(self, client):
        with patch.object(
            client.session,
            "request",
            side_effect=[make_response(data={"name": "api"}), make_response(404)],
        ):
            assert client.repository_exists("alice", "api") is True
            assert client.repository_exists("alice", "gone") is False


@pytest.mark.unit
class TestEnsureOrganization:
    """Test idempotent organization creation."""

    def test_existing_organization_not_created(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(data={"username": "acme"})
        ) as mock_request:
            org = client.ensure_organization("acme")

        assert org["username"] == "acme"
        mock_request.assert_called_once()

    def test_missing_organization_created(self, client):
        with patch.object(
            client.session,
            "request",
            side_effect=[make_response(404), make_response(201, {"username": "acme"})],
        ) as mock_request:
            client.ensure_organization("acme", visibility="private", description="GitHub organization: acme")

        method, url = mock_request.call_args_list[1][0]
        assert (method, url) == ("POST", f"{BASE}/orgs")
        assert mock_request.call_args_list[1][1]["json"] == {
            "username": "acme",
            "description": "GitHub organization: acme",
            "visibility": "private",
        }

    def test_concurrent_creation_tolerated(self, client):
        """Test that losing a create race re-reads instead of failing."""
        with patch.object(
            client.session,
            "request",
            side_effect=[
                make_response(404),
                make_response(422, {"message": "user already exists"}),
                make_response(200, {"username": "acme"}),
            ],
        ):
            org = client.ensure_organization("acme")

        assert org["username"] == "acme"

    def test_other_errors_propagate(self, client):
        with patch.object(
            client.session, "request", side_effect=[make_response(404), make_response(500)]
        ):
            with pytest.raises(ProviderError):
                client.ensure_organization("acme")


@pytest.mark.unit
class TestMirrorRepository:
    """Test the migrate request."""

    def test_public_repository_into_organization(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(201, {"id": 1})
        ) as mock_request:
            client.mirror_repository(
                "https://github.com/acme/api.git", "api", owner="acme", description="API"
            )

        args, kwargs = mock_request.call_args
        assert args == ("POST", f"{BASE}/repos/migrate")
        assert kwargs["json"] == {
            "clone_addr": "https://github.com/acme/api.git",
            "repo_name": "api",
            "mirror": True,
            "private": False,
            "service": "git",
            "description": "API",
            "repo_owner": "acme",
        }

    def test_personal_namespace_omits_owner(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(201, {"id": 1})
        ) as mock_request:
            client.mirror_repository("https://github.com/alice/api.git", "api")

        assert "repo_owner" not in mock_request.call_args[1]["json"]
        assert "auth_password" not in mock_request.call_args[1]["json"]

    def test_private_repository_sends_credentials(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(201, {"id": 1})
        ) as mock_request:
            client.mirror_repository(
                "https://github.com/alice/secret.git",
                "secret",
                is_private=True,
                auth_token="ghp_abc",
                auth_username="alice",
            )

        payload = mock_request.call_args[1]["json"]
        assert payload["private"] is True
        assert payload["auth_username"] == "alice"
        assert payload["auth_password"] == "ghp_abc"

    def test_conflict_raises_provider_error(self, client):
        with patch.object(client.session, "request", return_value=make_response(409)):
            with pytest.raises(ProviderError) as exc_info:
                client.mirror_repository("https://github.com/alice/api.git", "api")

        assert exc_info.value.status == 409

    def test_trigger_mirror_sync(self, client):
        with patch.object(client.session, "request", return_value=make_response(200)) as mock_request:
            client.trigger_mirror_sync("acme", "api")

        assert mock_request.call_args[0] == ("POST", f"{BASE}/repos/acme/api/mirror-sync")


@pytest.mark.unit
class TestWaitForMirror:
    """Test clone-completion polling."""

    def test_polls_until_content_present(self, client):
        sleep = Mock()
        with patch.object(
            client.session,
            "request",
            side_effect=[
                make_response(404),
                make_response(200, {"name": "api", "empty": True}),
                make_response(200, {"name": "api", "empty": False}),
            ],
        ):
            repo = client.wait_for_mirror(
                "acme", "api", RetryConfig(initial_delay=0.1, jitter=False), sleep=sleep
            )

        assert repo["empty"] is False
        assert sleep.call_count == 2

    def test_gives_up(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(200, {"empty": True})
        ):
            with pytest.raises(ClonePendingError):
                client.wait_for_mirror(
                    "acme", "api", RetryConfig(max_retries=2, initial_delay=0.1), sleep=Mock()
                )

    def test_auth_failure_not_retried(self, client):
        sleep = Mock()
        with patch.object(client.session, "request", return_value=make_response(401)):
            with pytest.raises(AuthenticationError):
                client.wait_for_mirror("acme", "api", sleep=sleep)

        sleep.assert_not_called()


@pytest.mark.unit
class TestIssues:
    """Test issue creation."""

    def test_format_issue_body(self):
        assert format_issue_body("bob", "It breaks") == (
            "*Mirrored from GitHub*\n\nOriginal issue by @bob\n\nIt breaks"
        )

    def test_format_issue_body_with_link_and_empty_body(self):
        body = format_issue_body("bob", None, "https://github.com/alice/api/issues/4")
        assert body.startswith("*Mirrored from GitHub: https://github.com/alice/api/issues/4*")
        assert body.endswith("Original issue by @bob\n\n")

    def test_create_issue_resolves_and_creates_labels(self, client):
        with patch.object(
            client.session,
            "request",
            side_effect=[
                make_response(200, [{"id": 1, "name": "bug"}]),
                make_response(201, {"id": 2, "name": "feature"}),
                make_response(201, {"number": 1}),
            ],
        ) as mock_request:
            client.create_issue(
                "alice", "api", "Crash", "It breaks", "bob", labels=["bug", "feature"], closed=True
            )

        label_post = mock_request.call_args_list[1]
        assert label_post[0] == ("POST", f"{BASE}/repos/alice/api/labels")
        assert label_post[1]["json"]["name"] == "feature"

        issue_post = mock_request.call_args_list[2]
        assert issue_post[0] == ("POST", f"{BASE}/repos/alice/api/issues")
        assert issue_post[1]["json"] == {
            "title": "Crash",
            "body": "*Mirrored from GitHub*\n\nOriginal issue by @bob\n\nIt breaks",
            "closed": True,
            "labels": [1, 2],
        }

    def test_labels_cached_per_repository(self, client):
        with patch.object(
            client.session,
            "request",
            side_effect=[
                make_response(200, [{"id": 1, "name": "bug"}]),
                make_response(201, {"number": 1}),
                make_response(201, {"number": 2}),
            ],
        ) as mock_request:
            client.create_issue("alice", "api", "A", "", "bob", labels=["bug"])
            client.create_issue("alice", "api", "B", "", "bob", labels=["bug"])

        assert mock_request.call_count == 3

    def test_issue_without_labels(self, client):
        with patch.object(
            client.session, "request", return_value=make_response(201, {"number": 1})
        ) as mock_request:
            client.create_issue("alice", "api", "A", "body", "bob")

        assert "labels" not in mock_request.call_args[1]["json"]
        assert mock_request.call_args[1]["json"]["closed"] is False
