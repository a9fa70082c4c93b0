"""Shared fixtures: RSA keys, credentials and a fake GitHub API."""

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from octofer.github.credentials import Credential

TEST_APP_ID = 4242
TEST_BASE_URL = "https://api.github.test"


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def private_key_base64(private_key_pem) -> str:
    return base64.b64encode(private_key_pem).decode("ascii")


@pytest.fixture(scope="session")
def credential(private_key_pem) -> Credential:
    return Credential(app_id=TEST_APP_ID, private_key=private_key_pem)


class FakeGitHubAPI:
    """In-memory stand-in for the GitHub REST endpoints Octofer calls.

    Serves ``GET /app/installations`` (paginated), ``POST
    /app/installations/{id}/access_tokens``, ``GET
    /installation/repositories`` and issue comment/label endpoints, and
    records every request it sees.
    """

    def __init__(
        self,
        installation_ids: Optional[List[int]] = None,
        page_size: int = 100,
        token_lifetime: Optional[timedelta] = timedelta(hours=1),
    ):
        self.installation_ids = installation_ids if installation_ids is not None else [555]
        self.page_size = page_size
        self.token_lifetime = token_lifetime
        self.requests: List[httpx.Request] = []
        self.tokens_minted = 0
        self.repositories: Dict[int, List[Dict[str, Any]]] = {}
        self.comments: List[Dict[str, Any]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def token_posts(self) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == "POST" and r.url.path.endswith("/access_tokens")
        ]

    def _installation(self, installation_id: int) -> Dict[str, Any]:
        return {
            "id": installation_id,
            "app_id": TEST_APP_ID,
            "account": {"id": installation_id * 10, "login": f"org-{installation_id}", "type": "Organization"},
            "target_type": "Organization",
            "repository_selection": "all",
            "access_tokens_url": f"{TEST_BASE_URL}/app/installations/{installation_id}/access_tokens",
            "permissions": {"issues": "write"},
            "events": ["issues"],
        }

    def _list_installations(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        start = (page - 1) * self.page_size
        items = self.installation_ids[start:start + self.page_size]
        headers = {}
        if start + self.page_size < len(self.installation_ids):
            headers["link"] = (
                f'<{TEST_BASE_URL}/app/installations?per_page={self.page_size}&page={page + 1}>; rel="next"'
            )
        return httpx.Response(
            200,
            json=[self._installation(i) for i in items],
            headers=headers,
        )

    def _mint_token(self, installation_id: int) -> httpx.Response:
        self.tokens_minted += 1
        body: Dict[str, Any] = {"token": f"ghs_{installation_id}_{self.tokens_minted}"}
        if self.token_lifetime is not None:
            expires_at = datetime.now(timezone.utc) + self.token_lifetime
            body["expires_at"] = expires_at.strftime("%Y-%m-%dT%H:%M:%SZ")
        return httpx.Response(201, json=body)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        parts = path.strip("/").split("/")

        if request.method == "GET" and path == "/app/installations":
            return self._list_installations(request)

        if request.method == "POST" and path.startswith("/app/installations/") and path.endswith("/access_tokens"):
            return self._mint_token(int(parts[2]))

        if request.method == "GET" and path == "/installation/repositories":
            installation_id = int(request.headers["authorization"].split("_")[1])
            repos = self.repositories.get(installation_id, [])
            return httpx.Response(200, json={"total_count": len(repos), "repositories": repos})

        if request.method == "POST" and path.endswith("/comments"):
            comment = {"id": len(self.comments) + 1, **json.loads(request.content)}
            self.comments.append(comment)
            return httpx.Response(201, json=comment)

        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_github() -> FakeGitHubAPI:
    return FakeGitHubAPI()


OCTOFER_ENV_VARS = (
    "GITHUB_APP_ID",
    "GITHUB_PRIVATE_KEY_PATH",
    "GITHUB_PRIVATE_KEY_BASE64",
    "GITHUB_WEBHOOK_SECRET",
    "GITHUB_WEBHOOK_HEADER",
    "GITHUB_API_URL",
    "GITHUB_MAX_RETRIES",
    "OCTOFER_HOST",
    "OCTOFER_PORT",
    "OCTOFER_LOG_LEVEL",
    "OCTOFER_LOG_FORMAT",
    "OCTOFER_HANDLER_TIMEOUT",
    "OCTOFER_MAX_BODY_BYTES",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove Octofer settings from the environment for the test."""
    for name in OCTOFER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
