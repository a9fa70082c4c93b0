"""GitHub App authentication and API access.

This module provides:
- Credential loading from a PEM file or a base64 payload
- RS256 App JWT signing
- A retrying REST client with rate limit handling
- Installation token minting with a per-installation client cache
"""

from octofer.github.app import GitHubAppAuthenticator, InstallationNotFoundError
from octofer.github.auth import AppJWTAuth, AppJWTSigner, AuthError
from octofer.github.client import GitHubAPIError, GitHubClient, RateLimitError
from octofer.github.credentials import (
    AmbiguousCredentialError,
    ConfigError,
    Credential,
    InvalidKeyEncodingError,
    MissingCredentialError,
    UnreadableKeyError,
    load_credential,
)
from octofer.github.models import Account, Installation, InstallationToken
from octofer.github.token_cache import CachedInstallationClient, InstallationTokenCache

__all__ = [
    "Account",
    "AmbiguousCredentialError",
    "AppJWTAuth",
    "AppJWTSigner",
    "AuthError",
    "CachedInstallationClient",
    "ConfigError",
    "Credential",
    "GitHubAPIError",
    "GitHubAppAuthenticator",
    "GitHubClient",
    "Installation",
    "InstallationNotFoundError",
    "InstallationToken",
    "InstallationTokenCache",
    "InvalidKeyEncodingError",
    "MissingCredentialError",
    "RateLimitError",
    "UnreadableKeyError",
    "load_credential",
]
