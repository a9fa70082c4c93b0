"""GitHub API models used by App authentication.

Only the fields Octofer relies on are declared; everything else GitHub
returns is ignored so new API fields never break parsing.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Account(BaseModel):
    """The user or organization an installation belongs to."""

    model_config = ConfigDict(extra="ignore")

    id: int
    login: str
    type: Optional[str] = None


class Installation(BaseModel):
    """A GitHub App installation as returned by ``GET /app/installations``.

    Attributes:
        id: The installation ID used to mint installation tokens.
        account: The account the App is installed on.
        access_tokens_url: URL for ``POST`` token-creation requests.
        repository_selection: ``all`` or ``selected``.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    account: Optional[Account] = None
    app_id: Optional[int] = None
    target_type: Optional[str] = None
    repository_selection: Optional[str] = None
    access_tokens_url: Optional[str] = None
    html_url: Optional[str] = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    events: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None


class InstallationToken(BaseModel):
    """An installation access token.

    GitHub issues these for one hour. ``expires_at`` is optional because the
    cache falls back to the creation time plus one hour when it is absent.
    """

    model_config = ConfigDict(extra="ignore")

    token: str = Field(..., min_length=1, repr=False)
    installation_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    repository_selection: Optional[str] = None
    repositories: Optional[List[Dict[str, Any]]] = None
