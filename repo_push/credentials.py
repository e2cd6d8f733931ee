from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from starlette.requests import Request

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    account: str
    access_token: str

    def __repr__(self) -> str:
        return f"Credential(account={self.account!r}, access_token='***')"


class CredentialResolver(Protocol):
    async def resolve_caller(self, request: Request) -> Credential | None: ...


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class ProfileStore:
    """Maps session tokens to the GitHub profile stored for that session.

    The backing file is a JSON object keyed by session token::

        {"<session>": {"github_username": "octocat", "github_access_token": "gho_..."}}

    It is re-read on every lookup so that token refreshes written by the login
    flow are picked up without a restart.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    async def resolve_caller(self, request: Request) -> Credential | None:
        session = bearer_token(request)
        if session is None:
            return None
        profile = await asyncio.to_thread(self._lookup, session)
        if profile is None:
            return None
        account = profile.get("github_username")
        token = profile.get("github_access_token")
        if not account or not token:
            _LOGGER.warning("Profile for session is missing GitHub credentials")
            return None
        return Credential(account=account, access_token=token)

    def _lookup(self, session: str) -> dict[str, Any] | None:
        if not self._path.exists():
            _LOGGER.warning("Profile store %s does not exist", self._path)
            return None
        with self._path.open("r", encoding="utf-8") as handle:
            profiles = json.load(handle)
        profile = profiles.get(session)
        return profile if isinstance(profile, dict) else None
