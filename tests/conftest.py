from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from repo_push.api import create_app
from repo_push.config import Options
from repo_push.credentials import Credential
from repo_push.github_client import GitHubClient
from repo_push.service import RepoPushService

from .fixtures.fake_github import FakeGitHub

SESSION = "session-abc"


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub(login="octocat")


@pytest.fixture
def options(tmp_path) -> Options:
    profiles = tmp_path / "profiles.json"
    profiles.write_text(
        json.dumps(
            {
                SESSION: {"github_username": "octocat", "github_access_token": "gho_test"},
                "session-incomplete": {"github_username": "octocat"},
            }
        ),
        encoding="utf-8",
    )
    return Options(
        github_api_url="https://api.github.test",
        profiles_file=profiles,
    )


@pytest.fixture
def service(options, fake_github) -> RepoPushService:
    return RepoPushService(options, transport=fake_github.transport())


@pytest.fixture
def client(service) -> TestClient:
    return TestClient(create_app(service), raise_server_exceptions=False)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {SESSION}"}


@pytest.fixture
async def github(options, fake_github):
    async with GitHubClient("gho_test", options, transport=fake_github.transport()) as gh:
        yield gh


@pytest.fixture
def credential() -> Credential:
    return Credential(account="octocat", access_token="gho_test")
