from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import quote

import httpx

from .config import Options
from .errors import GitHubError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeEntry:
    path: str
    kind: Literal["blob", "tree", "commit"]
    sha: str
    mode: str

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> TreeEntry:
        return cls(path=item["path"], kind=item["type"], sha=item["sha"], mode=item["mode"])

    def to_api(self) -> dict[str, str]:
        return {"path": self.path, "mode": self.mode, "type": self.kind, "sha": self.sha}


@dataclass(frozen=True)
class TreeListing:
    entries: list[TreeEntry]
    truncated: bool = False

    def blobs(self) -> list[TreeEntry]:
        return [entry for entry in self.entries if entry.kind == "blob"]


@dataclass(frozen=True)
class RemoteFile:
    path: str
    sha: str
    content: bytes


@dataclass(frozen=True)
class FileWriteRequest:
    path: str
    content: bytes
    message: str
    branch: str
    existing_sha: str | None = None

    def payload(self) -> dict[str, str]:
        body = {
            "message": self.message,
            "content": base64.b64encode(self.content).decode("ascii"),
            "branch": self.branch,
        }
        if self.existing_sha:
            body["sha"] = self.existing_sha
        return body


def _quote_path(path: str) -> str:
    return quote(path, safe="/")


def _quote_ref(ref: str) -> str:
    return quote(ref, safe="/")


def _decode_base64(content: str) -> bytes:
    # GitHub wraps base64 payloads at 60 columns.
    return base64.b64decode("".join(content.split()))


class GitHubClient:
    """Thin wrapper over the GitHub REST API for one caller's token.

    Every non-2xx answer raises :class:`GitHubError` carrying the upstream
    status; nothing is retried.
    """

    def __init__(
        self,
        token: str,
        options: Options,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": options.github_api_version,
            "User-Agent": options.user_agent,
        }
        self._client = httpx.AsyncClient(
            base_url=options.github_api_url.rstrip("/"),
            headers=headers,
            timeout=options.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        resp = await self._client.request(method, url, params=params, json=json)
        if resp.is_success:
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text
        detail = body.get("message") if isinstance(body, dict) else None
        message = f"GitHub API request failed: {resp.status_code}"
        if detail:
            message += f" - {detail}"
        _LOGGER.debug("%s %s -> %s", method, url, resp.status_code)
        raise GitHubError(message, resp.status_code, body)

    # Repositories

    async def get_repo(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}")

    async def list_repos(self) -> list[dict[str, Any]]:
        return await self._request(
            "GET", "/user/repos", params={"sort": "updated", "per_page": 100}
        )

    async def update_repo(self, owner: str, repo: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/repos/{owner}/{repo}", json=fields)

    async def delete_repo(self, owner: str, repo: str) -> None:
        await self._request("DELETE", f"/repos/{owner}/{repo}")

    async def list_branches(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self._request("GET", f"/repos/{owner}/{repo}/branches")

    async def set_starred(self, owner: str, repo: str, starred: bool) -> None:
        await self._request("PUT" if starred else "DELETE", f"/user/starred/{owner}/{repo}")

    async def create_pull(
        self, owner: str, repo: str, title: str, body: str, head: str, base: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )

    # Contents API

    async def get_contents(
        self, owner: str, repo: str, path: str = "", ref: str | None = None
    ) -> Any:
        params = {"ref": ref} if ref else None
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{_quote_path(path)}", params=params
        )

    async def read_file(self, owner: str, repo: str, path: str, ref: str) -> RemoteFile:
        data = await self.get_contents(owner, repo, path, ref)
        if not isinstance(data, dict) or data.get("type") != "file":
            raise GitHubError(f"{path} is not a file", 422, data)
        if data.get("encoding") == "base64":
            content = _decode_base64(data.get("content", ""))
        else:
            # Files over 1 MB come back with encoding "none" and an empty content field.
            _LOGGER.debug("Fetching %s through the blob API", path)
            content = await self.get_blob(owner, repo, data["sha"])
        return RemoteFile(path=data["path"], sha=data["sha"], content=content)

    async def put_file(self, owner: str, repo: str, write: FileWriteRequest) -> dict[str, Any]:
        return await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{_quote_path(write.path)}",
            json=write.payload(),
        )

    async def delete_file(
        self,
        owner: str,
        repo: str,
        path: str,
        sha: str,
        message: str,
        branch: str | None = None,
    ) -> None:
        body = {"message": message, "sha": sha}
        if branch:
            body["branch"] = branch
        await self._request(
            "DELETE", f"/repos/{owner}/{repo}/contents/{_quote_path(path)}", json=body
        )

    # Git data API

    async def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/heads/{_quote_ref(branch)}"
        )
        return data["object"]["sha"]

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    async def update_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{_quote_ref(branch)}",
            json={"sha": sha},
        )

    async def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str:
        data = await self._request("GET", f"/repos/{owner}/{repo}/git/commits/{commit_sha}")
        return data["tree"]["sha"]

    async def get_blob(self, owner: str, repo: str, sha: str) -> bytes:
        data = await self._request("GET", f"/repos/{owner}/{repo}/git/blobs/{sha}")
        if data.get("encoding") != "base64":
            raise GitHubError(f"Unsupported blob encoding: {data.get('encoding')}", 422, data)
        return _decode_base64(data.get("content", ""))

    async def get_tree(self, owner: str, repo: str, tree_ish: str) -> TreeListing:
        """List ``tree_ish`` recursively.

        GitHub caps recursive listings; when it does, ``truncated`` is set and
        ``entries`` is incomplete.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{_quote_ref(tree_ish)}",
            params={"recursive": "1"},
        )
        truncated = bool(data.get("truncated"))
        if truncated:
            _LOGGER.warning("Tree listing for %s/%s@%s was truncated", owner, repo, tree_ish)
        return TreeListing(
            entries=[TreeEntry.from_api(item) for item in data.get("tree", [])],
            truncated=truncated,
        )

    async def create_tree(self, owner: str, repo: str, entries: list[TreeEntry]) -> str:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            json={"tree": [entry.to_api() for entry in entries]},
        )
        return data["sha"]

    async def create_commit(
        self, owner: str, repo: str, message: str, tree_sha: str, parents: list[str]
    ) -> str:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        return data["sha"]
