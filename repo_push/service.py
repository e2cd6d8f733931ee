from __future__ import annotations

import logging
from typing import Any

import httpx
from starlette.requests import Request

from .config import Options, load_options
from .credentials import Credential, CredentialResolver, ProfileStore
from .errors import (
    EXPIRED_TOKEN_MESSAGE,
    AuthenticationError,
    GitHubError,
    OwnershipError,
    WorkflowError,
)
from .github_client import FileWriteRequest, GitHubClient
from .models import (
    CreateFileRequest,
    CreatePullRequestRequest,
    DeleteFileRequest,
    DeleteRepoRequest,
    MoveFilesRequest,
    MoveResponse,
    RenameFileRequest,
    RenameRepoRequest,
    RepoBranchesRequest,
    RepoContentsRequest,
    StarRepoRequest,
    SyncRepoRequest,
    SyncResponse,
    UpdateRepoRequest,
    UploadFilesRequest,
    UploadResponse,
)
from .workflows import (
    SyncOperation,
    delete_directory,
    move_batch,
    move_entry,
    sync_tree,
    upload_batch,
    upstream_call,
    verify_repo_owner,
)

_LOGGER = logging.getLogger(__name__)

NO_DIFF_MESSAGE = "No changes to merge between these branches"


def authorize_owner(credential: Credential, owner: str) -> None:
    if owner != credential.account:
        _LOGGER.error(
            "Unauthorized access attempt: user %s tried to access a repository of %s",
            credential.account,
            owner,
        )
        raise OwnershipError("Unauthorized: can only access your own repositories")


class RepoPushService:
    """One coroutine per operation; every call gets its own upstream client."""

    def __init__(
        self,
        options: Options | None = None,
        resolver: CredentialResolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.options = options or load_options()
        self.resolver = resolver or ProfileStore(self.options.profiles_file)
        self._transport = transport

    async def resolve(self, request: Request) -> Credential:
        credential = await self.resolver.resolve_caller(request)
        if credential is None:
            raise AuthenticationError("Unauthorized")
        return credential

    def client_for(self, credential: Credential) -> GitHubClient:
        return GitHubClient(credential.access_token, self.options, transport=self._transport)

    def _branch(self, branch: str | None) -> str:
        return branch or self.options.default_branch

    async def create_file(self, credential: Credential, body: CreateFileRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        write = FileWriteRequest(
            path=body.path,
            content=body.content.encode("utf-8"),
            message=body.message or f"Create {body.path}",
            branch=self._branch(body.branch),
        )
        _LOGGER.info("Creating file %s in %s/%s", body.path, body.owner, body.repo)
        async with self.client_for(credential) as client:
            try:
                data = await client.put_file(body.owner, body.repo, write)
            except GitHubError as exc:
                if exc.status_code == 422:
                    raise WorkflowError("File already exists", 422) from exc
                raise WorkflowError("Failed to create file", exc.status_code) from exc
        return {"success": True, "data": data}

    async def delete_file(self, credential: Credential, body: DeleteFileRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        async with self.client_for(credential) as client:
            if body.type == "dir":
                branch = self._branch(body.branch)
                _LOGGER.info("Deleting directory %s on branch %s", body.path, branch)
                await delete_directory(client, body.owner, body.repo, branch, body.path)
            else:
                _LOGGER.info("Deleting file %s", body.path)
                await upstream_call(
                    "Failed to delete file on GitHub",
                    client.delete_file(
                        body.owner,
                        body.repo,
                        body.path,
                        body.sha,
                        f"Delete {body.path}",
                        body.branch,
                    ),
                )
        return {"success": True}

    async def rename_file(self, credential: Credential, body: RenameFileRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        _LOGGER.info("Renaming file %s to %s", body.path, body.new_path)
        async with self.client_for(credential) as client:
            outcome = await move_entry(
                client,
                body.owner,
                body.repo,
                self._branch(body.branch),
                body.path,
                body.new_path,
                body.sha,
            )
        status = outcome.error.status_code if outcome.error else 500
        if outcome.status == "read_failed":
            raise WorkflowError("Failed to get file content", status)
        if outcome.status == "write_failed":
            raise WorkflowError("Failed to create file at new location", status)
        return {"success": True}

    async def move_files(self, credential: Credential, body: MoveFilesRequest) -> MoveResponse:
        authorize_owner(credential, body.owner)
        _LOGGER.info("Moving %d items to %s", len(body.files), body.destination or "/")
        async with self.client_for(credential) as client:
            result = await move_batch(
                client,
                body.owner,
                body.repo,
                self._branch(body.branch),
                body.files,
                body.destination,
            )
        return MoveResponse(moved=result.moved, failed=result.failed)

    async def upload_files(
        self, credential: Credential, body: UploadFilesRequest
    ) -> UploadResponse:
        authorize_owner(credential, body.owner)
        _LOGGER.info("Uploading %d files to %s/%s", len(body.files), body.owner, body.repo)
        async with self.client_for(credential) as client:
            return await upload_batch(
                client, body.owner, body.repo, self._branch(body.branch), body.files, body.message
            )

    async def sync_repo(self, credential: Credential, body: SyncRepoRequest) -> SyncResponse:
        op = SyncOperation(
            account=credential.account,
            source_repo=body.source_repo,
            dest_repo=body.dest_repo,
            source_branch=body.source_branch,
            dest_branch=body.dest_branch,
        )
        _LOGGER.info(
            "Syncing %s/%s:%s -> %s/%s:%s",
            op.account,
            op.source_repo,
            op.source_branch,
            op.account,
            op.dest_repo,
            op.dest_branch,
        )
        async with self.client_for(credential) as client:
            result = await sync_tree(client, op, self.options.sync_max_files)
        if result.failed:
            _LOGGER.warning("%d file(s) failed to sync", len(result.failed))
        return SyncResponse(
            files_synced=result.files_synced,
            total_files=result.total_files,
            skipped=result.skipped,
            truncated=result.truncated,
        )

    async def repo_contents(
        self, credential: Credential, body: RepoContentsRequest
    ) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        async with self.client_for(credential) as client:
            contents = await upstream_call(
                "Failed to fetch repository contents",
                client.get_contents(body.owner, body.repo, body.path, body.ref),
            )
        return {"contents": contents}

    async def repo_branches(
        self, credential: Credential, body: RepoBranchesRequest
    ) -> dict[str, Any]:
        owner = credential.account
        async with self.client_for(credential) as client:
            await verify_repo_owner(client, owner, body.repository_name)
            branches = await upstream_call(
                "Failed to fetch branches from GitHub",
                client.list_branches(owner, body.repository_name),
            )
        _LOGGER.debug("Found %d branches", len(branches))
        return {"branches": branches}

    async def create_pull_request(
        self, credential: Credential, body: CreatePullRequestRequest
    ) -> dict[str, Any]:
        owner = credential.account
        _LOGGER.info(
            "Creating PR for %s/%s: %s -> %s", owner, body.repository_name, body.head, body.base
        )
        async with self.client_for(credential) as client:
            try:
                data = await client.create_pull(
                    owner, body.repository_name, body.title, body.body or "", body.head, body.base
                )
            except GitHubError as exc:
                if exc.status_code == 401:
                    raise AuthenticationError(EXPIRED_TOKEN_MESSAGE) from exc
                if exc.status_code == 422:
                    raise WorkflowError(_first_validation_message(exc.body), 422) from exc
                raise WorkflowError(
                    "Failed to create pull request. "
                    "Please check your branch selections and try again.",
                    exc.status_code,
                ) from exc
        _LOGGER.info("PR created: %s", data.get("html_url"))
        return {
            "success": True,
            "pull_request_url": data["html_url"],
            "pull_request_number": data["number"],
        }

    async def star_repo(self, credential: Credential, body: StarRepoRequest) -> dict[str, Any]:
        # Starring touches only the caller's own star list, so any repository is fair game.
        action = "Starring" if body.starred else "Unstarring"
        _LOGGER.info("%s repository %s/%s", action, body.owner, body.repo)
        async with self.client_for(credential) as client:
            await upstream_call(
                "Failed to update star status",
                client.set_starred(body.owner, body.repo, body.starred),
            )
        return {"success": True, "starred": body.starred}

    async def rename_repo(self, credential: Credential, body: RenameRepoRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        _LOGGER.info("Renaming repository %s/%s to %s", body.owner, body.repo, body.new_name)
        async with self.client_for(credential) as client:
            data = await upstream_call(
                "Failed to rename repository",
                client.update_repo(body.owner, body.repo, {"name": body.new_name}),
            )
        return {"success": True, "new_name": data["name"]}

    async def update_repo(self, credential: Credential, body: UpdateRepoRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        _LOGGER.info("Updating repository %s/%s", body.owner, body.repo)
        async with self.client_for(credential) as client:
            data = await upstream_call(
                "Failed to update repository",
                client.update_repo(body.owner, body.repo, body.changes()),
            )
        return {"success": True, "repository": data}

    async def delete_repo(self, credential: Credential, body: DeleteRepoRequest) -> dict[str, Any]:
        authorize_owner(credential, body.owner)
        _LOGGER.warning("Deleting repository %s/%s", body.owner, body.repo)
        async with self.client_for(credential) as client:
            await upstream_call(
                "Failed to delete repository", client.delete_repo(body.owner, body.repo)
            )
        return {"success": True}

    async def list_repos(self, credential: Credential) -> dict[str, Any]:
        async with self.client_for(credential) as client:
            repos = await upstream_call("Failed to fetch repositories", client.list_repos())
        return {"repositories": repos}


def _first_validation_message(body: Any) -> str:
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors and isinstance(errors[0], dict) and errors[0].get("message"):
            return errors[0]["message"]
    return NO_DIFF_MESSAGE
