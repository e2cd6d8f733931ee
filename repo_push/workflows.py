"""Multi-step repository workflows built on the contents and git data APIs.

None of these retry or roll back. Loop workflows record a failure per item
and keep going; the directory delete stops at the first failing step.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Awaitable, Literal, Sequence, TypeVar

import httpx

from .errors import (
    EXPIRED_TOKEN_MESSAGE,
    AuthenticationError,
    GitHubError,
    OwnershipError,
    WorkflowError,
)
from .github_client import FileWriteRequest, GitHubClient
from .models import MoveItem, UploadFile, UploadResponse, UploadResult, UploadSummary

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_MAX_FILES = 100
SYMLINK_MODE = "120000"
_ITEM_ERRORS = (GitHubError, httpx.HTTPError)


@dataclass(frozen=True)
class SyncOperation:
    account: str
    source_repo: str
    dest_repo: str
    source_branch: str
    dest_branch: str


@dataclass
class SyncResult:
    files_synced: int
    total_files: int
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True)
class MoveOutcome:
    old_path: str
    new_path: str
    status: Literal["moved", "read_failed", "write_failed", "delete_failed"]
    error: GitHubError | None = None


@dataclass
class MoveBatchResult:
    moved: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


async def verify_repo_owner(client: GitHubClient, account: str, repo: str) -> None:
    try:
        data = await client.get_repo(account, repo)
    except GitHubError as exc:
        raise OwnershipError(f"Repository {repo} not found or not accessible") from exc
    if data.get("owner", {}).get("login") != account:
        raise OwnershipError(f"Repository {repo} does not belong to user {account}")


async def create_or_get_branch(client: GitHubClient, owner: str, repo: str, branch: str) -> str:
    """Return the tip of ``branch``, creating it from the default branch if missing."""
    try:
        return await client.get_branch_sha(owner, repo, branch)
    except GitHubError as exc:
        if not exc.not_found:
            raise
    data = await client.get_repo(owner, repo)
    default_branch = data["default_branch"]
    base_sha = await client.get_branch_sha(owner, repo, default_branch)
    await client.create_branch(owner, repo, branch, base_sha)
    _LOGGER.info("Created branch %s on %s/%s from %s", branch, owner, repo, default_branch)
    return base_sha


async def _probe_sha(
    client: GitHubClient, owner: str, repo: str, path: str, ref: str
) -> str | None:
    try:
        data = await client.get_contents(owner, repo, path, ref)
    except GitHubError as exc:
        if exc.not_found:
            return None
        raise
    return data.get("sha") if isinstance(data, dict) else None


async def sync_tree(
    client: GitHubClient, op: SyncOperation, max_files: int = SYNC_MAX_FILES
) -> SyncResult:
    """Copy every blob of the source branch onto the destination branch."""
    owner = op.account
    await verify_repo_owner(client, owner, op.source_repo)
    await verify_repo_owner(client, owner, op.dest_repo)

    try:
        await create_or_get_branch(client, owner, op.dest_repo, op.dest_branch)
    except GitHubError as exc:
        raise WorkflowError(
            f"Failed to create/access destination branch: {exc.message}", 400
        ) from exc

    try:
        listing = await client.get_tree(owner, op.source_repo, op.source_branch)
    except GitHubError as exc:
        if exc.status_code == 401:
            raise AuthenticationError(EXPIRED_TOKEN_MESSAGE) from exc
        raise WorkflowError(
            "Failed to fetch source repository tree. Please verify the branch exists.",
            exc.status_code,
        ) from exc

    if listing.truncated:
        _LOGGER.warning(
            "Source tree of %s:%s is too large to list in full, syncing the listed part",
            op.source_repo,
            op.source_branch,
        )
    # The contents API would turn a symlink into a regular file holding its target.
    symlinks = [blob.path for blob in listing.blobs() if blob.mode == SYMLINK_MODE]
    for path in symlinks:
        _LOGGER.warning("Skipping symlink %s", path)
    blobs = [blob for blob in listing.blobs() if blob.mode != SYMLINK_MODE]
    _LOGGER.info("Found %d files to sync", len(blobs))
    if len(blobs) > max_files:
        _LOGGER.warning("Syncing only the first %d of %d files", max_files, len(blobs))

    result = SyncResult(
        files_synced=0, total_files=len(blobs), skipped=symlinks, truncated=listing.truncated
    )
    for blob in blobs[:max_files]:
        try:
            source = await client.read_file(owner, op.source_repo, blob.path, op.source_branch)
            existing_sha = await _probe_sha(client, owner, op.dest_repo, blob.path, op.dest_branch)
            await client.put_file(
                owner,
                op.dest_repo,
                FileWriteRequest(
                    path=blob.path,
                    content=source.content,
                    message=f"Sync: Merged {blob.path} from {op.source_repo}:{op.source_branch}",
                    branch=op.dest_branch,
                    existing_sha=existing_sha,
                ),
            )
        except _ITEM_ERRORS as exc:
            _LOGGER.error("Failed to sync %s: %s", blob.path, exc)
            result.failed.append(blob.path)
            continue
        result.files_synced += 1
        _LOGGER.debug("Synced %s", blob.path)
    return result


async def move_entry(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    old_path: str,
    new_path: str,
    sha: str,
) -> MoveOutcome:
    """Move one file as read, write at the new path, then delete the old path.

    The contents API has no move; the three calls are not linked. A failed
    delete leaves the file at both paths.
    """
    try:
        source = await client.read_file(owner, repo, old_path, branch)
    except _ITEM_ERRORS as exc:
        _LOGGER.warning("Could not read %s: %s", old_path, exc)
        return MoveOutcome(old_path, new_path, "read_failed", _as_github_error(exc))

    try:
        await client.put_file(
            owner,
            repo,
            FileWriteRequest(
                path=new_path,
                content=source.content,
                message=f"Move {old_path} to {new_path}",
                branch=branch,
            ),
        )
    except _ITEM_ERRORS as exc:
        _LOGGER.error("Failed to write %s: %s", new_path, exc)
        return MoveOutcome(old_path, new_path, "write_failed", _as_github_error(exc))

    try:
        await client.delete_file(
            owner, repo, old_path, sha, f"Delete old file {old_path}", branch
        )
    except _ITEM_ERRORS as exc:
        _LOGGER.error("Failed to delete old file %s, it now exists twice: %s", old_path, exc)
        return MoveOutcome(old_path, new_path, "delete_failed", _as_github_error(exc))

    return MoveOutcome(old_path, new_path, "moved")


def destination_path(destination: str, path: str) -> str:
    name = posixpath.basename(path.rstrip("/"))
    destination = destination.strip("/")
    return f"{destination}/{name}" if destination else name


async def move_batch(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    items: Sequence[MoveItem],
    destination: str,
) -> MoveBatchResult:
    result = MoveBatchResult()
    # One at a time: later writes may land in directories created by earlier ones.
    for item in items:
        if item.type == "dir":
            _LOGGER.warning("Skipping directory %s, only files can be moved", item.path)
            result.failed.append(item.path)
            continue
        new_path = destination_path(destination, item.path)
        outcome = await move_entry(client, owner, repo, branch, item.path, new_path, item.sha)
        if outcome.status == "moved":
            result.moved.append(item.path)
        else:
            result.failed.append(item.path)
    return result


async def upstream_call(description: str, call: Awaitable[T]) -> T:
    try:
        return await call
    except GitHubError as exc:
        _LOGGER.error("%s: %s", description, exc)
        raise WorkflowError(description, exc.status_code) from exc


async def delete_directory(
    client: GitHubClient, owner: str, repo: str, branch: str, prefix: str
) -> str:
    """Remove ``prefix`` and everything below it in a single commit.

    Returns the sha of the new commit the branch now points at.
    """
    prefix = prefix.rstrip("/")
    nested = f"{prefix}/"
    head = await upstream_call(
        "Failed to get branch reference", client.get_branch_sha(owner, repo, branch)
    )
    base_tree = await upstream_call(
        "Failed to get commit", client.get_commit_tree(owner, repo, head)
    )
    listing = await upstream_call("Failed to get tree", client.get_tree(owner, repo, base_tree))
    if listing.truncated:
        # Rewriting from a partial listing would drop every entry it left out.
        raise WorkflowError("Repository tree is too large to delete a directory from", 422)

    # Tree entries are implied by the blob paths below them.
    kept = [
        entry
        for entry in listing.entries
        if entry.kind != "tree" and entry.path != prefix and not entry.path.startswith(nested)
    ]
    _LOGGER.info("Removing %d entries under %s", len(listing.entries) - len(kept), prefix)

    tree_sha = await upstream_call(
        "Failed to create new tree", client.create_tree(owner, repo, kept)
    )
    commit_sha = await upstream_call(
        "Failed to create commit",
        client.create_commit(owner, repo, f"Delete directory {prefix}", tree_sha, [head]),
    )
    await upstream_call(
        "Failed to update branch", client.update_branch(owner, repo, branch, commit_sha)
    )
    return commit_sha


async def _upload_one(
    client: GitHubClient, owner: str, repo: str, branch: str, file: UploadFile, message: str | None
) -> UploadResult:
    try:
        await client.put_file(
            owner,
            repo,
            FileWriteRequest(
                path=file.path,
                content=base64.b64decode(file.content),
                message=message or f"Upload {file.path}",
                branch=branch,
            ),
        )
    except GitHubError as exc:
        _LOGGER.error("Failed to upload %s: %s", file.path, exc)
        return UploadResult(path=file.path, success=False, error=exc.message)
    except httpx.HTTPError as exc:
        _LOGGER.error("Exception uploading %s: %s", file.path, exc)
        return UploadResult(path=file.path, success=False, error=str(exc))
    _LOGGER.debug("Uploaded %s", file.path)
    return UploadResult(path=file.path, success=True)


async def upload_batch(
    client: GitHubClient,
    owner: str,
    repo: str,
    branch: str,
    files: Sequence[UploadFile],
    message: str | None = None,
) -> UploadResponse:
    results = await asyncio.gather(
        *(_upload_one(client, owner, repo, branch, file, message) for file in files)
    )
    successful = sum(1 for result in results if result.success)
    _LOGGER.info("Upload complete: %d/%d successful", successful, len(files))
    return UploadResponse(
        results=list(results),
        summary=UploadSummary(
            total=len(files), successful=successful, failed=len(files) - successful
        ),
    )


def _as_github_error(exc: Exception) -> GitHubError:
    if isinstance(exc, GitHubError):
        return exc
    return GitHubError(str(exc), 502)
