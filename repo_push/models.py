from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints

MAX_CONTENT_LENGTH = 10 * 1024 * 1024
MAX_UPLOAD_FILES = 100


def _reject_traversal(value: str) -> str:
    if value.startswith("/") or ".." in value.split("/"):
        raise ValueError("Path traversal not allowed")
    return value


def _reject_ref_traversal(value: str) -> str:
    # Subset of git check-ref-format: no empty or dot-leading components, no "..".
    if ".." in value or any(not part or part.startswith(".") for part in value.split("/")):
        raise ValueError("Invalid branch name")
    return value


def _require_base64(value: str) -> str:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Content must be base64 encoded") from exc
    return value


OwnerName = Annotated[
    str, StringConstraints(min_length=1, max_length=39, pattern=r"^[a-zA-Z0-9-]+$")
]
RepoName = Annotated[
    str, StringConstraints(min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9._-]+$")
]
BranchName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=255, pattern=r"^[a-zA-Z0-9._/-]+$"),
    AfterValidator(_reject_ref_traversal),
]
RepoPath = Annotated[
    str, StringConstraints(min_length=1, max_length=4096), AfterValidator(_reject_traversal)
]
DirPath = Annotated[str, StringConstraints(max_length=4096), AfterValidator(_reject_traversal)]
ContentHash = Annotated[str, StringConstraints(min_length=1, max_length=100)]
CommitMessage = Annotated[str, StringConstraints(min_length=1, max_length=500)]


class RepoRequest(BaseModel):
    owner: OwnerName
    repo: RepoName


class CreateFileRequest(RepoRequest):
    path: RepoPath
    content: str = Field(max_length=MAX_CONTENT_LENGTH)
    message: CommitMessage | None = None
    branch: BranchName | None = None


class DeleteFileRequest(RepoRequest):
    path: RepoPath
    sha: ContentHash
    branch: BranchName | None = None
    type: Literal["file", "dir"] = "file"


class RenameFileRequest(RepoRequest):
    path: RepoPath
    new_path: RepoPath
    sha: ContentHash
    branch: BranchName | None = None


class MoveItem(BaseModel):
    path: RepoPath
    sha: ContentHash
    type: Literal["file", "dir"] = "file"


class MoveFilesRequest(RepoRequest):
    files: list[MoveItem] = Field(min_length=1)
    destination: DirPath = ""
    branch: BranchName | None = None


class UploadFile(BaseModel):
    path: RepoPath
    content: Annotated[
        str, StringConstraints(max_length=MAX_CONTENT_LENGTH), AfterValidator(_require_base64)
    ]


class UploadFilesRequest(RepoRequest):
    files: list[UploadFile] = Field(min_length=1, max_length=MAX_UPLOAD_FILES)
    message: CommitMessage | None = None
    branch: BranchName | None = None


class SyncRepoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_repo: RepoName = Field(alias="sourceRepo")
    dest_repo: RepoName = Field(alias="destRepo")
    source_branch: BranchName = Field(alias="sourceBranch")
    dest_branch: BranchName = Field(alias="destBranch")


class RepoContentsRequest(RepoRequest):
    path: DirPath = ""
    ref: BranchName | None = None


class RepoBranchesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repository_name: RepoName = Field(alias="repositoryName")


class CreatePullRequestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repository_name: RepoName = Field(alias="repositoryName")
    title: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    body: str | None = Field(default=None, max_length=65536)
    head: BranchName
    base: BranchName


class StarRepoRequest(RepoRequest):
    starred: bool


class RenameRepoRequest(RepoRequest):
    new_name: RepoName


class UpdateRepoRequest(RepoRequest):
    description: str | None = Field(default=None, max_length=350)
    homepage: str | None = Field(default=None, max_length=255)
    private: bool | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(include={"description", "homepage", "private"}, exclude_none=True)


class DeleteRepoRequest(RepoRequest):
    pass


class UploadResult(BaseModel):
    path: str
    success: bool
    error: str | None = None


class UploadSummary(BaseModel):
    total: int
    successful: int
    failed: int


class UploadResponse(BaseModel):
    success: bool = True
    results: list[UploadResult]
    summary: UploadSummary


class SyncResponse(BaseModel):
    success: bool = True
    files_synced: int
    total_files: int
    skipped: list[str] = Field(default_factory=list)
    truncated: bool = False


class MoveResponse(BaseModel):
    success: bool = True
    moved: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
