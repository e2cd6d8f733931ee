from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .errors import RepoPushError
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
from .service import RepoPushService

_LOGGER = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _describe_validation_errors(exc: RequestValidationError) -> list[str]:
    details = []
    for error in exc.errors():
        # Drop the leading "body" location segment.
        loc = [str(part) for part in error.get("loc", ())][1:]
        details.append(f"{'.'.join(loc)}: {error.get('msg', 'Invalid value')}")
    return details


def create_app(service: RepoPushService) -> FastAPI:
    app = FastAPI(title="RepoPush", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=service.options.cors_allow_headers,
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_input(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid input", "details": _describe_validation_errors(exc)},
        )

    @app.exception_handler(RepoPushError)
    async def repo_push_error(request: Request, exc: RepoPushError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        _LOGGER.exception("Error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500, content={"error": str(exc) or "An unknown error occurred"}
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/create-file")
    async def create_file(body: CreateFileRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.create_file(credential, body)

    @app.post("/delete-file")
    async def delete_file(body: DeleteFileRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.delete_file(credential, body)

    @app.post("/rename-file")
    async def rename_file(body: RenameFileRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.rename_file(credential, body)

    @app.post("/move-files", response_model=MoveResponse)
    async def move_files(body: MoveFilesRequest, request: Request) -> MoveResponse:
        credential = await service.resolve(request)
        return await service.move_files(credential, body)

    @app.post("/upload-files", response_model=UploadResponse)
    async def upload_files(body: UploadFilesRequest, request: Request) -> UploadResponse:
        credential = await service.resolve(request)
        return await service.upload_files(credential, body)

    @app.post("/sync-repo-contents", response_model=SyncResponse)
    async def sync_repo_contents(body: SyncRepoRequest, request: Request) -> SyncResponse:
        credential = await service.resolve(request)
        return await service.sync_repo(credential, body)

    @app.post("/get-repo-contents")
    async def get_repo_contents(body: RepoContentsRequest, request: Request) -> JSONResponse:
        credential = await service.resolve(request)
        payload = await service.repo_contents(credential, body)
        return JSONResponse(content=payload, headers=NO_CACHE_HEADERS)

    @app.post("/get-repo-branches")
    async def get_repo_branches(body: RepoBranchesRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.repo_branches(credential, body)

    @app.post("/create-pull-request")
    async def create_pull_request(
        body: CreatePullRequestRequest, request: Request
    ) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.create_pull_request(credential, body)

    @app.post("/star-repo")
    async def star_repo(body: StarRepoRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.star_repo(credential, body)

    @app.post("/rename-repo")
    async def rename_repo(body: RenameRepoRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.rename_repo(credential, body)

    @app.post("/update-repo")
    async def update_repo(body: UpdateRepoRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.update_repo(credential, body)

    @app.post("/delete-repo")
    async def delete_repo(body: DeleteRepoRequest, request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.delete_repo(credential, body)

    @app.post("/list-repos")
    async def list_repos(request: Request) -> dict[str, Any]:
        credential = await service.resolve(request)
        return await service.list_repos(credential)

    return app
