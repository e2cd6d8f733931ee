from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, PositiveFloat, PositiveInt, ValidationError

OPTIONS_PATH = Path(os.getenv("REPO_PUSH_OPTIONS_FILE", "/data/options.json"))
LOCAL_DEV_OPTIONS = Path("./dev/options.json")
PROFILES_PATH = Path(os.getenv("REPO_PUSH_PROFILES_FILE", "/data/profiles.json"))
DEFAULT_HTTP_PORT = 8080
GITHUB_API_URL = "https://api.github.com"


class Options(BaseModel):
    github_api_url: str = GITHUB_API_URL
    github_api_version: str = "2022-11-28"
    user_agent: str = "RepoPush"
    request_timeout: PositiveFloat = 20
    profiles_file: Path = PROFILES_PATH
    sync_max_files: PositiveInt = 100
    default_branch: str = Field(default="main", pattern=r"^[a-zA-Z0-9._/-]+$")
    log_level: str = Field(default="info", pattern=r"^(trace|debug|info|warning|error)$")
    http_api_port: int = DEFAULT_HTTP_PORT
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["authorization", "x-client-info", "apikey", "content-type"]
    )


def _load_raw_options() -> dict[str, Any]:
    candidates = [OPTIONS_PATH, LOCAL_DEV_OPTIONS]
    for candidate in candidates:
        if candidate.exists():
            with candidate.open("r", encoding="utf-8") as handle:
                return json.load(handle)
    # Every option has a default; an absent file means "run with defaults".
    return {}


def load_options() -> Options:
    raw = _load_raw_options()
    try:
        return Options(**raw)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid options: {exc}") from exc
