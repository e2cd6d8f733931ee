from __future__ import annotations

import asyncio
import logging
import os
import signal

import uvicorn

from repo_push.api import create_app
from repo_push.config import load_options
from repo_push.service import RepoPushService

__VERSION__ = "0.1.0"


async def main() -> None:
    options = load_options()
    log_level_map = {
        "trace": logging.DEBUG,
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    logging.basicConfig(
        level=log_level_map.get(options.log_level.lower(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    service = RepoPushService(options)
    build_version = os.getenv("REPO_PUSH_BUILD_VERSION", "dev")
    logging.getLogger(__name__).info(
        "RepoPush starting | version=%s | build=%s | api=%s | profiles=%s",
        __VERSION__,
        build_version,
        options.github_api_url,
        options.profiles_file,
    )
    app = create_app(service)
    config = uvicorn.Config(app, host="0.0.0.0", port=options.http_api_port, log_level="info")
    server = uvicorn.Server(config)

    loop = asyncio.get_running_loop()

    def _shutdown_signal() -> None:
        server.should_exit = True

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown_signal)

    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
