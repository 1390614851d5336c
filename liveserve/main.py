"""
Live-reload File Server

FastAPI application serving a directory over HTTP, with an optional
Server-Sent Events endpoint that tells connected browsers to reload when
watched files change.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Sequence

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from liveserve.live.change_bus import ChangeBus
from liveserve.live.session_manager import RETRY_INTERVAL_MS, LiveSessionManager
from liveserve.services.content import ContentKind, ContentResolver
from liveserve.utils.utils import ServerConfig, configure_logging, parse_args, print_startup_info
from liveserve.watchers.file_watcher import start_watchers

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

# Every method is routed so unsupported ones get a 400 instead of a 405
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

WATCHER_STOP_TIMEOUT = 5.0


def bad_request() -> PlainTextResponse:
    return PlainTextResponse("Bad Request", status_code=400)


def not_found() -> PlainTextResponse:
    return PlainTextResponse("File Not Found", status_code=404)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Start one watch task per configured root, stop them on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None during application lifecycle
    """
    config: ServerConfig = app.state.config
    watchers = []

    logger.info(f"Server running at port {config.port}")
    logger.info(f"Serving files from {config.directory}")

    if config.live:
        watchers = start_watchers(list(config.watch_paths), app.state.bus, config.command)
        for path in config.watch_paths:
            logger.info(f"watching for changes in {path}")
        logger.info(f"listening for live-reload clients at {config.live_url}")

    app.state.watchers = [watcher for watcher, _ in watchers]

    yield

    logger.info("Shutting down liveserve")
    app.state.live_sessions.close_all()

    if watchers:
        for watcher, _ in watchers:
            watcher.stop()

        tasks = [task for _, task in watchers]
        _, pending = await asyncio.wait(tasks, timeout=WATCHER_STOP_TIMEOUT)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def dispatch(request: Request) -> Response:
    """
    Single entry point for every request.

    GET on the live path opens a push stream, POST on it triggers a reload,
    any other GET is resolved against the serving directory.
    """
    state = request.app.state
    config: ServerConfig = state.config
    resolver: ContentResolver = state.resolver

    method = request.method.upper()
    url_path = request.url.path
    logger.debug(f"{method} {url_path}")

    is_live_endpoint = config.live and url_path == config.live_url

    if method == "POST" and is_live_endpoint:
        state.live_sessions.trigger_reload("http")
        return Response(status_code=204)

    if method != "GET":
        return bad_request()

    if is_live_endpoint:
        return state.live_sessions.open_stream()

    resolved = resolver.resolve(url_path)

    if resolved.kind is ContentKind.REDIRECT:
        location = resolved.location or url_path + "/"
        if request.url.query:
            location = f"{location}?{request.url.query}"
        return RedirectResponse(location)

    if resolved.kind is ContentKind.LISTING:
        return HTMLResponse(resolver.render_listing(resolved, url_path))

    if resolved.kind is ContentKind.NOT_FOUND or resolved.path is None:
        return not_found()

    if resolver.should_inject(resolved):
        try:
            body = await asyncio.to_thread(resolver.read_with_reload_script, resolved.path)
        except OSError as e:
            logger.warning(f"Cannot read {resolved.path}: {e}")
            return not_found()
        return Response(body, media_type=resolved.media_type)

    headers = {"Content-Encoding": resolved.encoding} if resolved.encoding else None
    return FileResponse(resolved.path, media_type=resolved.media_type, headers=headers)


def create_app(config: ServerConfig) -> FastAPI:
    """
    Build the application for one configuration.

    Every app owns its own Change Bus, so independent apps (tests) never
    see each other's reloads.
    """
    app = FastAPI(
        title="liveserve",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    bus = ChangeBus()

    app.state.config = config
    app.state.bus = bus
    app.state.live_sessions = LiveSessionManager(bus)
    app.state.watchers = []
    app.state.resolver = ContentResolver(
        config.directory,
        templates,
        live=config.live,
        live_url=config.live_url,
        reconnect_delay_ms=RETRY_INTERVAL_MS,
    )

    app.add_api_route("/{full_path:path}", dispatch, methods=ALL_METHODS, include_in_schema=False)

    return app


def main(argv: Sequence[str] | None = None) -> None:
    """
    Main entry point for the live-reload server.

    Environment Variables:
        PORT: Server port, takes precedence over -p (default: 8080)
        HOST: Bind address (default: 0.0.0.0)
        LOG_LEVEL: Logging level when --verbose is not given (default: info)
        LIVESERVE_LIVE: Enable live mode without watching (default: false)
    """
    load_dotenv()

    config = parse_args(argv)
    configure_logging(config.log_level)
    print_startup_info(config)

    uvicorn_config = uvicorn.Config(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=getattr(logging, config.log_level, logging.INFO),
        access_log=config.verbose,
    )
    server = uvicorn.Server(uvicorn_config)

    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


if __name__ == "__main__":
    main()
