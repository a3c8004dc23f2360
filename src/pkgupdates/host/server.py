"""
HTTP surface of the update host.

Endpoints:
- GET /versions          catalog, newest first, plus the latest entry
- GET /updates?version=  streamed tar.gz of one version (LATEST by default)
- GET /health            liveness plus the current catalog

Domain errors are raised as UpdateError subclasses and mapped to HTTP status
codes here. Only the error's public message is sent to the client; details
(which may include filesystem paths) go to the log.
"""

from __future__ import annotations

import contextlib
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from aiohttp import web

from pkgupdates.config import AppConfig, HostConfig, build_arg_parser, cli_overrides, load_config
from pkgupdates.errors import ArchiveStreamError, UpdateError
from pkgupdates.host.catalog import VersionStore
from pkgupdates.host.packager import ArchivePackager
from pkgupdates.host.paths import require_package_directory, resolve_package_path
from pkgupdates.logging import get_logger, setup_logging
from pkgupdates.models import (
    ARCHIVE_MEDIA_TYPE,
    CatalogErr,
    ErrorResponse,
    HealthResponse,
    VersionsResponse,
    archive_filename,
    is_latest,
    normalize_request,
)

logger = get_logger(__name__)

# HTTP status for each error code; unmapped codes become 500
ERROR_STATUS_MAP: dict[str, int] = {
    "catalog_read_error": 500,
    "version_not_found": 404,
    "path_traversal": 403,
    "archive_stream_error": 500,
    "failed_precondition": 500,
    "internal": 500,
}

DEFAULT_ERROR_STATUS = 500

NOT_FOUND_MESSAGE = (
    "Endpoint not found. Available endpoints: GET /versions, "
    "GET /updates?version=VERSION, GET /health"
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
}

STORE_KEY = web.AppKey("store", VersionStore)
PACKAGER_KEY = web.AppKey("packager", ArchivePackager)
CORS_KEY = web.AppKey("cors_enabled", bool)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_to_status(error: UpdateError) -> int:
    """Map an UpdateError to its HTTP status code."""
    return ERROR_STATUS_MAP.get(error.error_code, DEFAULT_ERROR_STATUS)


def error_response(message: str, status: int) -> web.Response:
    """Build a JSON error response ``{"error": message}``."""
    return web.json_response(ErrorResponse(error=message).model_dump(), status=status)


# =============================================================================
# Middlewares
# =============================================================================


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Convert domain errors, unknown routes and crashes into JSON responses."""
    try:
        return await handler(request)
    except UpdateError as e:
        status = error_to_status(e)
        logger.warning(
            "Request rejected",
            extra={
                "path": request.path,
                "status": status,
                "error_code": e.error_code,
                "details": e.details,
            },
        )
        return error_response(e.message, status)
    except web.HTTPNotFound:
        return error_response(NOT_FOUND_MESSAGE, 404)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unexpected error handling request", extra={"path": request.path})
        return error_response("Internal server error", 500)


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Add permissive CORS headers."""
    response = await handler(request)
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


# =============================================================================
# Handlers
# =============================================================================


async def versions_handler(request: web.Request) -> web.Response:
    """GET /versions."""
    catalog = request.app[STORE_KEY].snapshot()

    if isinstance(catalog, CatalogErr):
        return error_response(catalog.reason, 500)

    body = VersionsResponse(versions=catalog.versions, latest=catalog.latest)
    return web.json_response(body.model_dump())


async def health_handler(request: web.Request) -> web.Response:
    """GET /health. Always 200; the version list is empty if the catalog fails."""
    catalog = request.app[STORE_KEY].snapshot()
    versions = [] if isinstance(catalog, CatalogErr) else catalog.versions

    body = HealthResponse(
        status="OK",
        timestamp=datetime.now(UTC).isoformat(),
        versions=versions,
    )
    return web.json_response(body.model_dump())


async def updates_handler(request: web.Request) -> web.StreamResponse:
    """
    GET /updates?version=<id>|LATEST.

    The raw request is checked for containment before the catalog lookup,
    so traversal attempts are answered with 403 rather than 404. The
    resolved catalog entry is checked again, which catches version
    directories that are symlinks to somewhere else.
    """
    store = request.app[STORE_KEY]
    packager = request.app[PACKAGER_KEY]

    requested = normalize_request(request.query.get("version"))
    if not is_latest(requested):
        resolve_package_path(store.root, requested)

    version = store.resolve(requested)
    package_dir = require_package_directory(store.root, version)

    logger.info(
        "Serving package",
        extra={"requested": requested, "version": version, "remote": request.remote},
    )

    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": ARCHIVE_MEDIA_TYPE,
            "Content-Disposition": f'attachment; filename="{archive_filename(version)}"',
        },
    )
    if request.app[CORS_KEY]:
        response.headers.update(CORS_HEADERS)

    async with contextlib.aclosing(packager.stream_package(package_dir)) as chunks:
        # The first chunk is pulled before the headers are sent so that a
        # package vanishing between resolution and packaging still gets a
        # JSON error response.
        first = await anext(chunks, None)
        await response.prepare(request)

        if first is None:
            await response.write_eof()
            return response

        try:
            await response.write(first)
            async for chunk in chunks:
                await response.write(chunk)
        except ArchiveStreamError:
            # Headers and part of the body are out; an error body would be
            # read as archive bytes. Drop the connection instead so the
            # client sees a truncated transfer.
            if request.transport is not None:
                request.transport.close()
            return response
        except ConnectionResetError:
            logger.info(
                "Client disconnected during download",
                extra={"version": version, "remote": request.remote},
            )
            return response

    await response.write_eof()
    return response


# =============================================================================
# Application
# =============================================================================


def create_app(config: HostConfig | None = None) -> web.Application:
    """
    Create the aiohttp application for the update host.

    Args:
        config: Host settings. Defaults are used when omitted.

    Returns:
        Configured application, ready for ``web.run_app`` or a test server.
    """
    config = config or HostConfig()

    middlewares: list[Handler] = [error_middleware]
    if config.cors_enabled:
        middlewares.insert(0, cors_middleware)

    app = web.Application(middlewares=middlewares)
    app[STORE_KEY] = VersionStore(Path(config.packages_dir))
    app[PACKAGER_KEY] = ArchivePackager(
        chunk_size=config.chunk_size,
        max_pending_chunks=config.max_pending_chunks,
    )
    app[CORS_KEY] = config.cors_enabled

    app.router.add_get("/versions", versions_handler)
    app.router.add_get("/updates", updates_handler)
    app.router.add_get("/health", health_handler)

    return app


def run_host(config: AppConfig) -> None:
    """Serve the update host until interrupted."""
    app = create_app(config.host)
    root = Path(config.host.packages_dir).resolve()

    logger.info(
        "Update host starting",
        extra={
            "host": config.host.listen_host,
            "port": config.host.port,
            "packages_dir": str(root),
        },
    )
    web.run_app(
        app,
        host=config.host.listen_host,
        port=config.host.port,
        print=None,
        access_log=logger.getChild("access"),
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``pkg-updates-host``."""
    parser = build_arg_parser("Serve versioned packages as tar.gz archives")
    parser.add_argument("--port", "-p", type=int, help="Listen port")
    parser.add_argument("--packages-dir", type=str, help="Directory of version folders")
    parsed = parser.parse_args(argv)

    overrides = cli_overrides(parsed)
    host_overrides: dict[str, Any] = {}
    if parsed.port is not None:
        host_overrides["port"] = parsed.port
    if parsed.packages_dir:
        host_overrides["packages_dir"] = parsed.packages_dir
    if host_overrides:
        overrides["host"] = host_overrides

    config = load_config(config_path=parsed.config, cli_config=overrides)
    setup_logging(config.logging)
    run_host(config)


if __name__ == "__main__":
    main()
