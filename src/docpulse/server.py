"""
HTTP surface of the ingestion endpoint.

    GET  /selectors?domain=<domain>   [x-api-key]  -> descriptor or null
    POST /heartbeats                  x-api-key    -> {"document_id": ...}
    GET  /health
"""

import asyncio
import json
from contextlib import suppress
from datetime import datetime
from typing import Any, Optional

from aiohttp import web

from .config import Config
from .errors import DocPulseError, ValidationError
from .ingestion import IngestionService
from .rollup import RollupAggregator
from .storage import HeartbeatStore

API_KEY_HEADER = "x-api-key"

SERVICE_KEY = web.AppKey("service", IngestionService)
AGGREGATOR_KEY = web.AppKey("aggregator", RollupAggregator)
ROLLUP_INTERVAL_KEY = web.AppKey("rollup_interval", float)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "content-type, x-api-key",
}


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        text=json.dumps(data), status=status, content_type="application/json"
    )


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map docpulse errors to JSON bodies; hide anything unexpected."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except DocPulseError as e:
        return json_response({"error": str(e)}, status=e.status)
    except Exception as e:
        now = datetime.now().strftime("%H:%M:%S")
        print(f"[{now}] [FAIL] Unhandled error on {request.method} {request.path}: {e!r}")
        return json_response({"error": "internal error"}, status=500)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


async def _in_executor(func, *args):
    # The store is synchronous; keep it off the event loop
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


async def handle_get_selector(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    domain = request.query.get("domain")
    api_key = request.headers.get(API_KEY_HEADER)

    descriptor = await _in_executor(service.resolve_selector, domain, api_key)
    return json_response(descriptor.to_dict() if descriptor else None)


async def handle_post_heartbeat(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    api_key = request.headers.get(API_KEY_HEADER)

    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("request body must be valid JSON") from e

    result = await _in_executor(service.record_heartbeat, api_key, body)
    return json_response(result.to_dict())


async def handle_preflight(request: web.Request) -> web.Response:
    return web.Response(status=204)


async def handle_health(request: web.Request) -> web.Response:
    return json_response({"status": "ok"})


async def _rollup_loop(aggregator: RollupAggregator, interval: float) -> None:
    while True:
        try:
            await _in_executor(aggregator.run)
        except Exception as e:
            # A failed pass must not end the schedule
            aggregator.logger.log_failure(e)
        await asyncio.sleep(interval)


async def rollup_context(app: web.Application):
    """Run the rollup aggregator periodically for the app's lifetime."""
    aggregator = app.get(AGGREGATOR_KEY)
    task: Optional[asyncio.Task] = None
    if aggregator is not None:
        task = asyncio.create_task(_rollup_loop(aggregator, app[ROLLUP_INTERVAL_KEY]))
    yield
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


def create_app(
    service: IngestionService,
    aggregator: Optional[RollupAggregator] = None,
    rollup_interval: float = 3600,
) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[SERVICE_KEY] = service
    if aggregator is not None:
        app[AGGREGATOR_KEY] = aggregator
    app[ROLLUP_INTERVAL_KEY] = float(rollup_interval)

    app.router.add_get("/selectors", handle_get_selector)
    app.router.add_post("/heartbeats", handle_post_heartbeat)
    app.router.add_route("OPTIONS", "/selectors", handle_preflight)
    app.router.add_route("OPTIONS", "/heartbeats", handle_preflight)
    app.router.add_get("/health", handle_health)

    app.cleanup_ctx.append(rollup_context)
    return app


def build_app(config: Config) -> web.Application:
    """Wire store, service and aggregator from configuration."""
    verbose = config.verbose_logging
    store = HeartbeatStore(config.database_path)
    service = IngestionService(
        store, min_interval=config.get("server_min_interval", 60), verbose=verbose
    )
    aggregator = RollupAggregator(
        store,
        retention_days=config.retention_days,
        delete_raw=config.get("rollup_delete_raw", True),
        verbose=verbose,
    )
    return create_app(service, aggregator, config.get("rollup_interval", 3600))


def serve(config: Config, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the ingestion server until interrupted."""
    host = host or config.get("host", "127.0.0.1")
    port = port or config.get("port", 8787)
    print(f"Starting docpulse ingestion server on http://{host}:{port}")
    print(f"Database: {config.database_path}")
    web.run_app(build_app(config), host=host, port=port, print=None)
