import asyncio
import datetime
import logging
import time
from typing import Any, Dict, Optional

from aiohttp import web

from . import config
from .exceptions import StoreUnavailable, ValidationError
from .ingestion import REQUIRED_FIELDS
from .tasks import cleanup_background_tasks, default_settings, start_background_tasks

log = logging.getLogger("NazarGateway.Server")

ENDPOINTS = {
    'POST /api/messages/publish': 'Publish a file change message',
    'GET /api/dashboard/analytics': 'Get analytics data (optional ?clientMacAddress filter)',
    'GET /api/dashboard/health': 'Health check endpoint',
    'GET /api/dashboard/clients': 'Get list of unique clients/hosts',
    'GET /api/dashboard/clients/{clientMacAddress}': 'Get analytics for specific client',
}


def _utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _error_response(status: int, error: str, **extra) -> web.Response:
    body = {"error": error, "timestamp": _utc_now_iso()}
    body.update(extra)
    return web.json_response(body, status=status)


@web.middleware
async def access_log_middleware(request, handler):
    """Log method, path, status and duration of every request."""
    started = time.monotonic()
    status = 500
    try:
        response = await handler(request)
        status = response.status
        return response
    except web.HTTPException as e:
        status = e.status
        raise
    finally:
        elapsed_ms = (time.monotonic() - started) * 1000
        log.info(f"{request.method} {request.path} -> {status} ({elapsed_ms:.1f}ms)")


@web.middleware
async def error_middleware(request, handler):
    """Map gateway exceptions and unknown routes to JSON error bodies."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _error_response(404, "Not found", message=f"Route {request.method} {request.path} not found")
    except web.HTTPException:
        raise
    except ValidationError as e:
        return _error_response(400, e.message, fields=e.fields, required=REQUIRED_FIELDS)
    except StoreUnavailable as e:
        return _error_response(503, "Event store unavailable", details=str(e))
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log.error(f"Unhandled error for {request.method} {request.path}:", exc_info=True)
        return _error_response(500, "Internal server error", details=str(e))


async def handle_index(request):
    return web.json_response({
        "name": "Nazar Gateway",
        "version": config.SERVICE_VERSION,
        "description": "Ingests file change events and serves aggregate analytics",
        "endpoints": ENDPOINTS,
    })


async def handle_publish(request):
    try:
        payload = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        raise ValidationError(['body'], "Message body must be valid JSON")

    record = await request.app["gateway"].ingest(payload)
    return web.json_response({
        "success": True,
        "message": "Message published successfully",
        "messageId": f"{record.path}-{record.timestamp}",
    })


async def handle_analytics(request):
    client_id = request.query.get("clientMacAddress") or None
    report = await request.app["engine"].compute_dashboard(client_id)
    return web.json_response(report.to_dict())


async def handle_health(request):
    app = request.app
    loop = asyncio.get_running_loop()
    try:
        store_details = await loop.run_in_executor(app["db_executor"], app["store"].ping)
        store_health: Dict[str, Any] = {"status": "healthy", "details": store_details}
    except StoreUnavailable as e:
        store_health = {"status": "unhealthy", "details": str(e)}

    healthy = store_health["status"] == "healthy"
    return web.json_response({
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": _utc_now_iso(),
        "uptime": round(time.time() - app["start_time"], 3),
        "service": config.SERVICE_NAME,
        "database": store_health,
        "broker": app["broker"].status(),
    }, status=200 if healthy else 503)


async def handle_clients(request):
    clients = await request.app["engine"].get_clients()
    return web.json_response({"clients": [c.to_dict() for c in clients], "count": len(clients)})


async def handle_client_analytics(request):
    client_id = request.match_info["clientMacAddress"]
    summary = await request.app["engine"].get_client_analytics(client_id)
    if summary is None:
        return _error_response(404, "Client not found", clientMacAddress=client_id)
    return web.json_response(summary.to_dict())


async def handle_reset(request):
    removed = await request.app["engine"].reset()
    return web.json_response({"success": True, "removed": removed})


def create_app(settings: Optional[Dict[str, Any]] = None) -> web.Application:
    app = web.Application(middlewares=[access_log_middleware, error_middleware],
                          client_max_size=config.MAX_REQUEST_BYTES)
    app["settings"] = settings or default_settings()
    app["start_time"] = time.time()

    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(cleanup_background_tasks)

    app.router.add_get("/", handle_index)
    app.router.add_post("/api/messages/publish", handle_publish)
    app.router.add_get("/api/dashboard/analytics", handle_analytics)
    app.router.add_get("/api/dashboard/health", handle_health)
    app.router.add_get("/api/dashboard/clients", handle_clients)
    app.router.add_get("/api/dashboard/clients/{clientMacAddress}", handle_client_analytics)
    if app["settings"].get("enable_reset"):
        app.router.add_post("/api/dashboard/reset", handle_reset)
        log.warning("Reset endpoint enabled: POST /api/dashboard/reset clears all events.")
    return app


def run_server(settings: Dict[str, Any]):
    app = create_app(settings)
    host = settings.get("host", config.SERVER_HOST)
    port = settings.get("port", config.SERVER_PORT)
    log.info(f"Server starting on http://{host}:{port}")
    log.info(f"Dashboard available at http://{host}:{port}/api/dashboard/analytics")
    web.run_app(app, host=host, port=port, print=None)
