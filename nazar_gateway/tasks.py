import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from . import config
from .analytics_engine import AnalyticsEngine
from .broker import BrokerPublisher
from .database import SqliteEventStore, init_db
from .event_store import EventStore, InMemoryEventStore
from .ingestion import IngestionGateway

log = logging.getLogger("NazarGateway.Tasks")


def default_settings() -> Dict[str, Any]:
    """Runtime settings taken from config; command-line flags override individual keys."""
    return {
        "host": config.SERVER_HOST,
        "port": config.SERVER_PORT,
        "db_path": config.DATABASE_FILE,
        "store_backend": config.STORE_BACKEND,
        "broker_url": config.BROKER_URL,
        "broker_topic": config.BROKER_TOPIC,
        "broker_client_id": config.BROKER_CLIENT_ID,
        "enable_reset": config.ENABLE_RESET_ENDPOINT,
        "heartbeat_interval": config.HEARTBEAT_INTERVAL_SECONDS,
    }


def create_event_store(settings: Dict[str, Any]) -> EventStore:
    backend = settings.get("store_backend", "sqlite")
    if backend == "memory":
        log.warning("Using in-memory event store. Events are lost on restart.")
        return InMemoryEventStore()
    if backend != "sqlite":
        raise ValueError(f"Unknown store backend: {backend!r}")
    init_db(settings["db_path"])
    return SqliteEventStore(settings["db_path"])


def create_services(settings: Dict[str, Any], executor) -> Dict[str, Any]:
    """Build store, broker, engine and gateway. Blocking (schema check for SQLite)."""
    store = create_event_store(settings)
    broker = BrokerPublisher(
        settings.get("broker_url", ""),
        settings.get("broker_topic", config.BROKER_TOPIC),
        settings.get("broker_client_id", config.BROKER_CLIENT_ID),
        timeout=config.BROKER_TIMEOUT_SECONDS,
    )
    return {
        "store": store,
        "broker": broker,
        "engine": AnalyticsEngine(store, executor),
        "gateway": IngestionGateway(store, broker, executor),
    }


async def heartbeat_task(app):
    log.info("Heartbeat task started.")
    interval = app["settings"].get("heartbeat_interval", config.HEARTBEAT_INTERVAL_SECONDS)
    while True:
        await asyncio.sleep(interval)
        gateway = app["gateway"]
        broker_status = app["broker"].status()
        log.info(
            f"[HEARTBEAT] Accepted: {gateway.accepted}, Rejected: {gateway.rejected}, "
            f"Pending publishes: {gateway.pending_publishes}, Broker: {broker_status['status']}"
        )


async def start_background_tasks(app):
    log.info("Starting background tasks...")
    settings = app["settings"]
    app["db_executor"] = ThreadPoolExecutor(max_workers=config.DB_THREAD_POOL_SIZE,
                                            thread_name_prefix="nazar-db")

    loop = asyncio.get_running_loop()
    services = await loop.run_in_executor(app["db_executor"], create_services, settings,
                                          app["db_executor"])
    for key, service in services.items():
        app[key] = service

    await app["broker"].start()
    app["tasks"] = [asyncio.create_task(heartbeat_task(app))]
    log.info(f"Gateway ready (store backend: {settings.get('store_backend', 'sqlite')}).")


async def cleanup_background_tasks(app):
    log.warning("Application cleanup started.")

    for task in app.get("tasks", []):
        task.cancel()
    if "tasks" in app:
        await asyncio.gather(*app["tasks"], return_exceptions=True)
    log.info("Asyncio background tasks cancelled.")

    if "gateway" in app:
        await app["gateway"].drain()
    if "broker" in app:
        await app["broker"].close()

    if app.get("db_executor"):
        app["db_executor"].shutdown(wait=True)
        log.info("db_executor shut down.")
