import argparse
import asyncio
import logging
import os
import sys

# Allows `python nazar_gateway` as well as `python -m nazar_gateway` by putting
# the project root on the path before the absolute imports below.
if __package__ is None or __package__ == '':
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from nazar_gateway import server, tasks
from nazar_gateway.exceptions import StoreUnavailable, ValidationError
from nazar_gateway.sample_data import generate_sample_events

# --- Centralized Logging Configuration ---
log = logging.getLogger("NazarGateway")


async def seed_store(settings: dict, count: int, days: int) -> int:
    """Push generated sample events through the regular ingestion path."""
    services = tasks.create_services(settings, None)
    gateway = services["gateway"]
    await services["broker"].start()
    inserted = 0
    try:
        for payload in generate_sample_events(count, days):
            try:
                await gateway.ingest(payload)
                inserted += 1
            except ValidationError as e:
                log.warning(f"Skipping invalid sample event: {e}")
        await gateway.drain()
    finally:
        await services["broker"].close()
    return inserted


def reset_store(settings: dict) -> int:
    store = tasks.create_event_store(settings)
    return store.clear()


def main():
    parser = argparse.ArgumentParser(
        description="Nazar Gateway: file change event ingestion and analytics service.",
        epilog="""
Examples:
  python -m nazar_gateway
  python -m nazar_gateway --port 8080 --broker-url http://localhost:8082/topics/file-changes
  python -m nazar_gateway --seed 500 --seed-days 7
  python -m nazar_gateway --reset
""",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--host', help="Interface to bind the HTTP server to.")
    parser.add_argument('--port', type=int, help="Port for the HTTP server.")
    parser.add_argument('--db-path', help="SQLite database file for the event store.")
    parser.add_argument('--store', choices=['sqlite', 'memory'], help="Event store backend.")
    parser.add_argument('--broker-url', help="HTTP endpoint receiving published change events.")
    parser.add_argument('--enable-reset', action='store_true',
                        help="Expose POST /api/dashboard/reset (clears all events).")

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument('--seed', type=int, metavar='N',
                            help="Insert N random sample events and exit.")
    mode_group.add_argument('--reset', action='store_true', help="Delete all stored events and exit.")
    parser.add_argument('--seed-days', type=int, default=7,
                        help="Spread seeded events over this many past days (default: 7).")
    parser.add_argument('--debug', action='store_true', help="Enable debug logging.")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')

    settings = tasks.default_settings()
    overrides = {
        "host": args.host,
        "port": args.port,
        "db_path": args.db_path,
        "store_backend": args.store,
        "broker_url": args.broker_url,
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})
    if args.enable_reset:
        settings["enable_reset"] = True

    try:
        if args.seed is not None:
            if settings["store_backend"] == "memory":
                log.critical("Seeding the in-memory store is pointless: data would be discarded on exit.")
                sys.exit(1)
            inserted = asyncio.run(seed_store(settings, args.seed, args.seed_days))
            log.info(f"Inserted {inserted} sample event(s) into '{settings['db_path']}'.")
            return
        if args.reset:
            removed = reset_store(settings)
            log.info(f"Reset complete: {removed} event(s) removed.")
            return
    except StoreUnavailable as e:
        log.critical(f"Event store unavailable: {e}")
        sys.exit(1)

    server.run_server(settings)


if __name__ == "__main__":
    main()
