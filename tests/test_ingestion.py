"""
Tests for payload validation and the ingestion gateway.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import HOUR_MS, NOW
from nazar_gateway.classifier import classify
from nazar_gateway.database import SqliteEventStore
from nazar_gateway.event_store import EventFilter
from nazar_gateway.exceptions import StoreUnavailable, ValidationError
from nazar_gateway.ingestion import CHANGE_KIND_ALIASES, IngestionGateway, parse_raw_event


def _clock():
    return NOW


def test_parse_minimal_payload():
    raw = parse_raw_event({"filePath": "/a/b.txt", "changeType": "add",
                           "clientMacAddress": " AA:BB "}, _clock)

    assert raw.path == "/a/b.txt"
    assert raw.change_kind == "add"
    assert raw.client_id == "AA:BB"
    assert raw.timestamp == NOW
    assert raw.size is None


def test_parse_full_payload_keeps_declared_metadata(sample_payload):
    raw = parse_raw_event(sample_payload, _clock)

    assert raw.timestamp == NOW - HOUR_MS
    assert raw.size == 2048
    assert raw.extension == ".PDF"
    assert raw.file_type == "document"
    assert raw.is_directory is False


def test_zero_timestamp_is_replaced_with_now(sample_payload):
    sample_payload["timestamp"] = 0
    assert parse_raw_event(sample_payload, _clock).timestamp == NOW


@pytest.mark.parametrize("alias,kind", sorted(CHANGE_KIND_ALIASES.items()))
def test_watcher_aliases_are_mapped(sample_payload, alias, kind):
    sample_payload["changeType"] = alias
    assert parse_raw_event(sample_payload, _clock).change_kind == kind


def test_missing_required_fields_are_all_reported():
    with pytest.raises(ValidationError) as exc_info:
        parse_raw_event({"size": 10}, _clock)

    assert exc_info.value.fields == ["filePath", "changeType", "clientMacAddress"]
    assert exc_info.value.message == "Invalid message format"


@pytest.mark.parametrize("field,value", [
    ("filePath", ""),
    ("filePath", 42),
    ("changeType", "rename"),
    ("changeType", None),
    ("clientMacAddress", "   "),
    ("timestamp", "yesterday"),
    ("timestamp", -1),
    ("timestamp", True),
    ("timestamp", float("nan")),
    ("timestamp", float("inf")),
    ("timestamp", 10 ** 17),
    ("timestamp", 253402300800000),
    ("size", "big"),
    ("size", float("nan")),
    ("size", float("inf")),
    ("size", 2 ** 63),
    ("isDirectory", "no"),
    ("fileType", "spreadsheet"),
    ("category", "misc"),
    ("fileName", 3),
    ("fileExtension", ["pdf"]),
    ("directory", {}),
])
def test_invalid_field_is_reported(sample_payload, field, value):
    sample_payload[field] = value

    with pytest.raises(ValidationError) as exc_info:
        parse_raw_event(sample_payload, _clock)
    assert exc_info.value.fields == [field]


@pytest.mark.parametrize("body", [[], "text", None, 7])
def test_non_object_body_is_rejected(body):
    with pytest.raises(ValidationError) as exc_info:
        parse_raw_event(body, _clock)
    assert exc_info.value.fields == ["body"]


@pytest.mark.asyncio
async def test_ingest_appends_classified_record(memory_store, sample_payload):
    gateway = IngestionGateway(memory_store, clock=_clock)

    record = await gateway.ingest(sample_payload)

    assert record.extension == ".pdf"
    assert record.file_type == "document"
    assert memory_store.count() == 1
    assert memory_store.count(EventFilter(client_id="AA:BB:CC:DD:EE:FF")) == 1
    assert gateway.accepted == 1
    assert gateway.rejected == 0


@pytest.mark.asyncio
async def test_ingest_rejects_without_touching_store(memory_store):
    gateway = IngestionGateway(memory_store, clock=_clock)

    with pytest.raises(ValidationError):
        await gateway.ingest({"filePath": "/a.txt"})

    assert memory_store.count() == 0
    assert gateway.rejected == 1


@pytest.mark.asyncio
async def test_ingest_store_failure_propagates(sample_payload):
    gateway = IngestionGateway(SqliteEventStore("/nonexistent-dir/nested/events.db"), clock=_clock)

    with pytest.raises(StoreUnavailable):
        await gateway.ingest(sample_payload)
    assert gateway.accepted == 0


@pytest.mark.asyncio
async def test_publish_scheduled_for_every_accepted_event(memory_store, sample_payload):
    publisher = Mock(enabled=True)
    publisher.publish = AsyncMock(return_value=True)
    gateway = IngestionGateway(memory_store, publisher, clock=_clock)

    record = await gateway.ingest(sample_payload)
    await gateway.drain()

    publisher.publish.assert_awaited_once_with(record)
    assert gateway.pending_publishes == 0


@pytest.mark.asyncio
async def test_broker_failure_does_not_fail_ingestion(memory_store, sample_payload):
    publisher = Mock(enabled=True)
    publisher.publish = AsyncMock(side_effect=RuntimeError("broker down"))
    gateway = IngestionGateway(memory_store, publisher, clock=_clock)

    await gateway.ingest(sample_payload)
    await gateway.drain()

    assert memory_store.count() == 1
    assert gateway.accepted == 1


@pytest.mark.asyncio
async def test_publish_happens_even_when_store_fails(sample_payload):
    publisher = Mock(enabled=True)
    publisher.publish = AsyncMock(return_value=True)
    gateway = IngestionGateway(SqliteEventStore("/nonexistent-dir/nested/events.db"), publisher,
                               clock=_clock)

    with pytest.raises(StoreUnavailable):
        await gateway.ingest(sample_payload)
    await gateway.drain()

    publisher.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_disabled_publisher_is_skipped(memory_store, sample_payload):
    publisher = Mock(enabled=False)
    publisher.publish = AsyncMock()
    gateway = IngestionGateway(memory_store, publisher, clock=_clock)

    await gateway.ingest(sample_payload)
    await asyncio.sleep(0)

    publisher.publish.assert_not_called()
    assert gateway.pending_publishes == 0


def test_latest_representable_timestamp_is_accepted(sample_payload):
    sample_payload["timestamp"] = 253402300799999  # 9999-12-31T23:59:59.999Z
    assert parse_raw_event(sample_payload, _clock).timestamp == 253402300799999


def test_fractional_values_are_truncated(sample_payload):
    sample_payload["timestamp"] = NOW + 0.75
    sample_payload["size"] = 10.5

    record = classify(parse_raw_event(sample_payload, _clock))
    assert record.timestamp == NOW
    assert record.size == 10
