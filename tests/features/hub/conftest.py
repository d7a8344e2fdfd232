"""BDD step definitions for connection hub features."""

import json

import pytest
from pytest_bdd import given, parsers, then, when
from tests.features.hub.steps_helpers import (
    HubScenarioContext,
    exchange,
    reading_message,
    run_async,
    use_failing_storage,
)
from tests.fakes import FakeConnection

from edgeinsights.adapters.logging_context import clear_log_context
from edgeinsights.adapters.storage import InMemoryReadingStorage
from edgeinsights.services.hub import ACK_MESSAGE, NACK_MESSAGE


@pytest.fixture
def ctx() -> HubScenarioContext:
    """Fresh scenario context for each test."""
    clear_log_context()
    return HubScenarioContext()


# === Given ===
@given("in-memory reading storage")
def step_storage(ctx: HubScenarioContext) -> None:
    ctx.storage = InMemoryReadingStorage()


@given("the storage is failing")
def step_failing_storage(ctx: HubScenarioContext) -> None:
    use_failing_storage(ctx)


@given(parsers.parse('a connection "{name}"'))
def step_connection(ctx: HubScenarioContext, name: str) -> None:
    ctx.connections[name] = FakeConnection(name)


@given(parsers.parse('a broken connection "{name}"'))
def step_broken_connection(ctx: HubScenarioContext, name: str) -> None:
    ctx.connections[name] = FakeConnection(name, fail_sends=True)


# === When ===
@when(parsers.parse('"{name}" disconnects'))
def step_disconnects(ctx: HubScenarioContext, name: str) -> None:
    ctx.disconnected.append(name)


@when(parsers.parse('"{name}" sends a valid reading'))
def step_send_valid(ctx: HubScenarioContext, name: str) -> None:
    run_async(exchange(ctx, name, [reading_message()]))


@when(parsers.parse('"{name}" sends {count:d} valid readings'))
def step_send_many(ctx: HubScenarioContext, name: str, count: int) -> None:
    run_async(exchange(ctx, name, [reading_message(i) for i in range(count)]))


@when(parsers.parse('"{name}" sends the raw message "{raw}"'))
def step_send_raw(ctx: HubScenarioContext, name: str, raw: str) -> None:
    run_async(exchange(ctx, name, [raw]))


@when(parsers.parse('"{name}" sends a reading without "{field}"'))
def step_send_without(ctx: HubScenarioContext, name: str, field: str) -> None:
    run_async(exchange(ctx, name, [reading_message(**{field: None})]))


@when(parsers.parse('"{name}" sends a reading with log_type "{log_type}"'))
def step_send_severity(ctx: HubScenarioContext, name: str, log_type: str) -> None:
    run_async(exchange(ctx, name, [reading_message(log_type=log_type)]))


# === Then ===
@then(parsers.parse('"{name}" receives a positive acknowledgment'))
def step_positive_ack(ctx: HubScenarioContext, name: str) -> None:
    [reply] = ctx.connections[name].acks()
    assert reply["success"] is True
    assert reply["message"] == ACK_MESSAGE
    assert "error" not in reply


@then(parsers.parse('"{name}" receives {count:d} positive acknowledgments'))
def step_positive_acks(ctx: HubScenarioContext, name: str, count: int) -> None:
    replies = ctx.connections[name].acks()
    assert len(replies) == count
    assert all(reply["success"] for reply in replies)


@then("the acknowledgments echo the readings in the order they were sent")
def step_acks_in_order(ctx: HubScenarioContext) -> None:
    [sender] = [c for c in ctx.connections.values() if c.acks()]
    echoed = [reply["data"]["message"] for reply in sender.acks()]
    assert echoed == [json.loads(m)["message"] for m in ctx.sent_messages]


@then(
    parsers.parse(
        '"{name}" receives a negative acknowledgment with error "{error}"'
    )
)
def step_negative_ack(ctx: HubScenarioContext, name: str, error: str) -> None:
    [reply] = ctx.connections[name].acks()
    assert reply == {"success": False, "message": NACK_MESSAGE, "error": error}


@then(parsers.parse('"{name}" receives a negative acknowledgment mentioning "{text}"'))
def step_negative_ack_mentions(ctx: HubScenarioContext, name: str, text: str) -> None:
    [reply] = ctx.connections[name].acks()
    assert reply["success"] is False
    assert text in reply["error"]


@then(parsers.parse('"{name}" receives no acknowledgments'))
def step_no_acks(ctx: HubScenarioContext, name: str) -> None:
    assert ctx.connections[name].acks() == []


@then(parsers.parse('"{name}" receives {count:d} log entry'))
@then(parsers.parse('"{name}" receives {count:d} log entries'))
def step_log_entries(ctx: HubScenarioContext, name: str, count: int) -> None:
    events = ctx.connections[name].events("log_entry")
    assert len(events) == count
    for event in events:
        assert event["data"]["device_id"] == "temp_sensor_01"


@then(parsers.parse('"{name}" has been closed'))
def step_closed(ctx: HubScenarioContext, name: str) -> None:
    assert ctx.connections[name].closed


@then(parsers.parse("{count:d} connections remain open"))
def step_remaining(ctx: HubScenarioContext, count: int) -> None:
    assert ctx.open_connections == count


@then(parsers.parse("the storage holds {count:d} reading"))
@then(parsers.parse("the storage holds {count:d} readings"))
def step_storage_count(ctx: HubScenarioContext, count: int) -> None:
    assert run_async(ctx.storage.count()) == count
