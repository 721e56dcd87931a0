from __future__ import annotations

import asyncio

import pytest

from gateway.app.orchestrator import ConnectionOrchestrator
from gateway.core.context import Context
from gateway.core.errors import (
    BoardConnectError,
    BoardNotConnectedError,
    RequestValidationError,
    ScriptExecutionError,
    TransportConfigError,
)
from gateway.model.board import BoardRequest, BoardState
from gateway.tests.fakes import FakeDrivers

INTERVAL = "set_interval(lambda: None, 1000)"


def _orchestrator(drivers: FakeDrivers, **kwargs) -> ConnectionOrchestrator:
    ctx = Context.load(drivers=drivers.registry)
    kwargs.setdefault("handshake_timeout_s", 1.0)
    return ConnectionOrchestrator(ctx.transport_factory, **kwargs)


def _serial(board_id="b1", code=INTERVAL, **extra) -> BoardRequest:
    payload = {
        "_id": board_id,
        "boardType": 1,
        "boardConnect": 1,
        "boardInfo": {"port": "COM3"},
        "project": "p1",
        "boardCode": code,
    }
    payload.update(extra)
    return BoardRequest.from_payload(payload)


def _summary(orch: ConnectionOrchestrator, drivers: FakeDrivers, board_id="b1") -> tuple:
    link = orch.connections.get(board_id)
    return (
        orch.board_status(board_id),
        orch.ledger.active_count(board_id),
        orch.connections.has(board_id),
        link is drivers.last,
        sum(1 for t in drivers.created if t.is_open),
    )


@pytest.mark.asyncio
async def test_connect_twice_equals_connect_close_connect():
    d1 = FakeDrivers()
    o1 = _orchestrator(d1)
    await o1.connect(_serial())
    await o1.connect(_serial())

    d2 = FakeDrivers()
    o2 = _orchestrator(d2)
    await o2.connect(_serial())
    await o2.close("b1")
    await o2.connect(_serial())

    assert _summary(o1, d1) == _summary(o2, d2)
    assert _summary(o1, d1) == (True, {"timeouts": 0, "intervals": 1, "tasks": 0}, True, True, 1)
    assert d1.created[0].close_calls == 1

    await o1.shutdown()
    await o2.shutdown()


@pytest.mark.asyncio
async def test_close_unknown_board_is_harmless():
    orch = _orchestrator(FakeDrivers())
    assert await orch.close("never-opened") is False
    assert orch.board_status("never-opened") is False


@pytest.mark.asyncio
async def test_open_failure_names_medium_and_address():
    drivers = FakeDrivers(fail_open=True)
    orch = _orchestrator(drivers)

    with pytest.raises(BoardConnectError) as ei:
        await orch.connect(_serial())

    assert ei.value.details["medium"] == "fake"
    assert ei.value.details["address"] == "COM3"
    conn = orch.board("b1")
    assert conn.state is BoardState.IDLE
    assert conn.last_error
    assert orch.connections.has("b1") is False


@pytest.mark.asyncio
async def test_handshake_timeout_releases_the_link():
    drivers = FakeDrivers(answer_handshake=False)
    orch = _orchestrator(drivers, handshake_timeout_s=0.05)

    with pytest.raises(BoardConnectError):
        await orch.connect(_serial())

    assert orch.board_status("b1") is False
    assert drivers.last.is_open is False
    assert orch.ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_unsolicited_drop_marks_board_idle_and_revokes_timers():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    await orch.connect(_serial())
    assert orch.ledger.has_entry("b1") is True

    drivers.last.drop("cable pulled")

    assert orch.board_status("b1") is False
    assert orch.ledger.has_entry("b1") is False
    assert orch.connections.has("b1") is False
    assert orch.board("b1").last_error == "cable pulled"


@pytest.mark.asyncio
async def test_script_error_keeps_board_ready():
    orch = _orchestrator(FakeDrivers())

    with pytest.raises(ScriptExecutionError):
        await orch.connect(_serial(code="set_interval(lambda: None, 1000)\nx = 1 / 0"))

    assert orch.board_status("b1") is True
    assert "ZeroDivisionError" in orch.board("b1").last_error
    assert orch.ledger.has_entry("b1") is False

    run = await orch.update_script("b1", "p1", INTERVAL)
    assert run.timers["intervals"] == 1
    await orch.shutdown()


@pytest.mark.asyncio
async def test_update_script_requires_connected_board():
    orch = _orchestrator(FakeDrivers())
    with pytest.raises(BoardNotConnectedError):
        await orch.update_script("b1", "p1", "x = 1")


@pytest.mark.asyncio
async def test_update_script_keeps_transport_and_replaces_timers():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    await orch.connect(_serial())
    link = orch.connections.get("b1")

    await orch.update_script("b1", "p1", INTERVAL + "\n" + INTERVAL)

    assert orch.connections.get("b1") is link
    assert len(drivers.created) == 1
    assert orch.ledger.active_count("b1")["intervals"] == 2
    await orch.shutdown()


@pytest.mark.asyncio
async def test_mqtt_redeploy_clears_listeners():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    req = BoardRequest.from_payload(
        {
            "_id": "m1",
            "boardType": 5,
            "boardInfo": {"brokerUrl": "broker.local"},
            "project": "p1",
            "boardCode": 'device.subscribe("plant/temp", "temp")',
        }
    )
    await orch.connect(req)
    await asyncio.sleep(0.01)
    mqtt = drivers.last
    assert mqtt.topics == ["plant/temp"]

    await orch.update_script("m1", "p1", "x = 1")

    assert mqtt.clear_calls == 1
    assert mqtt.topics == []
    await orch.shutdown()


@pytest.mark.asyncio
async def test_mqtt_redeploy_stops_old_timers_before_clearing_listeners():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    req = BoardRequest.from_payload(
        {
            "_id": "m1",
            "boardType": 5,
            "boardInfo": {"brokerUrl": "broker.local"},
            "project": "p1",
            "boardCode": 'set_interval(lambda: device.subscribe("old/topic", "stale"), 10)',
        }
    )
    await orch.connect(req)
    await asyncio.sleep(0.03)
    mqtt = drivers.last
    assert mqtt.topics == ["old/topic"]
    mqtt.clear_delay_s = 0.05

    await orch.update_script("m1", "p1", "x = 1")
    await asyncio.sleep(0.03)

    assert mqtt.topics == []
    assert orch.ledger.has_entry("m1") is False
    await orch.shutdown()


@pytest.mark.asyncio
async def test_http_board_script_writes_through_device():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    req = BoardRequest.from_payload(
        {
            "_id": "h1",
            "boardType": 4,
            "boardConnect": 2,
            "boardInfo": {"ip": "10.0.0.9", "serverAPIKey": "k"},
            "project": "p1",
            "boardCode": 'device.setVariable("relay", 1)',
        }
    )
    conn = await orch.connect(req)
    await asyncio.sleep(0.01)

    assert conn.driver == "http"
    assert conn.address == "10.0.0.9"
    assert drivers.last.sets == [("relay", 1)]
    assert orch.variables.read("p1", "relay") == 1
    await orch.shutdown()


@pytest.mark.asyncio
async def test_script_only_board_runs_without_transport():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    req = BoardRequest.from_payload(
        {"_id": "f1", "boardType": 6, "project": "p9", "boardCode": "varG.started = True"}
    )

    conn = await orch.connect(req)

    assert conn.ready is True
    assert drivers.created == []
    assert orch.variables.read("p9", "started") is True
    assert await orch.close("f1") is True


@pytest.mark.asyncio
async def test_missing_required_board_info_is_config_error():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    req = BoardRequest.from_payload({"_id": "h1", "boardType": 4, "boardConnect": 2, "boardInfo": {}})

    with pytest.raises(TransportConfigError):
        await orch.connect(req)

    assert drivers.created == []
    assert orch.board("h1").state is BoardState.IDLE


@pytest.mark.asyncio
async def test_requests_for_one_board_run_in_arrival_order():
    orch = _orchestrator(FakeDrivers())
    codes = [f'varG.seq = (varG.seq or []) + ["{tag}"]' for tag in "abc"]

    await asyncio.gather(*(orch.connect(_serial(code=c)) for c in codes))

    assert orch.variables.read("p1", "seq") == ["a", "b", "c"]
    await orch.shutdown()


@pytest.mark.asyncio
async def test_handle_request_dispatch():
    drivers = FakeDrivers()
    orch = _orchestrator(drivers)
    payload = {"_id": "b1", "boardType": 1, "boardConnect": 1, "boardInfo": {"port": "COM3"}, "project": "p1"}

    ack = await orch.handle_request({**payload, "active": False})
    assert ack["active"] is False
    assert drivers.created == []

    connected = await orch.handle_request(payload)
    assert connected["board"]["ready"] is True

    closed = await orch.handle_request({**payload, "closing": True})
    assert closed == {"message": "Board b1 disconnected", "board_id": "b1", "active": False}
    assert orch.board_status("b1") is False

    with pytest.raises(RequestValidationError):
        await orch.handle_request({"boardType": 1})


@pytest.mark.asyncio
async def test_describe_reports_timers_links_and_runtime():
    orch = _orchestrator(FakeDrivers())
    await orch.connect(_serial())

    info = orch.describe("b1")

    assert info["state"] == "ready"
    assert info["timers"]["intervals"] == 1
    assert info["link"]["open"] is True
    assert info["runtime"]["state"] == "ready"
    assert orch.describe("unknown")["ready"] is False
    await orch.shutdown()
