from __future__ import annotations

import asyncio

import pytest

from gateway.core.errors import ScriptBudgetExceeded, ScriptExecutionError, ScriptSyntaxError
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.runtime.board import BoardRuntime
from gateway.script.engine import ScriptEngine
from gateway.tests.fakes import FakeHttpTransport, FakeMqttTransport, FakeStreamTransport
from gateway.transport.base import AdapterContext


def _engine(**kwargs):
    ledger = TimerLedger(min_interval_s=0.0)
    store = GlobalVariableStore()
    return ScriptEngine(ledger, store, **kwargs), ledger, store


INTERVAL_SCRIPT = """
def tick():
    varG.ticks = (varG.ticks or 0) + 1
set_interval(tick, 10)
"""


@pytest.mark.asyncio
async def test_redeploy_leaves_exactly_one_interval():
    engine, ledger, store = _engine()

    engine.run("b1", "p1", INTERVAL_SCRIPT)
    engine.run("b1", "p1", INTERVAL_SCRIPT)
    run = engine.run("b1", "p1", INTERVAL_SCRIPT)

    assert run.timers == {"timeouts": 0, "intervals": 1, "tasks": 0}
    assert ledger.active_count("b1")["intervals"] == 1

    await asyncio.sleep(0.1)
    assert store.read("p1", "ticks") >= 3
    ledger.revoke_all("b1")


@pytest.mark.asyncio
async def test_array_reinit_resets_time_companion():
    engine, _, store = _engine()
    store.update("p1", {"level": [1, 2], "level_time": [100, 200], "keep": [9]})

    run = engine.run("b1", "p1", 'varG.level = []\nvarG["other"] = list()\nx = 1')

    assert run.array_resets == ["level", "other"]
    assert store.read("p1", "level") == []
    assert store.read("p1", "level_time") == []
    assert store.read("p1", "keep") == [9]


def test_array_resets_detection():
    engine, _, _ = _engine()
    tree = engine.check("varG.a = []\nvarG.b = ()\nvarG.c = [1]\nlocal = []\nvarG['d'] = tuple()")
    assert engine.array_resets(tree) == ["a", "b", "d"]


@pytest.mark.asyncio
async def test_failure_revokes_timers_created_before_the_error():
    engine, ledger, _ = _engine()

    with pytest.raises(ScriptExecutionError) as ei:
        engine.run("b1", "p1", "set_interval(lambda: None, 50)\nset_timeout(lambda: None, 50)\nx = 1 / 0")

    assert ei.value.line == 3
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_syntax_error_revokes_previous_deployment():
    engine, ledger, _ = _engine()
    engine.run("b1", "p1", INTERVAL_SCRIPT)

    with pytest.raises(ScriptSyntaxError):
        engine.run("b1", "p1", "import os")

    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_budget_exceeded_is_reported():
    engine, ledger, _ = _engine(max_steps=1000)
    with pytest.raises(ScriptBudgetExceeded):
        engine.run("b1", "p1", "while True:\n    pass")
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_injected_names_cannot_be_reassigned():
    engine, _, _ = _engine()
    for src in ("varG = {}", "set_timeout = 1", "board = None", "HIGH = 0"):
        with pytest.raises(ScriptSyntaxError):
            engine.run("b1", "p1", src)


@pytest.mark.asyncio
async def test_timeout_and_clear_from_script():
    engine, ledger, store = _engine()
    src = """
def fired(tag):
    varG.fired = tag
keep = set_timeout(fired, 10, "kept")
drop = setTimeout(fired, 10, "dropped")
clearTimeout(drop)
"""
    engine.run("b1", "p1", src)
    assert ledger.active_count("b1")["timeouts"] == 1

    await asyncio.sleep(0.05)
    assert store.read("p1", "fired") == "kept"
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_timer_callback_error_does_not_stop_interval():
    engine, ledger, store = _engine()
    src = """
def tick():
    varG.n = (varG.n or 0) + 1
    if varG.n == 1:
        raise ValueError("first tick fails")
set_interval(tick, 10)
"""
    engine.run("b1", "p1", src)
    await asyncio.sleep(0.1)
    assert store.read("p1", "n") >= 2
    ledger.revoke_all("b1")


@pytest.mark.asyncio
async def test_board_capability_is_exposed_with_constants():
    engine, ledger, _ = _engine()
    t = FakeStreamTransport("COM3")
    await t.open()
    rt = BoardRuntime("b1", t, ledger=ledger)
    await rt.start()
    t.written.clear()

    engine.run("b1", "p1", "board.pinMode(13, OUTPUT)\nboard.digital_write(13, HIGH)", board=rt)

    assert len(t.written) == 2

    with pytest.raises(ScriptExecutionError):
        engine.run("b1", "p1", "board.transport.close()", board=rt)


@pytest.mark.asyncio
async def test_http_device_facade_sets_and_reads_variables():
    engine, ledger, store = _engine()
    device = FakeHttpTransport(ip="10.0.0.9", context=AdapterContext("b1", "p1", store))
    src = """
results = []
device.setVariable("relay", 1, lambda ok: results.append(ok))
varG.results = results
"""
    engine.run("b1", "p1", src, device=device)
    await asyncio.sleep(0.01)

    assert device.sets == [("relay", 1)]
    assert store.read("p1", "relay") == 1
    assert store.read("p1", "results") == [True]
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_mqtt_device_facade_subscribes_and_publishes():
    engine, _, _ = _engine()
    device = FakeMqttTransport(brokerUrl="broker.local")
    src = 'device.subscribe("plant/temp", "temp")\ndevice.publish("cmd/fan", {"on": True})'

    engine.run("b1", "p1", src, device=device)
    await asyncio.sleep(0.01)

    assert device.topics == ["plant/temp"]
    assert device.published == [("cmd/fan", {"on": True})]


@pytest.mark.asyncio
async def test_revoke_cancels_pending_device_io():
    engine, ledger, _ = _engine()

    class SlowHttp(FakeHttpTransport):
        async def ping(self) -> bool:
            await asyncio.sleep(10)
            return True

    device = SlowHttp(ip="10.0.0.9")
    engine.run("b1", "p1", "device.ping()", device=device)
    assert ledger.active_count("b1")["tasks"] == 1

    assert ledger.revoke_all("b1") == 1
    await asyncio.sleep(0)
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_missing_variable_reads_none():
    engine, _, store = _engine()
    engine.run("b1", "p1", "varG.copy = varG.never_set\nvarG.has = 'x' in varG")
    assert store.read("p1", "copy") is None
    assert store.read("p1", "has") is False


@pytest.mark.asyncio
async def test_storing_a_timer_handle_in_varG_is_refused():
    engine, ledger, store = _engine()

    with pytest.raises(ScriptExecutionError) as ei:
        engine.run("b1", "p1", "varG.ok = 1\nvarG.h = set_interval(lambda: 0, 1000)")

    assert ei.value.line == 2
    assert str(ei.value).startswith("TypeError: Variable 'h' cannot hold")
    assert store.snapshot("p1") == {"ok": 1}
    assert ledger.has_entry("b1") is False


@pytest.mark.asyncio
async def test_snapshot_survives_functions_appended_in_place():
    engine, _, store = _engine()

    engine.run("b1", "p1", "varG.xs = [1]\ndef f():\n    return 0\nvarG.xs.append(f)")

    snap = store.snapshot("p1")
    assert snap["xs"][0] == 1
    assert isinstance(snap["xs"][1], str)
