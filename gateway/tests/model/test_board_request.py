from __future__ import annotations

import pytest

from gateway.core.errors import RequestValidationError
from gateway.model.board import BoardConnection, BoardRequest, BoardState, ConnectMethod


def _payload(**overrides):
    base = {
        "_id": "b1",
        "boardType": 1,
        "boardConnect": 1,
        "boardInfo": {"port": "/dev/ttyACM0"},
        "project": "p1",
        "boardCode": "varG.x = 1",
        "boardName": "Bench Uno",
    }
    base.update(overrides)
    return base


def test_from_payload_maps_dashboard_fields():
    req = BoardRequest.from_payload(_payload())

    assert req.board_id == "b1"
    assert req.board_type == 1
    assert req.connect_method == ConnectMethod.USB
    assert req.connection_info == {"port": "/dev/ttyACM0"}
    assert req.project_id == "p1"
    assert req.script_source == "varG.x = 1"
    assert req.name == "Bench Uno"
    assert req.active is True
    assert req.closing is False


def test_from_payload_accepts_id_alias_and_numeric_strings():
    p = _payload(boardType="5", boardConnect="2")
    del p["_id"]
    p["id"] = 42

    req = BoardRequest.from_payload(p)
    assert req.board_id == "42"
    assert req.board_type == 5
    assert req.connect_method == 2


def test_connect_method_defaults_to_usb():
    p = _payload()
    del p["boardConnect"]
    assert BoardRequest.from_payload(p).connect_method == ConnectMethod.USB


@pytest.mark.parametrize("closing, expected", [(True, True), ("true", True), ("0", False), (None, False)])
def test_closing_flag_parsing(closing, expected):
    assert BoardRequest.from_payload(_payload(closing=closing)).closing is expected


def test_missing_id_raises():
    p = _payload()
    del p["_id"]
    with pytest.raises(RequestValidationError):
        BoardRequest.from_payload(p)


@pytest.mark.parametrize("field, value", [("boardType", 99), ("boardType", None), ("boardConnect", "usb")])
def test_bad_enum_values_raise(field, value):
    with pytest.raises(RequestValidationError) as ei:
        BoardRequest.from_payload(_payload(**{field: value}))
    assert ei.value.details["field"] == field
    assert ei.value.status == 400


def test_board_info_must_be_mapping():
    with pytest.raises(RequestValidationError):
        BoardRequest.from_payload(_payload(boardInfo=["COM3"]))


def test_non_mapping_payload_raises():
    with pytest.raises(RequestValidationError):
        BoardRequest.from_payload("b1")


def test_connection_record_from_request():
    conn = BoardConnection.from_request(BoardRequest.from_payload(_payload()))

    assert conn.state is BoardState.IDLE
    assert conn.ready is False

    conn.state = BoardState.READY
    d = conn.as_dict()
    assert d["id"] == "b1"
    assert d["state"] == "ready"
    assert d["ready"] is True
    assert d["project"] == "p1"
