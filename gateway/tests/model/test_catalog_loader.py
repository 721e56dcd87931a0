from __future__ import annotations

from pathlib import Path
import textwrap

import pytest

from gateway.model.loader import MetadataLoader, sha256_file


def _write(p: Path, text: str) -> None:
    (p / "board_types.yml").write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")


DRIVERS = """
drivers:
  serial:
    label: USB serial
    medium: serial
    key_param: port
    stream: true
    params:
      port: {type: str, required: true}
      baudrate: {type: int, default: 57600}
  http:
    label: HTTP
    key_param: ip
    params:
      ip: {type: str, required: true}
"""


def test_load_all_happy_path_populates_models_and_hashes(tmp_path: Path) -> None:
    _write(
        tmp_path,
        DRIVERS
        + """
board_types:
  1:
    name: UNO
    label: Arduino Uno
    connect:
      USB: serial
  4:
    name: WEB
    default_driver: HTTP
    handshake: false
  6:
    name: SIM
    script_only: true
""",
    )

    ml = MetadataLoader(tmp_path)
    ml.load_all()

    serial = ml.get_driver("SERIAL")
    assert serial.stream is True
    assert serial.key_param == "port"
    assert serial.medium == "serial"
    assert ml.drivers["http"].stream is False
    assert ml.drivers["http"].medium == "http"

    uno = ml.get_board_type(1)
    assert uno.label == "Arduino Uno"
    assert uno.driver_for("usb") == "serial"
    assert uno.driver_for("wifi") is None

    web = ml.board_types[4]
    assert web.driver_for("ethernet") == "http"
    assert web.handshake is False

    sim = ml.board_types[6]
    assert sim.script_only is True
    assert sim.driver_for("usb") is None

    assert ml.file_hashes["board_types.yml"] == sha256_file(tmp_path / "board_types.yml")


@pytest.mark.parametrize(
    "body, message",
    [
        ("board_types: {}\n", "missing 'drivers'"),
        (DRIVERS, "missing 'board_types'"),
        (DRIVERS + "board_types:\n  2:\n    label: nameless\n    default_driver: serial\n", "missing 'name'"),
        (DRIVERS + "board_types:\n  2:\n    name: X\n", "declares no driver"),
        (DRIVERS + "board_types:\n  2:\n    name: X\n    connect: {usb: can}\n", "unknown driver 'can'"),
    ],
)
def test_load_all_rejects_bad_catalogs(tmp_path: Path, body: str, message: str) -> None:
    _write(tmp_path, body)
    with pytest.raises(ValueError) as ei:
        MetadataLoader(tmp_path).load_all()
    assert message in str(ei.value)


def test_driver_key_param_must_be_declared(tmp_path: Path) -> None:
    _write(
        tmp_path,
        """
        drivers:
          serial:
            label: USB
            key_param: device
            params:
              port: {type: str}
        board_types: {}
        """,
    )
    with pytest.raises(ValueError, match="key_param 'device'"):
        MetadataLoader(tmp_path).load_all()


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        MetadataLoader(tmp_path).load_all()
