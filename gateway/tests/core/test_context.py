from __future__ import annotations

from pathlib import Path
import textwrap

import pytest

from gateway.core.context import Context
from gateway.core.errors import TransportConfigError
from gateway.transport.registry import TransportDriverRegistry


def test_load_default_catalog(catalog_context):
    ctx = catalog_context

    assert sorted(ctx.board_types) == [1, 2, 3, 4, 5, 6]
    assert set(ctx.drivers) == {"serial", "virtual_serial", "tcp_server", "http", "mqtt"}
    assert list(ctx.metadata_hashes) == ["board_types.yml"]
    assert len(ctx.metadata_hashes["board_types.yml"]) == 64
    assert ctx.transport_factory.board_type(6).script_only is True


def test_default_registry_covers_catalog():
    ctx = Context.load()
    assert ctx.transport_factory.driver_for(1, 1).driver == "serial"


def test_missing_metadata_dir_raises_config_error(tmp_path: Path):
    with pytest.raises(TransportConfigError) as ei:
        Context.load(tmp_path)
    assert ei.value.details["metadata_dir"] == str(tmp_path)


def test_catalog_driver_without_implementation_raises(tmp_path: Path, fake_drivers):
    (tmp_path / "board_types.yml").write_text(
        textwrap.dedent(
            """
            drivers:
              can:
                label: CAN bus
                key_param: channel
                params:
                  channel: {type: str, required: true}
            board_types:
              9:
                name: CANBOARD
                default_driver: can
            """
        ).lstrip(),
        encoding="utf-8",
    )

    with pytest.raises(TransportConfigError) as ei:
        Context.load(tmp_path, drivers=fake_drivers.registry)
    assert "can" in ei.value.message


def test_invalid_yaml_raises_config_error(tmp_path: Path):
    (tmp_path / "board_types.yml").write_text("drivers: [unclosed\n", encoding="utf-8")
    with pytest.raises(TransportConfigError):
        Context.load(tmp_path, drivers=TransportDriverRegistry({}))
