# gateway/core/context.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from gateway.core.errors import TransportConfigError
from gateway.model.board_type import BoardType, DriverSpec
from gateway.model.loader import MetadataLoader
from gateway.transport.factory import TransportFactory
from gateway.transport.registry import TransportDriverRegistry

DEFAULT_METADATA_DIR = Path(__file__).resolve().parent.parent / "metadata"


@dataclass(frozen=True)
class Context:
    board_types: Dict[int, BoardType]
    drivers: Dict[str, DriverSpec]
    metadata_hashes: Dict[str, str]
    transport_factory: TransportFactory

    @classmethod
    def load(
        cls,
        metadata_dir: str | Path | None = None,
        *,
        drivers: Optional[TransportDriverRegistry] = None,
        driver_options: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> "Context":
        """
        Load the board-type catalog and construct a transport factory.

        `drivers` is injectable to support testing and custom driver registries.
        If not provided, the default built-in registry is used. `driver_options`
        are extra constructor kwargs per driver key (timeouts, throttle...).
        """
        metadata_dir = Path(metadata_dir) if metadata_dir else DEFAULT_METADATA_DIR

        ml = MetadataLoader(metadata_dir)
        try:
            ml.load_all()
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            raise TransportConfigError(
                "Failed to load board-type metadata.",
                hint=str(e),
                details={"metadata_dir": str(metadata_dir)},
            ) from None
        except Exception as e:
            raise TransportConfigError(
                "Unexpected error while loading board-type metadata.",
                hint=str(e),
                details={"metadata_dir": str(metadata_dir)},
            ) from None

        drivers = drivers or TransportDriverRegistry.default()
        missing = sorted(k for k in ml.drivers if not drivers.has(k))
        if missing:
            raise TransportConfigError(
                f"Catalog names drivers with no implementation: {', '.join(missing)}.",
                hint=f"Known drivers: {', '.join(drivers.keys())}",
                details={"metadata_dir": str(metadata_dir)},
            )

        factory = TransportFactory(ml.board_types, ml.drivers, drivers, driver_options=driver_options)

        return cls(
            board_types=dict(ml.board_types),
            drivers=dict(ml.drivers),
            metadata_hashes=dict(ml.file_hashes),
            transport_factory=factory,
        )
