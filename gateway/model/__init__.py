from .board import BoardConnection, BoardKind, BoardRequest, BoardState, ConnectMethod
from .board_type import BoardType, DriverSpec
from .loader import MetadataLoader

__all__ = ["BoardConnection",
           "BoardKind",
           "BoardRequest",
           "BoardState",
           "BoardType",
           "ConnectMethod",
           "DriverSpec",
           "MetadataLoader"]
