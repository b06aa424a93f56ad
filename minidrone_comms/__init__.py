from .ble import Advertisement, BleCentral, BleTransport
from .catalog import CommandCatalog
from .command import ArgumentSpec, CommandInstance, CommandTemplate
from .connection import ConnectionState, DroneConnection, LinkStats
from .discovery import DiscoveryStatus, ServiceBrowser, ServiceInfo
from .errors import (
    CommandTimeout,
    DroneProtocolError,
    FrameDecodeFailure,
    HandshakeRejected,
    InvalidArgumentValue,
    NotConnected,
    PendingAckConflict,
    TransportIOError,
    UnknownElement,
    UnsupportedType,
)
from .protocol import BufferClass, BufferId, FrameType
from .transport import Frame, Transport
from .wifi import WifiTransport

__all__ = [
    "Advertisement",
    "ArgumentSpec",
    "BleCentral",
    "BleTransport",
    "BufferClass",
    "BufferId",
    "CommandCatalog",
    "CommandInstance",
    "CommandTemplate",
    "CommandTimeout",
    "ConnectionState",
    "DiscoveryStatus",
    "DroneConnection",
    "DroneProtocolError",
    "Frame",
    "FrameDecodeFailure",
    "FrameType",
    "HandshakeRejected",
    "InvalidArgumentValue",
    "LinkStats",
    "NotConnected",
    "PendingAckConflict",
    "ServiceBrowser",
    "ServiceInfo",
    "Transport",
    "TransportIOError",
    "UnknownElement",
    "UnsupportedType",
    "WifiTransport",
]
