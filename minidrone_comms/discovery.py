from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

DEFAULT_SERVICE_TYPE = "_arsdk-090b._udp.local."


class DiscoveryStatus(IntEnum):
    """Status codes a device may put in its handshake response."""

    OK = 0
    ERROR = -1

    ERROR_SIMPLE_POLL = -1000
    ERROR_BUILD_NAME = -999
    ERROR_CLIENT = -998
    ERROR_CREATE_CONFIG = -997
    ERROR_DELETE_CONFIG = -996
    ERROR_ENTRY_GROUP = -995
    ERROR_ADD_SERVICE = -994
    ERROR_GROUP_COMMIT = -993
    ERROR_BROWSER_ALLOC = -992
    ERROR_BROWSER_NEW = -991

    ERROR_ALLOC = -2000
    ERROR_INIT = -1999
    ERROR_SOCKET_CREATION = -1998
    ERROR_SOCKET_PERMISSION_DENIED = -1997
    ERROR_SOCKET_ALREADY_CONNECTED = -1996
    ERROR_ACCEPT = -1995
    ERROR_SEND = -1994
    ERROR_READ = -1993
    ERROR_SELECT = -1992
    ERROR_TIMEOUT = -1991
    ERROR_ABORT = -1990
    ERROR_PIPE_INIT = -1989
    ERROR_BAD_PARAMETER = -1988
    ERROR_BUSY = -1987
    ERROR_SOCKET_UNREACHABLE = -1986
    ERROR_OUTPUT_LENGTH = -1985

    ERROR_JNI = -3000
    ERROR_JNI_VM = -2999
    ERROR_JNI_ENV = -2998
    ERROR_JNI_CALLBACK_LISTENER = -2997

    # sent by the device
    ERROR_CONNECTION = -4000
    ERROR_CONNECTION_BUSY = -3999
    ERROR_CONNECTION_NOT_READY = -3998
    ERROR_CONNECTION_BAD_ID = -3997

    ERROR_DEVICE = -5000
    ERROR_DEVICE_OPERATION_NOT_SUPPORTED = -4999

    ERROR_JSON = -6000
    ERROR_JSON_PARSSING = -5999
    ERROR_JSON_BUFFER_SIZE = -5998


def status_name(status: int) -> str:
    try:
        return DiscoveryStatus(status).name
    except ValueError:
        return f"UNKNOWN_STATUS_{status}"


@dataclass(frozen=True)
class ServiceInfo:
    name: str
    host: str
    port: int


ServiceCallback = Callable[[ServiceInfo], None]


class ServiceBrowser(ABC):
    """Multicast-DNS browsing capability used by the WiFi transport.

    Implementations call ``on_service`` for every service they resolve,
    possibly from another thread; the transport keeps the first match and
    calls ``stop()``.
    """

    @abstractmethod
    def start(self, service_type: str, on_service: ServiceCallback) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class StaticServiceBrowser(ServiceBrowser):
    """Browser that "discovers" a fixed list of services, for known hosts and tests."""

    def __init__(self, services) -> None:
        self.services = list(services)
        self.started_with: str = ""
        self.stopped = False

    def start(self, service_type: str, on_service: ServiceCallback) -> None:
        self.started_with = service_type
        self.stopped = False
        for service in self.services:
            if self.stopped:
                break
            on_service(service)

    def stop(self) -> None:
        self.stopped = True
