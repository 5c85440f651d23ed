"""
Local-network service discovery over mDNS/DNS-SD (zeroconf).

The receiver advertises itself; the sender browses for it.
"""

import socket
import threading
from typing import Optional, Tuple

from zeroconf import ServiceBrowser, ServiceInfo, ServiceListener, Zeroconf

from gazelink.net.errors import DiscoveryError
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


def local_ip() -> str:
    """Best-effort LAN address of this machine."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connecting only selects the outgoing interface
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


class ServiceAdvertiser:
    """Register the receiver's TCP service for the lifetime of the server."""

    def __init__(self, service_type: str, service_name: str, port: int):
        self._service_type = service_type
        self._service_name = service_name
        self._port = port
        self._zeroconf: Optional[Zeroconf] = None
        self._info: Optional[ServiceInfo] = None

    def start(self):
        if self._zeroconf is not None:
            return

        address = local_ip()
        self._info = ServiceInfo(
            self._service_type,
            f"{self._service_name}.{self._service_type}",
            addresses=[socket.inet_aton(address)],
            port=self._port,
            properties={},
            server=f"{socket.gethostname().split('.')[0]}.local.",
        )
        self._zeroconf = Zeroconf()
        self._zeroconf.register_service(self._info)
        logger.info(f"Advertising {self._service_name} on {address}:{self._port}")

    def stop(self):
        if self._zeroconf is None:
            return

        try:
            if self._info is not None:
                self._zeroconf.unregister_service(self._info)
        finally:
            self._zeroconf.close()
            self._zeroconf = None
            self._info = None
        logger.info("Service advertisement stopped")


class _FirstServiceListener(ServiceListener):
    """Remember the first service name seen by a browser."""

    def __init__(self):
        self.name: Optional[str] = None
        self.found = threading.Event()

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        if self.name is None:
            self.name = name
            self.found.set()

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass


def discover_receiver(service_type: str, timeout: float = 5.0) -> Tuple[str, int]:
    """
    Find the first advertised receiver.

    Returns:
        (host, port)

    Raises:
        DiscoveryError: If nothing is found or resolved within the timeout
    """
    zeroconf = Zeroconf()
    listener = _FirstServiceListener()
    browser = ServiceBrowser(zeroconf, service_type, listener)

    try:
        if not listener.found.wait(timeout):
            raise DiscoveryError(f"No {service_type} service found within {timeout:.1f}s")

        info = zeroconf.get_service_info(service_type, listener.name, timeout=int(timeout * 1000))
        if info is None or not info.parsed_addresses():
            raise DiscoveryError(f"Could not resolve {listener.name}")

        host = info.parsed_addresses()[0]
        logger.info(f"Discovered {listener.name} at {host}:{info.port}")
        return host, info.port
    finally:
        browser.cancel()
        zeroconf.close()
