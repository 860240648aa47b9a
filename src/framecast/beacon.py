"""
Presence Beacon
===============

Periodic UDP broadcast so clients can find the stream without
configuration.

Payload (ASCII, stable format):

    <PREFIX>:<ipv4 address>        e.g. "ESP32CAM:192.168.43.17"

sent to 255.255.255.255:45678 every 3 seconds by default.
"""

import asyncio
import logging
import socket
from typing import Callable, Optional

from framecast.config import BeaconConfig
from framecast.pacing import pause


logger = logging.getLogger(__name__)


def format_beacon(prefix: str, ip: str) -> bytes:
    """Encode the beacon payload."""
    return f"{prefix}:{ip}".encode("ascii")


def parse_beacon(payload: bytes) -> Optional[tuple[str, str]]:
    """
    Decode a beacon payload.

    Returns:
        (prefix, ip), or None if the payload is not a beacon
    """
    try:
        text = payload.decode("ascii")
    except UnicodeDecodeError:
        return None
    prefix, sep, ip = text.partition(":")
    if not sep or not prefix or not ip:
        return None
    return prefix, ip


def local_ip() -> Optional[str]:
    """
    Address of the interface that routes to the outside world.

    Connecting a UDP socket sends no packets; it only selects a route.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()


class PresenceBeacon:
    """
    Broadcasts "<prefix>:<ip>" until the stop event is set.

    Send failures (no route yet, interface down) are logged and
    retried on the next interval.

    Attributes:
        config: Beacon configuration
        sent_count: Datagrams sent
        error_count: Failed sends
    """

    def __init__(
        self,
        config: BeaconConfig,
        stop_event: Optional[asyncio.Event] = None,
        resolve_ip: Callable[[], Optional[str]] = local_ip,
    ) -> None:
        self.config = config
        self.sent_count: int = 0
        self.error_count: int = 0
        self.last_payload: Optional[bytes] = None

        self._stop_event = stop_event or asyncio.Event()
        self._resolve_ip = resolve_ip

    async def run(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        logger.info(
            f"Presence beacon started on {self.config.address}:{self.config.port} "
            f"every {self.config.interval_seconds}s"
        )

        try:
            while not self._stop_event.is_set():
                self.broadcast_once(sock)
                await pause(self._stop_event, self.config.interval_seconds)
        finally:
            sock.close()
            logger.info("Presence beacon stopped")

    def broadcast_once(self, sock: socket.socket) -> bool:
        """Send one beacon datagram. Returns True on success."""
        ip = self._resolve_ip()
        if ip is None:
            logger.debug("No local address yet, skipping beacon")
            return False

        payload = format_beacon(self.config.prefix, ip)
        try:
            sock.sendto(payload, (self.config.address, self.config.port))
        except OSError as e:
            self.error_count += 1
            logger.warning(f"Beacon send failed: {e}")
            return False

        self.sent_count += 1
        self.last_payload = payload
        logger.debug(f"Broadcast presence: {payload.decode('ascii')}")
        return True

    def metrics(self) -> dict:
        return {
            "sent": self.sent_count,
            "errors": self.error_count,
            "last_payload": self.last_payload.decode("ascii") if self.last_payload else None,
        }
