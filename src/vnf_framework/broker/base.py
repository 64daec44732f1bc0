"""Abstract transport interface used by the broker client."""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from ..models import Credentials

logger = logging.getLogger(__name__)


@dataclass
class TransportResult:
    """Raw result of a single transport exchange."""
    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0


class Transport(ABC):
    """Moves one request to an address and returns the raw result.

    Implementations raise ``CommError`` for failures they can classify and
    may let ``asyncio.TimeoutError``/``OSError`` escape; the broker client
    classifies those as retriable.
    """

    protocols: tuple[str, ...] = ()

    @abstractmethod
    async def send(
        self,
        address: str,
        protocol: str,
        method: str,
        path: str,
        headers: dict[str, str],
        body: str,
        timeout: float,
        port: int,
        credentials: Optional[Credentials] = None,
    ) -> TransportResult:
        """Send one request."""
        pass

    async def probe(self, address: str, port: int, timeout: float) -> bool:
        """Cheap reachability check. Default is a TCP connect."""
        return await tcp_probe(address, port, timeout)

    async def close(self) -> None:
        """Release pooled connections."""
        pass


async def tcp_probe(address: str, port: int, timeout: float) -> bool:
    """True if a TCP connection to ``address:port`` opens within ``timeout``."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"TCP probe {address}:{port} failed: {e}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True
