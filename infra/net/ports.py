import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

MAX_PORT = 65535

PortProbe = Callable[[str, int], Awaitable[bool]]


class PortAllocationError(RuntimeError):
    pass


class NoAvailablePort(PortAllocationError):
    pass


class PortExhaustion(PortAllocationError):
    pass


@dataclass(frozen=True)
class PortPair:
    rtp_port: int
    rtcp_port: int

    def __post_init__(self) -> None:
        if self.rtcp_port != self.rtp_port + 1:
            raise ValueError(
                "rtcp port must follow rtp port: {}/{}".format(
                    self.rtp_port, self.rtcp_port
                )
            )

    @classmethod
    def from_rtp(cls, rtp_port: int) -> "PortPair":
        return cls(rtp_port, rtp_port + 1)

    def as_dict(self) -> dict:
        return {"rtp": self.rtp_port, "rtcp": self.rtcp_port}


async def probe_udp_port(host: str, port: int) -> bool:
    loop = asyncio.get_running_loop()
    try:
        transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol,
            local_addr=(host, port),
            family=socket.AF_INET6 if ":" in host else socket.AF_INET,
        )
    except OSError:
        return False
    transport.close()
    return True


class PortAllocator:
    """Hands out disjoint RTP/RTCP port pairs.

    A candidate pair is reserved before the OS is asked about it, so two
    callers interleaving on the event loop never probe the same pair.
    """

    def __init__(
        self,
        *,
        probe_host: str = "0.0.0.0",
        max_retries: int = 5,
        retry_delay: float = 1.0,
        retry_stride: int = 100,
        max_probes: int = 100,
        probe: Optional[PortProbe] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._probe_host = probe_host
        self._max_retries = max(1, int(max_retries))
        self._retry_delay = max(0.0, float(retry_delay))
        self._retry_stride = max(2, int(retry_stride))
        self._max_probes = max(1, int(max_probes))
        self._probe = probe or probe_udp_port
        self._logger = logger or logging.getLogger("hlsmix.ports")
        self._reserved: Set[int] = set()

    @property
    def reserved(self) -> frozenset:
        return frozenset(self._reserved)

    def is_reserved(self, port: int) -> bool:
        return port in self._reserved

    async def allocate(self, preferred_base: int) -> PortPair:
        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries):
            start = preferred_base + attempt * self._retry_stride
            try:
                return await self._scan(start)
            except NoAvailablePort as exc:
                last_error = exc
                self._logger.warning(
                    "port allocation attempt %s from %s failed: %s",
                    attempt + 1,
                    start,
                    exc,
                )
            if attempt + 1 < self._max_retries and self._retry_delay:
                await asyncio.sleep(self._retry_delay)
        raise PortExhaustion(
            "no port pair available from {} after {} attempts".format(
                preferred_base, self._max_retries
            )
        ) from last_error

    async def _scan(self, start: int) -> PortPair:
        port = start + (start % 2)
        probes = 0
        while probes < self._max_probes:
            if port + 1 > MAX_PORT:
                break
            if port in self._reserved or port + 1 in self._reserved:
                port += 2
                continue
            self._reserved.add(port)
            self._reserved.add(port + 1)
            probes += 1
            try:
                available = await self._probe(self._probe_host, port)
            except BaseException:
                self._discard(port)
                raise
            if available:
                self._logger.debug(
                    "reserved port pair %s/%s", port, port + 1
                )
                return PortPair.from_rtp(port)
            self._discard(port)
            port += 2
        raise NoAvailablePort(
            "no free port pair from {} within {} probes".format(
                start, self._max_probes
            )
        )

    def _discard(self, port: int) -> None:
        self._reserved.discard(port)
        self._reserved.discard(port + 1)

    def release(self, port: int) -> None:
        """Release the pair holding ``port``; pairs always start on an even port."""
        rtp_port = port - (port % 2)
        self.release_pair(PortPair.from_rtp(rtp_port))

    def release_pair(self, pair: Optional[PortPair]) -> None:
        if pair is None:
            return
        self._reserved.discard(pair.rtp_port)
        self._reserved.discard(pair.rtcp_port)
        self._logger.debug(
            "released port pair %s/%s", pair.rtp_port, pair.rtcp_port
        )

    def teardown(self) -> None:
        self._reserved.clear()
