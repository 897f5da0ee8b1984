from infra.net.ports import (
    NoAvailablePort,
    PortAllocationError,
    PortAllocator,
    PortExhaustion,
    PortPair,
    probe_udp_port,
)

__all__ = [
    "NoAvailablePort",
    "PortAllocationError",
    "PortAllocator",
    "PortExhaustion",
    "PortPair",
    "probe_udp_port",
]
