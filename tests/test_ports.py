import asyncio
import socket

import pytest

from infra.net import (
    NoAvailablePort,
    PortAllocator,
    PortExhaustion,
    PortPair,
    probe_udp_port,
)

from conftest import always_free


def busy_on(*ports):
    busy = set(ports)

    async def probe(host, port):
        await asyncio.sleep(0)
        return port not in busy

    return probe


def test_port_pair_requires_adjacent_rtcp():
    assert PortPair.from_rtp(20000).as_dict() == {"rtp": 20000, "rtcp": 20001}
    with pytest.raises(ValueError):
        PortPair(20000, 20002)


@pytest.mark.asyncio
async def test_concurrent_allocations_are_disjoint():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    pairs = await asyncio.gather(*(allocator.allocate(20000) for _ in range(10)))

    ports = [port for pair in pairs for port in (pair.rtp_port, pair.rtcp_port)]
    assert len(set(ports)) == 20
    for pair in pairs:
        assert pair.rtp_port % 2 == 0
        assert pair.rtcp_port == pair.rtp_port + 1
    assert allocator.reserved == frozenset(ports)


@pytest.mark.asyncio
async def test_busy_port_is_skipped_and_unreserved():
    allocator = PortAllocator(retry_delay=0.0, probe=busy_on(20000))
    pair = await allocator.allocate(20000)
    assert pair == PortPair(20002, 20003)
    assert not allocator.is_reserved(20000)
    assert not allocator.is_reserved(20001)


@pytest.mark.asyncio
async def test_odd_base_is_aligned_to_even_port():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    pair = await allocator.allocate(20001)
    assert pair.rtp_port == 20002


@pytest.mark.asyncio
async def test_released_pair_can_be_allocated_again():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    first = await allocator.allocate(20000)
    allocator.release_pair(first)
    assert allocator.reserved == frozenset()
    second = await allocator.allocate(20000)
    assert second == first


@pytest.mark.asyncio
async def test_release_is_idempotent():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    pair = await allocator.allocate(20000)
    allocator.release(pair.rtp_port)
    allocator.release(pair.rtp_port)
    allocator.release(pair.rtcp_port)
    allocator.release_pair(None)
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_release_of_either_port_frees_the_whole_pair():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    first = await allocator.allocate(20000)
    second = await allocator.allocate(20000)

    allocator.release(first.rtp_port)
    assert allocator.reserved == frozenset({second.rtp_port, second.rtcp_port})

    allocator.release(second.rtcp_port)
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_exhaustion_after_all_attempts():
    probed = []

    async def never_free(host, port):
        probed.append(port)
        return False

    allocator = PortAllocator(
        max_retries=3, retry_delay=0.0, max_probes=4, probe=never_free
    )
    with pytest.raises(PortExhaustion) as excinfo:
        await allocator.allocate(20000)

    assert isinstance(excinfo.value.__cause__, NoAvailablePort)
    assert len(probed) == 12
    assert probed[0] == 20000
    assert probed[4] == 20100
    assert probed[8] == 20200
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_never_hands_out_ports_past_the_range():
    allocator = PortAllocator(max_retries=1, retry_delay=0.0, probe=always_free)
    pair = await allocator.allocate(65534)
    assert pair == PortPair(65534, 65535)
    with pytest.raises(PortExhaustion):
        await allocator.allocate(65535)


@pytest.mark.asyncio
async def test_cancelled_probe_drops_its_reservation():
    gate = asyncio.Event()

    async def blocked(host, port):
        await gate.wait()
        return True

    allocator = PortAllocator(retry_delay=0.0, probe=blocked)
    task = asyncio.create_task(allocator.allocate(20000))
    await asyncio.sleep(0.01)
    assert allocator.is_reserved(20000)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_teardown_clears_registry():
    allocator = PortAllocator(retry_delay=0.0, probe=always_free)
    await allocator.allocate(20000)
    await allocator.allocate(21000)
    allocator.teardown()
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_probe_reports_bound_port_as_busy():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        assert await probe_udp_port("127.0.0.1", port) is False
    finally:
        sock.close()
    assert await probe_udp_port("127.0.0.1", port) is True
