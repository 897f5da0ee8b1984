import asyncio
import sys
from pathlib import Path

import pytest

from infra.ffmpeg import (
    CompositorStartTimeout,
    CompositorStartupError,
    CompositorUnexpectedExit,
    ProcessState,
)
from hlsmix.domains.compose import CompositorInput, CompositorProcessSupervisor
from hlsmix.domains.participants import MediaKind

RUNNING = (
    "import sys, time\n"
    "print(\"Output #0, hls, to 'out.m3u8':\", file=sys.stderr, flush=True)\n"
    "time.sleep(30)\n"
)

INPUTS = [CompositorInput("p1", MediaKind.AUDIO, Path("p1_audio.sdp"))]


def builder(body):
    calls = []

    def build(inputs):
        calls.append(list(inputs))
        return [sys.executable, "-c", body]

    build.calls = calls
    return build


@pytest.mark.asyncio
async def test_start_and_stop(compose_settings):
    build = builder(RUNNING)
    supervisor = CompositorProcessSupervisor(compose_settings, command_builder=build)

    result = await supervisor.start(INPUTS)
    assert result.success
    assert supervisor.is_running()
    assert supervisor.state is ProcessState.RUNNING
    assert supervisor.pid == result.pid
    assert build.calls == [INPUTS]
    assert compose_settings.output_dir.is_dir()

    await supervisor.stop()
    assert not supervisor.is_running()
    assert supervisor.state is ProcessState.STOPPED
    assert supervisor.pid is None


@pytest.mark.asyncio
async def test_restart_replaces_running_process(compose_settings):
    supervisor = CompositorProcessSupervisor(
        compose_settings, command_builder=builder(RUNNING)
    )
    first = await supervisor.start(INPUTS)
    second = await supervisor.start(INPUTS)
    try:
        assert first.success and second.success
        assert first.pid != second.pid
        assert supervisor.pid == second.pid
    finally:
        await supervisor.stop()


@pytest.mark.asyncio
async def test_failed_start_is_reported_not_raised(compose_settings):
    body = "import sys\nprint('Error parsing filterchain', file=sys.stderr, flush=True)\n"
    supervisor = CompositorProcessSupervisor(
        compose_settings, command_builder=builder(body + "import time\ntime.sleep(30)\n")
    )
    result = await supervisor.start(INPUTS)

    assert not result.success
    assert isinstance(result.error, CompositorStartupError)
    assert result.as_dict()["error_type"] == "CompositorStartupError"
    assert supervisor.state is ProcessState.FAILED
    assert not supervisor.is_running()
    assert supervisor.last_result is result


@pytest.mark.asyncio
async def test_timeout_leaves_supervisor_failed(compose_settings):
    compose_settings.startup_timeout = 0.3
    supervisor = CompositorProcessSupervisor(
        compose_settings, command_builder=builder("import time\ntime.sleep(30)\n")
    )
    result = await supervisor.start(INPUTS)
    assert isinstance(result.error, CompositorStartTimeout)
    assert supervisor.pid is None


@pytest.mark.asyncio
async def test_missing_binary_is_a_startup_error(compose_settings):
    supervisor = CompositorProcessSupervisor(
        compose_settings, binary="/nonexistent/ffmpeg-binary"
    )
    result = await supervisor.start(INPUTS)
    assert not result.success
    assert isinstance(result.error, CompositorStartupError)


@pytest.mark.asyncio
async def test_unexpected_exit_is_forwarded(compose_settings):
    exits = []
    exited = asyncio.Event()

    async def on_exit(error):
        exits.append(error)
        exited.set()

    body = RUNNING.replace("time.sleep(30)", "time.sleep(0.3)\nsys.exit(2)")
    supervisor = CompositorProcessSupervisor(
        compose_settings, command_builder=builder(body), on_exit=on_exit
    )
    assert (await supervisor.start(INPUTS)).success

    await asyncio.wait_for(exited.wait(), 10)
    assert isinstance(exits[0], CompositorUnexpectedExit)
    assert supervisor.last_exit is exits[0]
    assert supervisor.state is ProcessState.STOPPED
    assert not supervisor.is_running()


@pytest.mark.asyncio
async def test_stop_when_idle_is_safe(compose_settings):
    supervisor = CompositorProcessSupervisor(compose_settings)
    await supervisor.stop()
    await asyncio.gather(supervisor.stop(), supervisor.stop())
    assert supervisor.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_start_requires_inputs(compose_settings):
    supervisor = CompositorProcessSupervisor(compose_settings)
    with pytest.raises(ValueError):
        await supervisor.start([])
