import asyncio
import os
import sys

import pytest

from infra.ffmpeg import (
    CompositorStartTimeout,
    CompositorStartupError,
    CompositorUnexpectedExit,
    FfmpegProcess,
    ProcessState,
)

OPENED = "import sys, time\nprint(\"Output #0, hls, to 'out.m3u8':\", file=sys.stderr, flush=True)\n"


def script(body: str):
    return [sys.executable, "-c", body]


@pytest.mark.asyncio
async def test_opened_signature_marks_running_and_stop_terminates():
    process = FfmpegProcess(script(OPENED + "time.sleep(30)\n"), stop_grace=2.0)
    outcome = await process.start()

    assert outcome.success
    assert outcome.signature == "output_opened"
    assert outcome.pid is not None
    assert process.state is ProcessState.RUNNING
    assert process.running

    await process.stop()
    assert process.state is ProcessState.STOPPED
    assert process.pid is None
    assert not process.running


@pytest.mark.asyncio
async def test_fatal_signature_fails_and_leaves_no_process():
    body = (
        "import sys, time\n"
        "print('in.sdp: No such file or directory', file=sys.stderr, flush=True)\n"
        "time.sleep(30)\n"
    )
    process = FfmpegProcess(script(body), stop_grace=2.0)
    outcome = await process.start()

    assert not outcome.success
    assert isinstance(outcome.error, CompositorStartupError)
    assert outcome.error.signature == "missing_input"
    assert "in.sdp: No such file or directory" in outcome.error.output
    assert process.state is ProcessState.FAILED
    assert process.pid is None


@pytest.mark.asyncio
async def test_silent_process_times_out():
    process = FfmpegProcess(
        script("import time\ntime.sleep(30)\n"), startup_timeout=0.5, stop_grace=2.0
    )
    outcome = await process.start()

    assert not outcome.success
    assert isinstance(outcome.error, CompositorStartTimeout)
    assert process.state is ProcessState.FAILED
    assert process.pid is None


@pytest.mark.asyncio
async def test_exit_before_classification_is_a_startup_error():
    process = FfmpegProcess(script("import sys\nsys.exit(4)\n"))
    outcome = await process.start()

    assert not outcome.success
    assert isinstance(outcome.error, CompositorStartupError)
    assert outcome.error.returncode == 4
    assert process.state is ProcessState.FAILED


@pytest.mark.asyncio
async def test_missing_binary_fails_without_raising():
    process = FfmpegProcess(["/nonexistent/ffmpeg-binary", "-version"])
    outcome = await process.start()

    assert not outcome.success
    assert isinstance(outcome.error, CompositorStartupError)
    assert process.state is ProcessState.FAILED


@pytest.mark.asyncio
async def test_unexpected_exit_after_start_reports_through_callback():
    exits = []
    exited = asyncio.Event()

    def on_exit(error):
        exits.append(error)
        exited.set()

    body = OPENED + "time.sleep(0.3)\nsys.exit(3)\n"
    process = FfmpegProcess(script(body), on_exit=on_exit)
    outcome = await process.start()
    assert outcome.success

    await asyncio.wait_for(exited.wait(), 10)
    assert isinstance(exits[0], CompositorUnexpectedExit)
    assert exits[0].returncode == 3
    assert process.state is ProcessState.STOPPED
    assert process.pid is None


@pytest.mark.asyncio
async def test_requested_stop_does_not_report_unexpected_exit():
    exits = []
    process = FfmpegProcess(
        script(OPENED + "time.sleep(30)\n"), on_exit=exits.append, stop_grace=2.0
    )
    assert (await process.start()).success
    await process.stop()
    await asyncio.sleep(0.05)
    assert exits == []


@pytest.mark.asyncio
async def test_concurrent_stops_share_one_teardown():
    process = FfmpegProcess(script(OPENED + "time.sleep(30)\n"), stop_grace=2.0)
    assert (await process.start()).success
    await asyncio.gather(process.stop(), process.stop(), process.stop())
    assert process.state is ProcessState.STOPPED
    await process.stop()
    assert process.state is ProcessState.STOPPED


@pytest.mark.skipif(os.name == "nt", reason="POSIX signal handling")
@pytest.mark.asyncio
async def test_process_ignoring_sigterm_is_killed_after_grace():
    body = (
        "import signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('Stream mapping:', file=sys.stderr, flush=True)\n"
        "time.sleep(30)\n"
    )
    process = FfmpegProcess(script(body), stop_grace=0.3)
    assert (await process.start()).success
    await asyncio.wait_for(process.stop(), 5)
    assert process.state is ProcessState.STOPPED
    assert process.pid is None


@pytest.mark.asyncio
async def test_instance_is_single_use():
    process = FfmpegProcess(script("import sys\nsys.exit(0)\n"))
    await process.start()
    with pytest.raises(RuntimeError):
        await process.start()


def test_empty_command_rejected():
    with pytest.raises(ValueError):
        FfmpegProcess([])
