import asyncio
import contextlib
import inspect
import logging
import os
import subprocess
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, List, Optional, Sequence, Union

from .errors import (
    CompositorError,
    CompositorStartTimeout,
    CompositorStartupError,
    CompositorUnexpectedExit,
)
from .signatures import OutputClassifier, SignatureKind

_READ_LIMIT = 1024 * 1024

ExitCallback = Callable[[CompositorUnexpectedExit], Optional[Awaitable[Any]]]


class ProcessState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass
class StartOutcome:
    success: bool
    pid: Optional[int] = None
    signature: Optional[str] = None
    error: Optional[CompositorError] = None

    @property
    def reason(self) -> Optional[str]:
        return str(self.error) if self.error else None


class FfmpegProcess:
    """One launch of a long-running ffmpeg command.

    Liveness is judged from the diagnostic stream: ``start`` resolves once a
    line matches an opened or fatal signature, or when the startup window
    runs out. The instance is single use.
    """

    def __init__(
        self,
        cmd: Sequence[str],
        *,
        classifier: Optional[OutputClassifier] = None,
        startup_timeout: float = 15.0,
        stop_grace: float = 5.0,
        on_exit: Optional[ExitCallback] = None,
        tail_lines: int = 50,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not cmd:
            raise ValueError("empty command")
        self._cmd = [str(item) for item in cmd]
        self._classifier = classifier or OutputClassifier()
        self._startup_timeout = max(0.0, float(startup_timeout))
        self._stop_grace = max(0.0, float(stop_grace))
        self._on_exit = on_exit
        self._logger = logger or logging.getLogger("hlsmix.compositor")
        self._output_logger = self._logger.getChild("ffmpeg")
        self._tail: Deque[str] = deque(maxlen=max(1, tail_lines))
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._startup: Optional["asyncio.Future[Union[str, CompositorError]]"] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._expected_exit = False
        self._launched = False
        self._launch_pid: Optional[int] = None
        self._state = ProcessState.STOPPED

    @property
    def cmd(self) -> List[str]:
        return list(self._cmd)

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def output(self) -> List[str]:
        return list(self._tail)

    async def start(self) -> StartOutcome:
        if self._launched:
            raise RuntimeError("ffmpeg process already launched")
        self._launched = True
        self._state = ProcessState.STARTING
        self._startup = asyncio.get_running_loop().create_future()
        self._logger.info("starting ffmpeg: %s", " ".join(self._cmd))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                limit=_READ_LIMIT,
                creationflags=(
                    subprocess.CREATE_NEW_PROCESS_GROUP if os.name == "nt" else 0
                ),
            )
        except OSError as exc:
            self._state = ProcessState.FAILED
            error = CompositorStartupError(
                "failed to launch {}: {}".format(self._cmd[0], exc)
            )
            self._logger.error("%s", error)
            return StartOutcome(False, error=error)

        self._launch_pid = self._process.pid
        self._reader = asyncio.create_task(self._read_output(self._process))
        try:
            await asyncio.wait_for(
                asyncio.shield(self._startup), self._startup_timeout
            )
        except asyncio.TimeoutError:
            self._resolve_startup(
                CompositorStartTimeout(
                    "no startup signature within {:.1f}s".format(
                        self._startup_timeout
                    ),
                    self.output,
                )
            )
        except asyncio.CancelledError:
            await self._shutdown(ProcessState.FAILED)
            raise
        result = self._startup.result()
        if isinstance(result, CompositorError):
            self._logger.error("ffmpeg failed to start: %s", result)
            await self._shutdown(ProcessState.FAILED)
            return StartOutcome(False, error=result)
        self._logger.info(
            "ffmpeg running (pid %s, matched %s)", self._launch_pid, result
        )
        return StartOutcome(True, pid=self._launch_pid, signature=result)

    async def stop(self) -> None:
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(
                self._shutdown(ProcessState.STOPPED)
            )
        task = self._stop_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._stop_task is task:
                self._stop_task = None

    async def wait(self) -> Optional[int]:
        process = self._process
        if process is None:
            return None
        return await process.wait()

    def _resolve_startup(self, value: Union[str, CompositorError]) -> None:
        if self._startup is not None and not self._startup.done():
            self._startup.set_result(value)

    async def _read_output(self, process: asyncio.subprocess.Process) -> None:
        stream = process.stderr
        while stream is not None:
            try:
                raw = await stream.readline()
            except ValueError:
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            self._tail.append(line)
            self._output_logger.debug("%s", line)
            if self._startup is not None and not self._startup.done():
                self._classify(line)
        returncode = await process.wait()
        if self._startup is not None and not self._startup.done():
            self._resolve_startup(
                CompositorStartupError(
                    "ffmpeg exited with code {} before opening its output".format(
                        returncode
                    ),
                    self.output,
                    returncode=returncode,
                )
            )
            return
        if self._expected_exit:
            return
        if isinstance(self._startup.result(), CompositorError):
            return
        self._process = None
        self._state = ProcessState.STOPPED
        error = CompositorUnexpectedExit(
            "ffmpeg exited unexpectedly with code {}".format(returncode),
            self.output,
            returncode=returncode,
        )
        self._logger.error("%s", error)
        if self._on_exit is None:
            return
        try:
            result = self._on_exit(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self._logger.exception("ffmpeg exit callback failed")

    def _classify(self, line: str) -> None:
        signature = self._classifier.classify(line)
        if signature is None:
            return
        if signature.kind is SignatureKind.FATAL:
            self._resolve_startup(
                CompositorStartupError(
                    "ffmpeg reported {}: {}".format(signature.name, line),
                    self.output,
                    signature=signature.name,
                )
            )
            return
        self._state = ProcessState.RUNNING
        self._resolve_startup(signature.name)

    async def _shutdown(self, final_state: ProcessState) -> None:
        self._expected_exit = True
        process = self._process
        if process is not None and process.returncode is None:
            self._state = ProcessState.STOPPING
            self._logger.info("stopping ffmpeg (pid %s)", process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self._stop_grace)
            except asyncio.TimeoutError:
                self._logger.warning(
                    "ffmpeg did not exit within %.1fs, killing", self._stop_grace
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        reader = self._reader
        if (
            reader is not None
            and reader is not asyncio.current_task()
            and not reader.done()
        ):
            try:
                await asyncio.wait_for(reader, max(self._stop_grace, 1.0))
            except asyncio.TimeoutError:
                self._logger.warning("ffmpeg output reader did not finish")
        self._reader = None
        self._process = None
        self._state = final_state
