import functools
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from infra.ffmpeg import (
    CompositorError,
    CompositorStartupError,
    CompositorUnexpectedExit,
    FfmpegNotFound,
    FfmpegProcess,
    OutputClassifier,
    ProcessState,
    require_binary,
)

from hlsmix.domains.compose.command import CompositorInput, build_compositor_command
from hlsmix.settings import ComposeSettings

ExitListener = Callable[[CompositorUnexpectedExit], Optional[Awaitable[Any]]]
CommandBuilder = Callable[[Sequence[CompositorInput]], List[str]]


@dataclass
class StartResult:
    success: bool
    pid: Optional[int] = None
    signature: Optional[str] = None
    error: Optional[CompositorError] = None
    inputs: List[CompositorInput] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    @property
    def reason(self) -> Optional[str]:
        return str(self.error) if self.error else None

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "pid": self.pid,
            "signature": self.signature,
            "error": self.reason,
            "error_type": type(self.error).__name__ if self.error else None,
            "inputs": [item.as_dict() for item in self.inputs],
            "started_at": self.started_at,
        }


class CompositorProcessSupervisor:
    """Owns the single compositor process.

    ``start`` always stops whatever is running first, and reports the
    outcome as a :class:`StartResult` instead of raising.
    """

    def __init__(
        self,
        settings: ComposeSettings,
        *,
        on_exit: Optional[ExitListener] = None,
        classifier: Optional[OutputClassifier] = None,
        binary: Optional[str] = None,
        command_builder: Optional[CommandBuilder] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._on_exit = on_exit
        self._classifier = classifier or OutputClassifier()
        self._binary = binary
        self._command_builder = command_builder
        self._logger = logger or logging.getLogger("hlsmix.compositor")
        self._process: Optional[FfmpegProcess] = None
        self._failed = False
        self._last_result: Optional[StartResult] = None
        self._last_exit: Optional[CompositorUnexpectedExit] = None
        self._launches = 0

    def set_exit_listener(self, listener: Optional[ExitListener]) -> None:
        self._on_exit = listener

    @property
    def state(self) -> ProcessState:
        if self._process is not None:
            return self._process.state
        return ProcessState.FAILED if self._failed else ProcessState.STOPPED

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def last_result(self) -> Optional[StartResult]:
        return self._last_result

    @property
    def last_exit(self) -> Optional[CompositorUnexpectedExit]:
        return self._last_exit

    @property
    def output(self) -> List[str]:
        return self._process.output if self._process else []

    def is_running(self) -> bool:
        return self._process is not None and self._process.running

    def build_command(self, inputs: Sequence[CompositorInput]) -> List[str]:
        if self._command_builder is not None:
            return list(self._command_builder(inputs))
        binary = self._binary or self._settings.ffmpeg_binary
        return build_compositor_command(inputs, self._settings, binary=binary)

    async def start(self, inputs: Sequence[CompositorInput]) -> StartResult:
        inputs = list(inputs)
        if not inputs:
            raise ValueError("compositor needs at least one input")
        await self.stop()
        self._failed = False
        self._last_exit = None
        try:
            cmd = self.build_command(inputs)
            require_binary(cmd[0])
        except FfmpegNotFound as exc:
            return self._record(
                StartResult(
                    False, error=CompositorStartupError(str(exc)), inputs=inputs
                )
            )
        self._settings.output_dir.mkdir(parents=True, exist_ok=True)
        self._launches += 1
        launch = self._launches
        process = FfmpegProcess(
            cmd,
            classifier=self._classifier,
            startup_timeout=self._settings.startup_timeout,
            stop_grace=self._settings.stop_grace,
            on_exit=functools.partial(self._handle_exit, launch),
            logger=self._logger,
        )
        self._process = process
        outcome = await process.start()
        if not outcome.success:
            if self._process is process:
                self._process = None
            return self._record(
                StartResult(False, error=outcome.error, inputs=inputs)
            )
        return self._record(
            StartResult(
                True, pid=outcome.pid, signature=outcome.signature, inputs=inputs
            )
        )

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return
        await process.stop()
        if self._process is process:
            self._process = None

    def _record(self, result: StartResult) -> StartResult:
        self._last_result = result
        self._failed = not result.success
        if result.success:
            self._logger.info(
                "compositor started with %s inputs (pid %s)",
                len(result.inputs),
                result.pid,
            )
        else:
            self._logger.error("compositor start failed: %s", result.reason)
        return result

    async def _handle_exit(
        self, launch: int, error: CompositorUnexpectedExit
    ) -> None:
        if launch != self._launches:
            return
        self._last_exit = error
        self._process = None
        if self._on_exit is None:
            return
        result = self._on_exit(error)
        if inspect.isawaitable(result):
            await result
