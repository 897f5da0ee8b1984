from typing import Optional, Sequence


class CompositorError(RuntimeError):
    def __init__(self, message: str, output: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.output = list(output or [])


class CompositorStartTimeout(CompositorError):
    pass


class CompositorStartupError(CompositorError):
    def __init__(
        self,
        message: str,
        output: Optional[Sequence[str]] = None,
        *,
        signature: Optional[str] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, output)
        self.signature = signature
        self.returncode = returncode


class CompositorUnexpectedExit(CompositorError):
    def __init__(
        self,
        message: str,
        output: Optional[Sequence[str]] = None,
        *,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, output)
        self.returncode = returncode
