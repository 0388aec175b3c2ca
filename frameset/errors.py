from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .frames import Frame


class FramesetError(RuntimeError):
    """Base class for fatal frame-set conditions."""


class BinaryNotFound(FramesetError):
    def __init__(self, candidates: Sequence[object]) -> None:
        self.candidates: Tuple[str, ...] = tuple(str(c) for c in candidates)
        tried = ", ".join(self.candidates) or "<none>"
        super().__init__(f"Renderer executable not found; tried: {tried}")


class MetadataWriteError(OSError):
    def __init__(self, path: object, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Cannot write metadata to '{self.path}': {reason}")


class RenderFailure(FramesetError):
    def __init__(
        self,
        frame: "Frame",
        exit_code: Optional[int],
        stderr_tail: str = "",
        *,
        timed_out: bool = False,
    ) -> None:
        self.frame = frame
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        elif exit_code is None:
            detail = "could not be started"
        else:
            detail = f"exited with status {exit_code}"
        message = f"{frame.kind.value} frame {frame.index} ({frame.output_path}) {detail}"
        if stderr_tail:
            message += f": {stderr_tail}"
        super().__init__(message)


class RenderFailures(FramesetError):
    def __init__(self, failures: Sequence[RenderFailure]) -> None:
        self.failures = list(failures)
        indices = ", ".join(str(f.frame.index) for f in self.failures)
        super().__init__(f"{len(self.failures)} frame(s) failed: {indices}")


class RunCancelled(FramesetError):
    pass
