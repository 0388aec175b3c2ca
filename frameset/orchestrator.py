from __future__ import annotations

import enum
import logging
import subprocess
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .binary import BinaryResolver
from .errors import RenderFailure, RenderFailures, RunCancelled
from .frames import DEFAULT_TEMPLATE, Frame, build_frame_command, plan_frames
from .metadata import write_metadata
from .params import FrameParams

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 1500

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
ProgressCallback = Callable[[int, int, Frame], None]
CancelCheck = Callable[[], bool]


class FailurePolicy(str, enum.Enum):
    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


class StalePolicy(str, enum.Enum):
    KEEP = "keep"
    PURGE = "purge"


@dataclass
class FrameResult:
    frame: Frame
    command: List[str]
    returncode: Optional[int]
    attempts: int
    elapsed: float


@dataclass
class RunReport:
    binary: str
    read_max: int
    frames: List[Frame]
    results: List[FrameResult] = field(default_factory=list)
    failures: List[RenderFailure] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    metadata_path: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures and len(self.results) == len(self.frames)

    def to_dict(self) -> Dict[str, object]:
        return {
            "binary": self.binary,
            "read_max": self.read_max,
            "frame_count": len(self.frames),
            "rendered": [r.frame.output_path for r in self.results],
            "failures": [
                {
                    "index": f.frame.index,
                    "kind": f.frame.kind.value,
                    "exit_code": f.exit_code,
                    "timed_out": f.timed_out,
                    "stderr_tail": f.stderr_tail,
                }
                for f in self.failures
            ],
            "removed": list(self.removed),
            "metadata_path": self.metadata_path,
            "elapsed": self.elapsed,
        }


def _run_command(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout_seconds: Optional[float] = None,
) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(
        list(args),
        cwd=str(cwd),
        check=False,
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
    )


def _tail(text: Optional[str]) -> str:
    stripped = (text or "").strip()
    return stripped[-STDERR_TAIL_CHARS:]


class FrameOrchestrator:
    """Run the renderer once per frame and collect the outcome.

    Frames are issued in order (ruler, reads, coverage). With ``workers == 1``
    every invocation waits for the previous process to exit; with more workers
    the same commands are spread over a thread pool and the run still waits for
    all of them.
    """

    def __init__(
        self,
        binary: Union[str, Path],
        template: Sequence[str],
        params: FrameParams,
        *,
        runner: Optional[Runner] = None,
    ) -> None:
        self.binary = Path(binary).absolute()
        self.template = list(template)
        self.params = params
        self.policy = FailurePolicy(params.failure_policy)
        self._runner = runner
        self.report = RunReport(
            binary=str(self.binary),
            read_max=params.read_max,
            frames=plan_frames(params.read_max, params.output_dir),
        )

    def commands(self) -> List[Tuple[Frame, List[str]]]:
        return [
            (frame, build_frame_command(self.binary, frame, self.template, threads=self.params.threads))
            for frame in self.report.frames
        ]

    def _render(self, frame: Frame, cmd: List[str]) -> FrameResult:
        runner = self._runner or _run_command
        attempts = self.params.retries + 1
        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            logger.debug("Frame %s attempt %s: %s", frame.index, attempt, cmd)
            try:
                completed = runner(cmd, cwd=self.params.root_path, timeout_seconds=self.params.timeout_seconds)
            except subprocess.TimeoutExpired as exc:
                stderr = exc.stderr.decode("utf-8", "replace") if isinstance(exc.stderr, bytes) else exc.stderr
                failure = RenderFailure(frame, None, _tail(stderr), timed_out=True)
            except OSError as exc:
                # Renderer could not be launched (bad executable format or permissions).
                failure = RenderFailure(frame, None, str(exc))
            else:
                if completed.returncode == 0:
                    elapsed = time.monotonic() - started
                    logger.info("Rendered %s frame -> %s", frame.kind.value, frame.output_path)
                    return FrameResult(frame, cmd, 0, attempt, elapsed)
                failure = RenderFailure(frame, completed.returncode, _tail(completed.stderr))
            if attempt >= attempts:
                raise failure
            logger.warning("%s; retrying (%s/%s)", failure, attempt, attempts - 1)

    def _record_failure(self, failure: RenderFailure) -> None:
        logger.error("%s", failure)
        self.report.failures.append(failure)

    def run(
        self,
        should_cancel: Optional[CancelCheck] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunReport:
        started = time.monotonic()
        try:
            if self.params.workers > 1:
                self._run_parallel(should_cancel, on_progress)
            else:
                self._run_sequential(should_cancel, on_progress)
        finally:
            self.report.elapsed = time.monotonic() - started

        if self.report.failures:
            raise RenderFailures(self.report.failures)
        logger.info("Rendered %s frames in %.1fs", len(self.report.results), self.report.elapsed)
        return self.report

    def _run_sequential(self, should_cancel: Optional[CancelCheck], on_progress: Optional[ProgressCallback]) -> None:
        total = len(self.report.frames)
        for done, (frame, cmd) in enumerate(self.commands(), start=1):
            if should_cancel is not None and should_cancel():
                raise RunCancelled("Frame rendering cancelled")
            try:
                self.report.results.append(self._render(frame, cmd))
            except RenderFailure as failure:
                self._record_failure(failure)
                if self.policy is FailurePolicy.FAIL_FAST:
                    raise
            if on_progress is not None:
                on_progress(done, total, frame)

    def _run_parallel(self, should_cancel: Optional[CancelCheck], on_progress: Optional[ProgressCallback]) -> None:
        total = len(self.report.frames)
        done = 0

        def job(frame: Frame, cmd: List[str]) -> FrameResult:
            if should_cancel is not None and should_cancel():
                raise RunCancelled("Frame rendering cancelled")
            return self._render(frame, cmd)

        with ThreadPoolExecutor(max_workers=self.params.workers, thread_name_prefix="frame") as pool:
            pending: Dict[Future, Frame] = {pool.submit(job, frame, cmd): frame for frame, cmd in self.commands()}
            while pending:
                finished, _ = wait(list(pending), return_when=FIRST_EXCEPTION)
                for future in finished:
                    frame = pending.pop(future)
                    try:
                        self.report.results.append(future.result())
                    except RenderFailure as failure:
                        self._record_failure(failure)
                        if self.policy is FailurePolicy.FAIL_FAST:
                            for other in pending:
                                other.cancel()
                            raise
                    except RunCancelled:
                        for other in pending:
                            other.cancel()
                        raise
                    done += 1
                    if on_progress is not None:
                        on_progress(done, total, frame)
        self.report.results.sort(key=lambda result: result.frame.index)


def purge_stale_frames(output_dir: Union[str, Path], read_max: int) -> List[Path]:
    """Delete numbered frames beyond the coverage slot of ``read_max``."""
    directory = Path(output_dir)
    if not directory.is_dir():
        return []
    last_slot = read_max + 2
    removed: List[Path] = []
    for path in sorted(directory.glob("*.png")):
        if path.stem.isdigit() and int(path.stem) > last_slot:
            path.unlink()
            removed.append(path)
    if removed:
        logger.info("Removed %s stale frame(s) from %s", len(removed), directory)
    return removed


def run_frameset(
    params: FrameParams,
    template: Optional[Sequence[str]] = None,
    *,
    runner: Optional[Runner] = None,
    should_cancel: Optional[CancelCheck] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> RunReport:
    """Resolve the renderer, publish metadata, then render every frame.

    ``template`` is an already split argument list and reaches the renderer
    as given; ``None`` or an empty list selects the default template.
    """
    template = list(template) if template else list(DEFAULT_TEMPLATE)
    binary = BinaryResolver(params.binary_candidates, root=params.root_path).resolve()

    output_dir = params.root_path / params.output_dir
    if params.create_output_dir:
        output_dir.mkdir(parents=True, exist_ok=True)

    removed: List[Path] = []
    if StalePolicy(params.stale_policy) is StalePolicy.PURGE:
        removed = purge_stale_frames(output_dir, params.read_max)

    metadata_path = write_metadata(params, params.metadata_path)

    orchestrator = FrameOrchestrator(binary, template, params, runner=runner)
    orchestrator.report.removed = [str(path) for path in removed]
    orchestrator.report.metadata_path = str(metadata_path)
    return orchestrator.run(should_cancel=should_cancel, on_progress=on_progress)
