from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from .errors import RenderFailure, RenderFailures, RunCancelled
from .frames import Frame, parse_template
from .orchestrator import Runner, run_frameset
from .params import FrameParams

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 6 * 60 * 60


@dataclass
class JobRecord:
    job_id: str
    params: FrameParams
    template: List[str]
    status: str = "queued"
    progress: float = 0.0
    stage: str = "queued"
    message: str = ""
    error: Optional[str] = None
    result: Dict[str, object] = field(default_factory=dict)
    cancel_requested: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


JOBS: Dict[str, JobRecord] = {}
_LOCK = threading.RLock()


def cleanup_expired_jobs() -> None:
    now = time.time()
    with _LOCK:
        expired = [
            job_id
            for job_id, record in JOBS.items()
            if record.status not in {"queued", "running"} and now - record.created_at > JOB_TTL_SECONDS
        ]
        for job_id in expired:
            JOBS.pop(job_id, None)


def _set_job_state(
    job: JobRecord,
    *,
    status: Optional[str] = None,
    progress: Optional[float] = None,
    stage: Optional[str] = None,
    message: Optional[str] = None,
    error: Optional[str] = None,
    result: Optional[Dict[str, object]] = None,
) -> None:
    with _LOCK:
        if status is not None:
            job.status = status
        if progress is not None:
            job.progress = float(max(0.0, min(1.0, progress)))
        if stage is not None:
            job.stage = stage
        if message is not None:
            job.message = message
        if error is not None:
            job.error = error
        if result is not None:
            job.result = result
        job.updated_at = time.time()


def _active_job_for_output(params: FrameParams) -> Optional[JobRecord]:
    target = params.root_path.absolute() / params.output_dir
    with _LOCK:
        for job in JOBS.values():
            if job.status in {"queued", "running"} and job.params.root_path.absolute() / job.params.output_dir == target:
                return job
    return None


def _run_frame_job(job: JobRecord, runner: Optional[Runner] = None) -> None:
    total = job.params.frame_count

    def on_progress(done: int, _total: int, frame: Frame) -> None:
        _set_job_state(
            job,
            progress=done / float(total),
            stage=frame.kind.value,
            message=f"Rendered {frame.output_path} ({done}/{total})",
        )

    def should_cancel() -> bool:
        with _LOCK:
            return job.cancel_requested

    _set_job_state(job, status="running", stage="preflight", progress=0.0, message="Resolving renderer")
    try:
        report = run_frameset(
            job.params,
            job.template,
            runner=runner,
            should_cancel=should_cancel,
            on_progress=on_progress,
        )
    except RunCancelled:
        _set_job_state(job, status="cancelled", stage="cancelled", message="Job cancelled")
    except RenderFailures as exc:
        _set_job_state(
            job,
            status="failed",
            stage="failed",
            error=str(exc),
            result={"failed_frames": [f.frame.index for f in exc.failures]},
        )
    except RenderFailure as exc:
        _set_job_state(
            job,
            status="failed",
            stage="failed",
            error=str(exc),
            result={"failed_frames": [exc.frame.index], "stderr_tail": exc.stderr_tail},
        )
    except Exception as exc:
        logger.exception("Frame job %s failed", job.job_id)
        _set_job_state(job, status="failed", stage="failed", error=str(exc))
    else:
        _set_job_state(
            job,
            status="done",
            stage="done",
            progress=1.0,
            message=f"Rendered {len(report.results)} frames",
            result=report.to_dict(),
        )


def start_frame_job(
    params: FrameParams,
    template: Optional[Union[str, Sequence[str]]] = None,
    *,
    runner: Optional[Runner] = None,
) -> str:
    job = JobRecord(job_id=uuid.uuid4().hex, params=params, template=parse_template(template))
    with _LOCK:
        active = _active_job_for_output(params)
        if active is not None:
            raise ValueError(f"Job {active.job_id} is already writing to {params.output_dir}")
        JOBS[job.job_id] = job
    worker = threading.Thread(target=_run_frame_job, args=(job, runner), daemon=True)
    worker.start()
    return job.job_id


def get_job(job_id: str) -> Dict[str, object]:
    cleanup_expired_jobs()
    with _LOCK:
        job = JOBS.get(job_id)
        if job is None:
            raise ValueError("Unknown job_id")
        return {
            "job_id": job.job_id,
            "read_max": job.params.read_max,
            "template": list(job.template),
            "status": job.status,
            "progress": job.progress,
            "stage": job.stage,
            "message": job.message,
            "error": job.error,
            "result": dict(job.result),
            "created_at": job.created_at,
            "updated_at": job.updated_at,
            "cancel_requested": job.cancel_requested,
        }


def cancel_job(job_id: str) -> Dict[str, object]:
    with _LOCK:
        job = JOBS.get(job_id)
        if job is None:
            raise ValueError("Unknown job_id")
        job.cancel_requested = True
        job.updated_at = time.time()
    return {"job_id": job_id, "status": "cancelling"}
