"""Frame-set orchestration for the hgb renderer."""

from .binary import BinaryResolver
from .errors import (
    BinaryNotFound,
    FramesetError,
    MetadataWriteError,
    RenderFailure,
    RenderFailures,
    RunCancelled,
)
from .frames import DEFAULT_TEMPLATE, Frame, FrameKind, build_frame_command, parse_template, plan_frames
from .metadata import read_metadata, write_metadata
from .orchestrator import (
    FailurePolicy,
    FrameOrchestrator,
    RunReport,
    StalePolicy,
    purge_stale_frames,
    run_frameset,
)
from .params import FrameParams

__all__ = [
    "BinaryResolver",
    "BinaryNotFound",
    "FramesetError",
    "MetadataWriteError",
    "RenderFailure",
    "RenderFailures",
    "RunCancelled",
    "DEFAULT_TEMPLATE",
    "Frame",
    "FrameKind",
    "build_frame_command",
    "parse_template",
    "plan_frames",
    "read_metadata",
    "write_metadata",
    "FailurePolicy",
    "FrameOrchestrator",
    "RunReport",
    "StalePolicy",
    "purge_stale_frames",
    "run_frameset",
    "FrameParams",
]
