from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Tuple

DEFAULT_READ_MAX = 20
DEFAULT_THREADS = 12
DEFAULT_OUTPUT_DIR = "dnd"
DEFAULT_METADATA_NAME = "reads.json"
DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_BINARY_CANDIDATES: Tuple[str, ...] = (
    "target/debug/hgb",
    "target/release/hgb",
)

FAILURE_POLICIES = {"fail_fast", "best_effort"}
STALE_POLICIES = {"keep", "purge"}
SERVER_ONLY_FIELDS = ("root", "binary_candidates")


@dataclass(frozen=True)
class FrameParams:
    read_max: int = DEFAULT_READ_MAX
    threads: int = DEFAULT_THREADS
    root: str = "."
    output_dir: str = DEFAULT_OUTPUT_DIR
    metadata_name: str = DEFAULT_METADATA_NAME
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS
    retries: int = 0
    workers: int = 1
    failure_policy: str = "fail_fast"
    stale_policy: str = "keep"
    create_output_dir: bool = False
    binary_candidates: Tuple[str, ...] = DEFAULT_BINARY_CANDIDATES

    @property
    def frame_count(self) -> int:
        return self.read_max + 3

    @property
    def root_path(self) -> Path:
        return Path(self.root)

    @property
    def metadata_path(self) -> Path:
        return self.root_path / self.output_dir / self.metadata_name

    @classmethod
    def from_cli_args(cls, args: Any) -> "FrameParams":
        candidates = list(DEFAULT_BINARY_CANDIDATES)
        if getattr(args, "binary", None):
            candidates.insert(0, str(args.binary))
        return cls(
            read_max=to_int(args.read_max, min_value=0, name="read_max"),
            threads=to_int(args.threads, positive=True, name="threads"),
            root=str(args.root),
            output_dir=str(args.output_dir),
            metadata_name=str(args.metadata_name),
            timeout_seconds=parse_timeout(args.timeout),
            retries=to_int(args.retries, min_value=0, name="retries"),
            workers=to_int(args.workers, positive=True, name="workers"),
            failure_policy=parse_choice(args.failure_policy, FAILURE_POLICIES, name="failure_policy"),
            stale_policy=parse_choice(args.stale_policy, STALE_POLICIES, name="stale_policy"),
            create_output_dir=bool(args.mkdir),
            binary_candidates=tuple(candidates),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, root: str = ".") -> "FrameParams":
        """Build params from an HTTP payload.

        ``root`` and the renderer candidates are fixed by the server; a payload
        naming either is rejected so clients cannot pick what gets executed.
        """
        def require(name: str, default: Any) -> Any:
            return payload.get(name, default)

        for key in SERVER_ONLY_FIELDS:
            if key in payload:
                raise ValueError(f"{key} is configured on the server and cannot be set per request")

        return cls(
            read_max=to_int(require("read_max", DEFAULT_READ_MAX), min_value=0, name="read_max"),
            threads=to_int(require("threads", DEFAULT_THREADS), positive=True, name="threads"),
            root=str(root),
            output_dir=parse_relative_dir(require("output_dir", DEFAULT_OUTPUT_DIR), name="output_dir"),
            metadata_name=parse_file_name(require("metadata_name", DEFAULT_METADATA_NAME), name="metadata_name"),
            timeout_seconds=parse_timeout(require("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            retries=to_int(require("retries", 0), min_value=0, name="retries"),
            workers=to_int(require("workers", 1), positive=True, name="workers"),
            failure_policy=parse_choice(require("failure_policy", "fail_fast"), FAILURE_POLICIES, name="failure_policy"),
            stale_policy=parse_choice(require("stale_policy", "keep"), STALE_POLICIES, name="stale_policy"),
            create_output_dir=to_bool(require("create_output_dir", False), name="create_output_dir"),
        )


def parse_relative_dir(value: Any, *, name: str) -> str:
    text = str(value).strip()
    path = PurePosixPath(text.replace("\\", "/"))
    if not text or path.is_absolute() or ".." in path.parts:
        raise ValueError(f"{name} must be a relative path inside the frame root")
    return text


def parse_file_name(value: Any, *, name: str) -> str:
    text = str(value).strip()
    if not text or text in {".", ".."} or "/" in text or "\\" in text:
        raise ValueError(f"{name} must be a plain file name")
    return text


def parse_timeout(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in {"none", "null", "off", ""}:
        return None
    return to_float(value, positive=True, name="timeout_seconds")


def parse_choice(value: Any, choices: set, *, name: str) -> str:
    normalized = str(value).strip().lower().replace("-", "_")
    if normalized not in choices:
        raise ValueError(f"{name} must be one of: {', '.join(sorted(choices))}")
    return normalized


def to_bool(value: Any, *, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in {0, 1}:
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "y", "on"}:
            return True
        if normalized in {"false", "0", "no", "n", "off", ""}:
            return False
    raise ValueError(f"{name} must be a boolean")


def to_float(
    value: Any,
    *,
    name: str,
    positive: bool = False,
    min_value: Optional[float] = None,
) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a floating-point number") from exc
    if positive and parsed <= 0:
        raise ValueError(f"{name} must be positive")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{name} must be >= {min_value}")
    return parsed


def to_int(
    value: Any,
    *,
    name: str,
    positive: bool = False,
    min_value: Optional[int] = None,
) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if positive and parsed <= 0:
        raise ValueError(f"{name} must be positive")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{name} must be >= {min_value}")
    return parsed
