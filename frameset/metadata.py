from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .errors import MetadataWriteError
from .frames import Frame, plan_frames
from .params import FrameParams

logger = logging.getLogger(__name__)


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def build_metadata(read_max: int, frames: Optional[Sequence[Frame]] = None) -> Dict[str, Any]:
    if frames is None:
        frames = plan_frames(read_max)
    return {
        "read_max": int(read_max),
        "frame_count": len(frames),
        "frames": [frame.to_dict() for frame in frames],
    }


def write_metadata(
    config: Union[FrameParams, Mapping[str, Any]],
    destination: Union[str, Path],
) -> Path:
    """Publish the metadata record at ``destination``.

    The JSON is written to a sibling temporary file and moved into place, so a
    viewer polling the same path only ever sees a complete record.
    """
    if isinstance(config, FrameParams):
        record = build_metadata(config.read_max, plan_frames(config.read_max, config.output_dir))
    else:
        record = dict(config)
        if "read_max" not in record:
            raise ValueError("metadata requires read_max")

    path = Path(destination)
    directory = path.parent
    if not directory.is_dir():
        raise MetadataWriteError(path, f"directory '{directory}' does not exist")

    tmp_name: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=str(directory),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp_name = handle.name
            json.dump(record, handle)
            handle.flush()
            os.fsync(handle.fileno())
        # NamedTemporaryFile creates 0600; published metadata gets the usual file mode.
        os.chmod(tmp_name, _default_file_mode())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise MetadataWriteError(path, exc.strerror or str(exc)) from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass

    logger.info("Wrote metadata %s (read_max=%s)", path, record["read_max"])
    return path


def read_metadata(path: Union[str, Path]) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict) or "read_max" not in payload:
        raise ValueError(f"Metadata file '{path}' has no read_max field")
    return payload
