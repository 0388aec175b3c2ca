from __future__ import annotations

import enum
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .params import DEFAULT_THREADS

RULER_SENTINEL_INDEX = 10000
SINGLE_READ_FLAG = "-*"
COVERAGE_FLAG = "-A"
READ_INDEX_FLAG = "-_"
OUTPUT_FLAG = "-o"
VIS_SUBCOMMAND = "vis"

DEFAULT_TEMPLATE: List[str] = [
    "-a", "result_b1_md.bam",
    "-s",
    "-S",
    "-p",
    "-r", "chr1:8869816-8899900",
    "-l",
    "-U",
    "-y", "20",
]


class FrameKind(enum.Enum):
    RULER = "ruler"
    READ = "read"
    COVERAGE = "coverage"


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    index: int
    output_path: str
    read_index: Optional[int] = None

    @property
    def renderer_index(self) -> int:
        if self.kind is FrameKind.RULER:
            return RULER_SENTINEL_INDEX
        if self.kind is FrameKind.READ:
            return int(self.read_index or 0)
        return 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "read_index": self.read_index,
            "path": self.output_path,
        }


def frame_path(output_dir: Union[str, Path], slot: int) -> str:
    return (Path(output_dir) / f"{slot}.png").as_posix()


def plan_frames(read_max: int, output_dir: Union[str, Path] = "dnd") -> List[Frame]:
    """Return the full frame order: ruler, reads ``0..read_max``, coverage.

    Slot ``0`` is the ruler, read ``i`` lands in slot ``i + 1`` and the
    coverage frame takes slot ``read_max + 2``.
    """
    if read_max < 0:
        raise ValueError("read_max must be >= 0")

    frames = [Frame(FrameKind.RULER, 0, frame_path(output_dir, 0))]
    for read_index in range(read_max + 1):
        slot = read_index + 1
        frames.append(Frame(FrameKind.READ, slot, frame_path(output_dir, slot), read_index=read_index))
    coverage_slot = read_max + 2
    frames.append(Frame(FrameKind.COVERAGE, coverage_slot, frame_path(output_dir, coverage_slot)))
    return frames


def parse_template(args: Optional[Union[str, Sequence[str]]]) -> List[str]:
    """Turn caller input into the renderer template.

    A string is split with shell quoting rules; a list is taken as already
    split and kept element for element. Empty input selects the default.
    Raises ``ValueError`` for unbalanced quotes.
    """
    if not args:
        return list(DEFAULT_TEMPLATE)
    if isinstance(args, str):
        return shlex.split(args)
    return [str(arg) for arg in args]


def build_frame_command(
    binary: Union[str, Path],
    frame: Frame,
    template: Sequence[str],
    *,
    threads: int = DEFAULT_THREADS,
) -> List[str]:
    cmd: List[str] = [
        str(binary),
        f"-t{threads}",
        VIS_SUBCOMMAND,
        READ_INDEX_FLAG,
        str(frame.renderer_index),
    ]
    cmd.extend(template)
    if frame.kind is FrameKind.READ:
        cmd.append(SINGLE_READ_FLAG)
    elif frame.kind is FrameKind.COVERAGE:
        cmd.append(COVERAGE_FLAG)
    cmd.extend([OUTPUT_FLAG, frame.output_path])
    return cmd
