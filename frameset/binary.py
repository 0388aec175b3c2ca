from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import BinaryNotFound
from .params import DEFAULT_BINARY_CANDIDATES

logger = logging.getLogger(__name__)

PathArg = Union[str, Path]


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class BinaryResolver:
    """Pick the first renderer build that exists, in candidate order.

    The debug build wins over the release build whenever both are present.
    Relative candidates are looked up under ``root``.
    """

    def __init__(
        self,
        candidates: Sequence[PathArg] = DEFAULT_BINARY_CANDIDATES,
        root: Optional[PathArg] = None,
    ) -> None:
        self.root = Path(root) if root is not None else None
        self.candidates: List[Path] = [Path(c) for c in candidates]

    def _locate(self, candidate: Path) -> Path:
        if self.root is not None and not candidate.is_absolute():
            return self.root / candidate
        return candidate

    def resolve(self) -> Path:
        tried: List[Path] = []
        for candidate in self.candidates:
            path = self._locate(candidate)
            tried.append(path)
            if _is_executable(path):
                logger.info("Using renderer %s", path)
                return path
            logger.debug("Renderer candidate %s is missing or not executable", path)
        raise BinaryNotFound(tried)
