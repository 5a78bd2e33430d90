from __future__ import annotations

from typing import Iterable, List

from .types import Detection


def fuse(*groups: Iterable[Detection]) -> List[Detection]:
    """
    Concatenate per-source detection lists, vehicles first by convention.

    Each group keeps its own order; there is no re-ranking or suppression
    across groups.
    """

    out: List[Detection] = []
    for group in groups:
        out.extend(group)
    return out
