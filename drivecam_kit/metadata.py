from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Tuple, Union


_ENTRY = re.compile(r"^\s+(\d+)\s*:\s*(.+?)\s*$")
_INLINE = re.compile(r"^names\s*:\s*\[(.*)\]\s*$")


def _unquote(value: str) -> str:
    return value.strip().strip("'\"")


def load_class_names(metadata_path: Union[str, Path]) -> Tuple[str, ...]:
    """
    Read the class table from a model's `metadata.yaml`.

    Two layouts of the `names` key are understood, the indented mapping

        names:
          0: crossing
          1: near_crossing

    and the flow list `names: [crossing, near_crossing]`. Other keys are
    ignored. Mapping ids must run 0..N-1 since the table index is the model's
    class slot. No PyYAML needed.
    """

    path = Path(metadata_path)
    mapping: Dict[int, str] = {}
    inline: List[str] = []
    in_names = False

    for raw in path.read_text(encoding="utf-8").splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue

        flow = _INLINE.match(raw)
        if flow:
            inline = [_unquote(v) for v in flow.group(1).split(",") if v.strip()]
            in_names = False
            continue
        if raw.rstrip() == "names:":
            in_names = True
            continue
        if not raw[0].isspace():
            # next top-level key
            in_names = False
            continue

        entry = _ENTRY.match(raw)
        if in_names and entry:
            mapping[int(entry.group(1))] = _unquote(entry.group(2))

    if inline:
        return tuple(inline)
    if not mapping:
        raise ValueError(f"No class names found in {path}")
    missing = sorted(set(range(max(mapping) + 1)) - set(mapping))
    if missing:
        raise ValueError(f"Class ids are not contiguous in {path}, missing {missing}")
    return tuple(mapping[i] for i in range(len(mapping)))
