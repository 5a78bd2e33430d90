from __future__ import annotations

import sys
from pathlib import Path


def _add_checkout_to_path() -> None:
    # Running from a plain checkout (no `pip install -e .`) still needs
    # `import drivecam_kit` to resolve.
    root = str(Path(__file__).resolve().parents[1])
    if root not in sys.path:
        sys.path.insert(0, root)


_add_checkout_to_path()
