"""CLI command implementations.

Each module groups related commands; ``tessera.cli`` registers them on the app.
"""

from .memory import calibration, consensus, patterns, recommend, stats
from .sync import export, import_, merge, validate

__all__ = [
    # memory.py
    "calibration",
    "consensus",
    "patterns",
    "recommend",
    "stats",
    # sync.py
    "export",
    "import_",
    "merge",
    "validate",
]
