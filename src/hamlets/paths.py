"""
Project paths.

The project root is the nearest ancestor holding `.project-root` (or, failing
that, pyproject.toml / .git). Scripts and library code take every location
from the constants below rather than from relative paths.
"""

from pathlib import Path
from typing import Optional

ROOT_MARKERS = (".project-root", "pyproject.toml", ".git")


def find_project_root(start_path: Optional[Path] = None) -> Path:
    """
    Walk upward from `start_path` (default: this module's directory) to the
    first directory containing a root marker.

    Raises:
        FileNotFoundError: If no ancestor holds a marker
    """
    start = Path(start_path) if start_path is not None else Path(__file__).resolve().parent

    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in ROOT_MARKERS):
            return candidate

    raise FileNotFoundError(f"No project root marker {list(ROOT_MARKERS)} above {start}")


PROJECT_ROOT = find_project_root()

CONFIG_DIR = PROJECT_ROOT / "configs"
PARAMS_FILE = CONFIG_DIR / "params.yml"

RAW_DIR = PROJECT_ROOT / "data" / "raw"
PROCESSED_DIR = PROJECT_ROOT / "data" / "processed"
HAMLETS_DIR = PROCESSED_DIR / "hamlets"
METADATA_DIR = PROCESSED_DIR / "metadata"

LOGS_DIR = PROJECT_ROOT / "logs"


def ensure_dirs_exist() -> None:
    """Create the output and log directories."""
    for directory in (HAMLETS_DIR, METADATA_DIR, LOGS_DIR):
        directory.mkdir(parents=True, exist_ok=True)
