"""
Hashing utilities for run provenance and cache validation.

Every hamlet output gets a metadata sidecar with:
- input file hashes (shapefiles hashed together with their sidecar parts)
- config digest
- git commit, if available
- runtime library versions
- timestamp + run_id

The build script skips a run only when all hashes match.
"""

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from hamlets.io_utils import atomic_write_json, read_json
from hamlets.logging_utils import get_versions
from hamlets.paths import METADATA_DIR

# Shapefile component extensions hashed alongside the .shp
SHAPEFILE_PARTS = (".shp", ".shx", ".dbf", ".prj", ".cpg")


# =============================================================================
# Hashing
# =============================================================================

def hash_file(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """
    Compute the hash of a file.

    For a .shp path the sibling .shx/.dbf/.prj/.cpg files are folded in, since
    the attribute table lives in the .dbf.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {path}")

    parts = [path]
    if path.suffix.lower() == ".shp":
        parts = [path.with_suffix(ext) for ext in SHAPEFILE_PARTS if path.with_suffix(ext).exists()]

    h = hashlib.new(algorithm)
    for part in parts:
        with open(part, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                h.update(chunk)

    return h.hexdigest()


def hash_dict(d: Dict[str, Any], algorithm: str = "sha256") -> str:
    """Hash a dictionary through sorted-key JSON serialization."""
    s = json.dumps(d, sort_keys=True, default=str)
    h = hashlib.new(algorithm)
    h.update(s.encode("utf-8"))
    return h.hexdigest()


def get_git_commit() -> Optional[str]:
    """Current git commit hash, or None outside a git checkout."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    return None


# =============================================================================
# Metadata Sidecar
# =============================================================================

def sidecar_path_for(output_path: Union[str, Path], metadata_dir: Optional[Path] = None) -> Path:
    """Sidecar location for an output file."""
    metadata_dir = metadata_dir or METADATA_DIR
    return metadata_dir / f"{Path(output_path).stem}_metadata.json"


def create_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create the metadata dictionary for an output file.

    Args:
        output_path: Path to the output file
        inputs: Mapping of input names to file paths
        config: Configuration used for this run
        run_id: Unique run identifier
        extra: Additional metadata (metrics, anomalies)
    """
    input_hashes = {}
    for name, path in inputs.items():
        path = Path(path)
        if path.exists():
            input_hashes[name] = {"path": str(path), "hash": hash_file(path)}
        else:
            input_hashes[name] = {"path": str(path), "hash": None, "missing": True}

    metadata = {
        "output_file": str(output_path),
        "run_id": run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "inputs": input_hashes,
        "config_digest": hash_dict(config),
        "config": config,
        "git_commit": get_git_commit(),
        "versions": get_versions(),
    }

    if extra:
        metadata["extra"] = extra

    return metadata


def write_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
    metadata_dir: Optional[Path] = None,
) -> Path:
    """Write the metadata sidecar for an output and return its path."""
    metadata = create_metadata_sidecar(output_path, inputs, config, run_id, extra)
    sidecar_path = sidecar_path_for(output_path, metadata_dir)
    atomic_write_json(metadata, sidecar_path)
    return sidecar_path


def validate_cache(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    metadata_dir: Optional[Path] = None,
) -> bool:
    """
    True if the output exists and its sidecar matches the current config digest
    and every current input hash.
    """
    output_path = Path(output_path)
    sidecar_path = sidecar_path_for(output_path, metadata_dir)

    if not output_path.exists() or not sidecar_path.exists():
        return False

    metadata = read_json(sidecar_path)
    if metadata.get("config_digest") != hash_dict(config):
        return False

    cached_inputs = metadata.get("inputs", {})
    for name, path in inputs.items():
        path = Path(path)
        if name not in cached_inputs or not path.exists():
            return False
        if cached_inputs[name].get("hash") != hash_file(path):
            return False

    return True
