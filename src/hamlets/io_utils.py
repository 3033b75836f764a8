"""
File I/O for hamlet inputs and outputs.

Outputs are staged next to their target and moved into place only once fully
written, so a failed run leaves either the previous file or nothing. A
shapefile is several files; it is staged in a temporary sibling directory and
each part is moved over individually.
"""

import json
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Union

import geopandas as gpd
import pandas as pd
import yaml


# Vector drivers by suffix; .parquet goes through GeoParquet instead
GEO_DRIVERS = {
    ".geojson": "GeoJSON",
    ".gpkg": "GPKG",
    ".shp": "ESRI Shapefile",
}


@contextmanager
def _staged_path(target_path: Path):
    """Yield a fresh, non-existent sibling path; on success it replaces `target_path`."""
    target_path.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        suffix=target_path.suffix,
        prefix=f".{target_path.stem}_",
        dir=target_path.parent,
    )
    os.close(fd)
    staged = Path(name)
    # Writers such as GPKG refuse to open the empty placeholder
    staged.unlink()

    try:
        yield staged
        staged.replace(target_path)
    finally:
        if staged.exists():
            staged.unlink()


def _write_shapefile(gdf: gpd.GeoDataFrame, target_path: Path, **kwargs) -> None:
    target_path.parent.mkdir(parents=True, exist_ok=True)
    staging_dir = Path(tempfile.mkdtemp(prefix=f".{target_path.stem}_", dir=target_path.parent))
    try:
        gdf.to_file(staging_dir / target_path.name, driver=GEO_DRIVERS[".shp"], **kwargs)
        for part in staging_dir.iterdir():
            part.replace(target_path.parent / part.name)
    finally:
        shutil.rmtree(staging_dir, ignore_errors=True)


def atomic_write_gdf(
    gdf: gpd.GeoDataFrame,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """
    Write a GeoDataFrame as .shp, .gpkg, .geojson or .parquet (GeoParquet).

    GeoPackage layers are named after the target file (`hamlets.gpkg` holds
    layer `hamlets`), not after the staging file; pass `layer=` to override.

    Raises:
        ValueError: On an unsupported suffix
    """
    target_path = Path(target_path)
    suffix = target_path.suffix.lower()
    if suffix != ".parquet" and suffix not in GEO_DRIVERS:
        raise ValueError(f"Unsupported geo format: {suffix}")

    if suffix == ".shp":
        _write_shapefile(gdf, target_path, **kwargs)
        return

    if suffix == ".gpkg":
        kwargs.setdefault("layer", target_path.stem)

    with _staged_path(target_path) as staged:
        if suffix == ".parquet":
            gdf.to_parquet(staged, **kwargs)
        else:
            gdf.to_file(staged, driver=GEO_DRIVERS[suffix], **kwargs)


def atomic_write_json(data: Any, target_path: Union[str, Path], **kwargs) -> None:
    """Write JSON (indented; non-serializable values via str())."""
    kwargs.setdefault("indent", 2)
    kwargs.setdefault("default", str)

    with _staged_path(Path(target_path)) as staged:
        with open(staged, "w", encoding="utf-8") as f:
            json.dump(data, f, **kwargs)


def read_yaml(path: Union[str, Path]) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def read_json(path: Union[str, Path]) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_gdf(path: Union[str, Path], **kwargs) -> gpd.GeoDataFrame:
    """
    Read a vector layer (any OGR format, or GeoParquet by suffix).

    Attribute types come from the source: shapefile numeric fields arrive as
    int/float, so ids stored as large floats in a .dbf may already have lost
    digits. GeoPackage or GeoParquet sources keep text ids intact.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Geo input not found: {path}")

    if path.suffix.lower() == ".parquet":
        return gpd.read_parquet(path, **kwargs)
    return gpd.read_file(path, **kwargs)


def read_df(path: Union[str, Path], string_columns: Iterable[str] = ()) -> pd.DataFrame:
    """
    Read a CSV or Parquet table, keeping `string_columns` as text.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On an unsupported suffix
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table input not found: {path}")

    string_columns = list(string_columns)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, dtype={col: str for col in string_columns})
    if suffix == ".parquet":
        df = pd.read_parquet(path)
        for col in string_columns:
            if col in df.columns:
                df[col] = df[col].astype("string")
        return df
    raise ValueError(f"Unsupported table format: {suffix}")
