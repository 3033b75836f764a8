"""
Schema validation for canonical tables.

Canonical tables (administrative units, buildings, hamlets) are validated for
columns, dtypes and NA rules before they are written, so schema drift becomes
an immediate local failure.

Identifier columns (building_id, admin_unit_id) are always pandas "string"
dtype: ids are opaque values and must never pass through float conversion.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Set, Union

import geopandas as gpd
import pandas as pd


# =============================================================================
# Schema Definition
# =============================================================================

@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: Optional[str] = None  # "string", "Int64", "float64", "bool", "geometry"
    nullable: bool = True
    unique: bool = False
    allowed_values: Optional[Set[Any]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


@dataclass
class Schema:
    """Schema specification for a DataFrame or GeoDataFrame."""
    name: str
    columns: List[ColumnSpec]
    required_columns: List[str] = field(default_factory=list)
    row_count: Optional[int] = None
    min_rows: int = 0

    def __post_init__(self):
        if not self.required_columns:
            self.required_columns = [c.name for c in self.columns if not c.nullable]


class SchemaError(Exception):
    """Raised when schema validation fails."""
    pass


# =============================================================================
# Canonical Schemas
# =============================================================================

ADMIN_UNITS_SCHEMA = Schema(
    name="admin_units",
    columns=[
        ColumnSpec("admin_unit_id", dtype="string", nullable=False, unique=True),
        ColumnSpec("admin_name", nullable=True),
        ColumnSpec("mean_household_size", dtype="float64", nullable=False, min_value=0),
        ColumnSpec("total_population", dtype="Int64", nullable=False, min_value=0),
        ColumnSpec("household_rate", dtype="float64", nullable=False, min_value=0),
        ColumnSpec("geometry", dtype="geometry", nullable=False),
    ],
    min_rows=1,
)

BUILDINGS_SCHEMA = Schema(
    name="buildings",
    columns=[
        ColumnSpec("building_id", dtype="string", nullable=False, unique=True),
        ColumnSpec("admin_unit_id", dtype="string", nullable=True),
        ColumnSpec("cluster_id", dtype="Int64", nullable=False, min_value=1),
        ColumnSpec("household_size", dtype="Int64", nullable=True, min_value=1),
        ColumnSpec("geometry", dtype="geometry", nullable=False),
    ],
    min_rows=1,
)

HAMLETS_SCHEMA = Schema(
    name="hamlets",
    columns=[
        ColumnSpec("cluster_id", dtype="Int64", nullable=False, unique=True, min_value=1),
        ColumnSpec("member_count", dtype="Int64", nullable=False, min_value=0),
        ColumnSpec("admin_unit_id", dtype="string", nullable=True),
        ColumnSpec("population_estimate", dtype="Int64", nullable=False, min_value=0),
        ColumnSpec("n_unsized", dtype="Int64", nullable=False, min_value=0),
        ColumnSpec("admin_mismatch", dtype="bool", nullable=False),
        ColumnSpec("geometry", dtype="geometry", nullable=True),
    ],
    min_rows=1,
)


# =============================================================================
# Validation Functions
# =============================================================================

def validate_column(
    df: pd.DataFrame,
    spec: ColumnSpec,
    context: str = "",
) -> List[str]:
    """
    Validate a single column against its specification.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    col_name = spec.name

    if col_name not in df.columns:
        errors.append(f"Missing column: {col_name}")
        return errors

    col = df[col_name]

    if spec.dtype is not None:
        if spec.dtype == "geometry":
            if not isinstance(df, gpd.GeoDataFrame):
                errors.append(f"Expected GeoDataFrame for geometry column {col_name}")
        elif spec.dtype == "Int64":
            if not pd.api.types.is_integer_dtype(col):
                errors.append(f"Column {col_name}: expected Int64, got {col.dtype}")
        elif spec.dtype == "float64":
            if not pd.api.types.is_float_dtype(col):
                errors.append(f"Column {col_name}: expected float64, got {col.dtype}")
        elif spec.dtype == "string":
            if not pd.api.types.is_string_dtype(col):
                errors.append(f"Column {col_name}: expected string, got {col.dtype}")
        elif spec.dtype == "bool":
            if not pd.api.types.is_bool_dtype(col):
                errors.append(f"Column {col_name}: expected bool, got {col.dtype}")

    if not spec.nullable and col.isna().any():
        na_count = col.isna().sum()
        errors.append(f"Column {col_name}: {na_count} NA values not allowed")

    if spec.unique and col.dropna().duplicated().any():
        dup_count = col.dropna().duplicated().sum()
        errors.append(f"Column {col_name}: {dup_count} duplicate values not allowed")

    if spec.allowed_values is not None:
        invalid = ~col.isin(spec.allowed_values) & col.notna()
        if invalid.any():
            invalid_vals = col[invalid].unique()[:5]
            errors.append(f"Column {col_name}: invalid values {list(invalid_vals)}")

    if spec.min_value is not None:
        below_min = (col.dropna() < spec.min_value)
        if below_min.any():
            errors.append(f"Column {col_name}: values below min {spec.min_value}")

    if spec.max_value is not None:
        above_max = (col.dropna() > spec.max_value)
        if above_max.any():
            errors.append(f"Column {col_name}: values above max {spec.max_value}")

    return errors


def validate_schema(
    df: Union[pd.DataFrame, gpd.GeoDataFrame],
    schema: Schema,
    context: str = "",
    raise_on_error: bool = True,
) -> List[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate
        schema: Schema specification
        context: Optional context for error messages
        raise_on_error: If True, raise SchemaError on validation failure

    Returns:
        List of error messages (empty if valid)

    Raises:
        SchemaError: If raise_on_error=True and validation fails
    """
    errors = []
    ctx = f" ({context})" if context else ""

    if schema.row_count is not None and len(df) != schema.row_count:
        errors.append(f"Expected {schema.row_count} rows, got {len(df)}{ctx}")

    if len(df) < schema.min_rows:
        errors.append(f"Expected at least {schema.min_rows} rows, got {len(df)}{ctx}")

    missing = set(schema.required_columns) - set(df.columns)
    if missing:
        errors.append(f"Missing required columns: {missing}{ctx}")

    for col_spec in schema.columns:
        errors.extend(validate_column(df, col_spec, context))

    if errors and raise_on_error:
        raise SchemaError(f"Schema validation failed for '{schema.name}':\n" + "\n".join(errors))

    return errors


def ensure_id_dtype(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """
    Ensure identifier columns are pandas "string" dtype.

    Integral floats (e.g. 1203.0 from a shapefile attribute table) are rendered
    without the trailing ".0" so ids round-trip unchanged. This cannot restore
    digits a float field already lost: ids beyond 2**53 must come from a text
    field (GeoPackage, GeoParquet or a character .dbf column).

    Args:
        df: DataFrame with identifier columns
        columns: Identifier column names to convert (missing ones are ignored)

    Returns:
        Copy of df with the id columns as "string" dtype
    """
    df = df.copy()
    for col in columns:
        if col not in df.columns:
            continue
        values = df[col]
        if pd.api.types.is_float_dtype(values):
            non_na = values.dropna()
            if (non_na == non_na.round()).all():
                values = values.astype("Int64")
        df[col] = values.astype("string")
    return df


# =============================================================================
# Merge Validation
# =============================================================================

def validate_merge(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: Union[str, List[str]],
    how: str = "left",
    validate: str = "one_to_one",
    context: str = "",
) -> pd.DataFrame:
    """
    Perform a merge with validation.

    Every join states its `how=` explicitly and uses validate= to catch
    duplicated keys.

    Raises:
        ValueError: If merge validation fails
    """
    try:
        return pd.merge(left, right, on=on, how=how, validate=validate)
    except pd.errors.MergeError as e:
        raise ValueError(f"Merge validation failed ({context}): {e}")

