#!/usr/bin/env python3
"""
01_build_hamlets.py

Build empirical hamlets from building centroids and synthesize their
population from district census aggregates.

Steps:
- Load building points, building polygons, administrative boundaries and the
  administrative statistics table (paths and column names from params.yml)
- Drop named points (recognised places) and trim attributes
- Join statistics to boundaries (inner join, dropped units reported)
- Match buildings to units, cluster into K = round(N / R) hamlets, draw
  household sizes (zero-truncated Poisson per unit), aggregate per hamlet
- QA: member counts sum to N, population sums match, sizes >= 1

Outputs (data/processed/hamlets/, format from params.yml):
- empirical_hamlets (centroid, cluster_id, size, pop_est, admin_id, ...)
- building_points_hamlets (bldg_id, admin_id, cluster_id, hh_size)
- building_polygons_hamlets (same attributes joined by id)
- data/processed/metadata/empirical_hamlets_metadata.json (provenance sidecar)
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

import argparse

from hamlets.admin import build_admin_units
from hamlets.buildings import attach_building_attributes, prepare_buildings
from hamlets.exports import format_buildings_for_export, format_hamlets_for_export
from hamlets.hashing import hash_dict, validate_cache, write_metadata_sidecar
from hamlets.io_utils import atomic_write_gdf, read_df, read_gdf, read_yaml
from hamlets.logging_utils import get_logger
from hamlets.paths import HAMLETS_DIR, PARAMS_FILE, PROJECT_ROOT, ensure_dirs_exist
from hamlets.pipeline import HamletParams, run_hamlet_pipeline
from hamlets.qa import compute_na_rates


# =============================================================================
# Constants
# =============================================================================

SCRIPT_NAME = "01_build_hamlets"

OUTPUT_SUFFIXES = {
    "shp": ".shp",
    "gpkg": ".gpkg",
    "geojson": ".geojson",
    "parquet": ".parquet",
}


# =============================================================================
# Helpers
# =============================================================================

def resolve_inputs(config: dict) -> dict:
    """Absolute input paths from the `inputs` block."""
    inputs = config["inputs"]
    return {
        name: str(PROJECT_ROOT / inputs[name])
        for name in ("building_points", "building_polygons", "admin_boundaries", "admin_statistics")
    }


def resolve_outputs(config: dict) -> dict:
    """Absolute output paths from the `outputs` block."""
    outputs = config.get("outputs", {})
    fmt = outputs.get("format", "shp")
    if fmt not in OUTPUT_SUFFIXES:
        raise ValueError(f"Unsupported output format '{fmt}', expected one of {list(OUTPUT_SUFFIXES)}")
    suffix = OUTPUT_SUFFIXES[fmt]
    return {
        "hamlets": HAMLETS_DIR / f"{outputs.get('hamlets', 'empirical_hamlets')}{suffix}",
        "building_points": HAMLETS_DIR / f"{outputs.get('building_points', 'building_points_hamlets')}{suffix}",
        "building_polygons": HAMLETS_DIR / f"{outputs.get('building_polygons', 'building_polygons_hamlets')}{suffix}",
    }


def load_inputs(paths: dict, columns: dict, logger):
    """Read the four input layers; ids are read as opaque strings."""
    points = read_gdf(paths["building_points"])
    logger.info(f"Loaded building points: {len(points):,} rows")

    polygons = read_gdf(paths["building_polygons"])
    logger.info(f"Loaded building polygons: {len(polygons):,} rows")

    boundaries = read_gdf(paths["admin_boundaries"])
    logger.info(f"Loaded administrative boundaries: {len(boundaries):,} units")

    statistics = read_df(paths["admin_statistics"], string_columns=[columns["stats_admin_id"]])
    logger.info(f"Loaded administrative statistics: {len(statistics):,} rows")

    return points, polygons, boundaries, statistics


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build empirical hamlets")
    parser.add_argument("--force", action="store_true", help="Rebuild even if inputs and config are unchanged")
    args = parser.parse_args()

    ensure_dirs_exist()

    with get_logger(SCRIPT_NAME) as logger:
        logger.info(f"Starting {SCRIPT_NAME}.py")

        config = read_yaml(PARAMS_FILE)
        logger.log_config(config, config_digest=hash_dict(config))

        columns = config["inputs"]["columns"]
        params = HamletParams.from_config(config)
        input_paths = resolve_inputs(config)
        output_paths = resolve_outputs(config)
        logger.log_inputs(input_paths)

        if not args.force and validate_cache(output_paths["hamlets"], input_paths, config):
            logger.info("Outputs are up to date (input hashes and config unchanged); use --force to rebuild")
            return

        try:
            points, polygons, boundaries, statistics = load_inputs(input_paths, columns, logger)

            buildings = prepare_buildings(
                points,
                id_col=columns["building_id"],
                name_col=columns.get("building_name"),
                logger=logger,
            )
            admin = build_admin_units(
                boundaries,
                statistics,
                logger,
                boundary_id_col=columns["admin_id"],
                boundary_name_col=columns.get("admin_name"),
                stats_id_col=columns["stats_admin_id"],
                mean_household_size_col=columns["mean_household_size"],
                population_col=columns["total_population"],
            )

            run = run_hamlet_pipeline(buildings, admin, params, logger)

            building_polygons = attach_building_attributes(
                polygons, run.buildings, id_col=columns["building_id"], logger=logger
            )

            if not run.qa_stats["passed"]:
                raise RuntimeError(f"Hamlet QA failed: {run.qa_stats}")

            # Write outputs
            atomic_write_gdf(format_hamlets_for_export(run.hamlets), output_paths["hamlets"])
            logger.info(f"Wrote: {output_paths['hamlets']} ({len(run.hamlets):,} hamlets)")

            atomic_write_gdf(format_buildings_for_export(run.buildings), output_paths["building_points"])
            logger.info(f"Wrote: {output_paths['building_points']} ({len(run.buildings):,} points)")

            atomic_write_gdf(format_buildings_for_export(building_polygons), output_paths["building_polygons"])
            logger.info(f"Wrote: {output_paths['building_polygons']} ({len(building_polygons):,} polygons)")

            logger.log_outputs({name: str(path) for name, path in output_paths.items()})
            logger.log_metrics({
                **run.metrics(),
                "n_building_polygons": len(building_polygons),
                "admin_units_with_statistics": len(admin.units),
                "admin_units_missing_statistics": admin.missing_statistics,
                "building_na_rates": compute_na_rates(run.buildings),
            })

            write_metadata_sidecar(
                output_path=output_paths["hamlets"],
                inputs=input_paths,
                config=config,
                run_id=logger.run_id,
                extra={
                    "params": params.to_dict(),
                    "metrics": run.metrics(),
                    "qa_stats": run.qa_stats,
                    "anomalies": run.anomalies.to_records(),
                },
            )

            # Print summary
            logger.info("=" * 70)
            logger.info("Empirical Hamlets Summary:")
            logger.info(f"  Buildings clustered: {len(run.buildings):,}")
            logger.info(f"  Hamlets: {len(run.hamlets):,} ({len(run.clustering.empty_cluster_ids)} empty)")
            logger.info(f"  Converged: {run.clustering.converged} after {run.clustering.n_iter} iterations")
            logger.info(f"  Synthetic population: {int(run.hamlets['population_estimate'].sum()):,}")
            logger.info(f"  Buildings without household size: {int(run.buildings['household_size'].isna().sum()):,}")
            for anomaly in run.anomalies.anomalies:
                logger.info(f"  Anomaly {anomaly.kind}: {anomaly.count:,} ({anomaly.detail})")
            logger.info("=" * 70)

            logger.info("SUCCESS: Built empirical hamlets")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
