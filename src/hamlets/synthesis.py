"""
Household size synthesis.

Each building inside an administrative unit U receives a household size drawn
from a zero-truncated Poisson distribution with rate

    λ_U = total_population(U) / mean_household_size(U)

Buildings are grouped by unit and one batch of count(U) values is drawn per
unit, units visited in sorted id order. Two seed policies are supported:

- "per_unit": a fresh generator seeded with the same seed for every unit.
  Every unit is reproducible on its own; units with equal λ and count receive
  identical draws.
- "global": one generator seeded once and advanced across units, so units
  are independent but a unit's draws depend on the units before it.

Buildings without a unit, or in a unit without statistics, keep NA sizes and
are reported; they are never defaulted to zero.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

import numpy as np
import pandas as pd

from hamlets.qa import MISSING_STATISTICS_JOIN, UNMATCHED_ADMIN_UNIT, AnomalyReport


SEED_POLICIES = ("per_unit", "global")


class SynthesisError(Exception):
    """Raised when household sizes cannot be drawn."""
    pass


def sample_zero_truncated_poisson(
    rate: float,
    size: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Draw `size` values from a Poisson(rate) distribution conditioned on X >= 1.

    Exact, rejection-free: the first arrival T of a rate-λ Poisson process on
    [0, 1], given at least one arrival, is drawn by inverting its truncated
    exponential CDF; the remaining arrivals on (T, 1] are Poisson(λ(1 - T)).
    A rate of 0 gives the limiting distribution, which is always 1.

    Raises:
        SynthesisError: If rate is negative or not finite, or size is negative
    """
    if size < 0:
        raise SynthesisError(f"size must be >= 0, got {size}")
    if not np.isfinite(rate) or rate < 0:
        raise SynthesisError(f"Poisson rate must be finite and >= 0, got {rate}")

    if size == 0:
        return np.empty(0, dtype=np.int64)
    if rate == 0:
        return np.ones(size, dtype=np.int64)

    u = rng.random(size)
    first_arrival = -np.log1p(-u * -np.expm1(-rate)) / rate
    remaining_rate = np.maximum(rate * (1.0 - first_arrival), 0.0)
    return (1 + rng.poisson(remaining_rate)).astype(np.int64)


@dataclass
class SynthesisReport:
    """Counts and ids from one synthesis pass."""
    seed_policy: str
    random_seed: int
    n_buildings: int = 0
    n_sized: int = 0
    unit_counts: Dict[str, int] = field(default_factory=dict)
    unmatched_building_ids: List[str] = field(default_factory=list)
    missing_statistics_units: Dict[str, int] = field(default_factory=dict)

    @property
    def n_unmatched(self) -> int:
        return len(self.unmatched_building_ids)

    @property
    def n_missing_statistics(self) -> int:
        return sum(self.missing_statistics_units.values())

    def anomalies(self) -> AnomalyReport:
        report = AnomalyReport()
        report.add(
            UNMATCHED_ADMIN_UNIT,
            self.n_unmatched,
            "buildings outside every administrative polygon; household_size left NA",
            self.unmatched_building_ids,
        )
        report.add(
            MISSING_STATISTICS_JOIN,
            self.n_missing_statistics,
            "buildings in units without statistics; household_size left NA",
            sorted(self.missing_statistics_units),
        )
        return report

    def to_metrics(self) -> Dict:
        return {
            "seed_policy": self.seed_policy,
            "random_seed": self.random_seed,
            "n_buildings": self.n_buildings,
            "n_sized": self.n_sized,
            "n_units_drawn": len(self.unit_counts),
            "n_unmatched": self.n_unmatched,
            "n_missing_statistics": self.n_missing_statistics,
        }


def synthesize_household_sizes(
    buildings: pd.DataFrame,
    household_rates: Mapping[str, float],
    random_seed: int,
    seed_policy: str = "per_unit",
    unit_col: str = "admin_unit_id",
    id_col: str = "building_id",
    logger=None,
) -> Tuple[pd.Series, SynthesisReport]:
    """
    Draw a household size for every building with a unit that has statistics.

    Args:
        buildings: Table with `id_col` and `unit_col` (unit may be NA)
        household_rates: admin_unit_id -> λ
        random_seed: Seed for the generator(s)
        seed_policy: "per_unit" or "global" (see module docstring)
        unit_col: Column holding the administrative unit id
        id_col: Column holding the building id
        logger: Optional logger

    Returns:
        Tuple of (nullable Int64 Series aligned to buildings.index, report).
        The input table is not modified.

    Raises:
        SynthesisError: On an unknown seed policy or a non-unique index
    """
    if seed_policy not in SEED_POLICIES:
        raise SynthesisError(f"Unknown seed policy '{seed_policy}', expected one of {SEED_POLICIES}")
    if not buildings.index.is_unique:
        raise SynthesisError("Buildings index must be unique")

    report = SynthesisReport(seed_policy=seed_policy, random_seed=random_seed, n_buildings=len(buildings))

    unit_ids = buildings[unit_col].astype("string")
    unmatched = unit_ids.isna()
    report.unmatched_building_ids = buildings.loc[unmatched, id_col].astype(str).tolist()

    matched_units = unit_ids[~unmatched]
    shared_rng = np.random.default_rng(random_seed)
    draws = []

    for unit_id, members in matched_units.groupby(matched_units, sort=True):
        rate = household_rates.get(unit_id)
        if rate is None:
            report.missing_statistics_units[str(unit_id)] = len(members)
            continue

        if seed_policy == "per_unit":
            rng = np.random.default_rng(random_seed)
        else:
            rng = shared_rng

        values = sample_zero_truncated_poisson(float(rate), len(members), rng)
        draws.append(pd.Series(values, index=members.index))
        report.unit_counts[str(unit_id)] = len(members)

    if draws:
        sizes = pd.concat(draws).astype("Int64").reindex(buildings.index)
    else:
        sizes = pd.Series(pd.NA, index=buildings.index, dtype="Int64")
    sizes.name = "household_size"

    report.n_sized = int(sizes.notna().sum())

    if logger:
        logger.info(
            f"Synthesized household sizes for {report.n_sized:,} of {report.n_buildings:,} buildings "
            f"across {len(report.unit_counts)} units (seed_policy={seed_policy})"
        )
        if report.n_unmatched:
            logger.warning(f"{report.n_unmatched:,} buildings have no administrative unit; sizes left NA")
        if report.missing_statistics_units:
            logger.warning(
                f"{report.n_missing_statistics:,} buildings sit in units without statistics; sizes left NA",
                extra={"units": report.missing_statistics_units},
            )

    return sizes, report
