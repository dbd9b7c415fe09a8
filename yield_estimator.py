"""
yield_estimator.py — Plant count, surface and yield estimates for a planting.

Used by the planning routes (alongside the capacity check) and by the
irrigation triage (surface for water consumption).
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class SeedStockCheck:
    sufficient: bool = False
    stock_g: float = 0.0
    needed: float = 0.0


@dataclass
class PlantingEstimate:
    surface_m2: float = 0.0
    plant_count: int = 0
    yield_kg: float = 0.0
    seeds_needed: float = 0.0
    seed_stock: Optional[SeedStockCheck] = None


def _check_non_negative(**values):
    for name, value in values.items():
        if value is not None and value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")


def surface_m2(length_m, width_m) -> float:
    """Surface of a rectangle, 0 when a side is unknown."""
    _check_non_negative(length_m=length_m, width_m=width_m)
    if not length_m or not width_m:
        return 0.0
    return length_m * width_m


def estimate_plant_count(length_m, row_count, plant_spacing_cm) -> int:
    """Plants per row (length / in-row spacing, floored) times the row count."""
    _check_non_negative(length_m=length_m, row_count=row_count, plant_spacing_cm=plant_spacing_cm)
    if not length_m or not row_count or not plant_spacing_cm:
        return 0
    # Round first so 1.2 m / 0.3 m gives 4 plants, not 3.999...
    per_row = math.floor(round(length_m * 100 / plant_spacing_cm, 9))
    return per_row * row_count


def estimate_yield(yield_kg_m2, surface) -> float:
    if not yield_kg_m2 or not surface:
        return 0.0
    return yield_kg_m2 * surface


def check_seed_stock(stock_g, plant_count, seeds_per_plant=None) -> SeedStockCheck:
    """Compare the seed stock with the seeds needed for plant_count plants."""
    stock = stock_g or 0
    needed = plant_count * (seeds_per_plant or 1)
    return SeedStockCheck(sufficient=stock >= needed, stock_g=stock, needed=needed)


def estimate_planting(bed, planting, species=None, seed_stock_g=None) -> PlantingEstimate:
    """Surface, plant count, expected yield and seeds needed for a planting on a bed.

    The planting length defaults to the full bed length. When *seed_stock_g*
    is given, the stock is compared with the seeds the plant count needs.
    """
    length = planting.length_m if planting.length_m is not None else bed.length_m
    surface = surface_m2(length, bed.width_m)
    plant_count = estimate_plant_count(length, planting.row_count, planting.plant_spacing_cm)
    yield_kg_m2: Optional[float] = species.yield_kg_m2 if species is not None else None
    seeds_per_plant = species.seeds_per_plant if species is not None else None
    stock = check_seed_stock(seed_stock_g, plant_count, seeds_per_plant)
    return PlantingEstimate(
        surface_m2=round(surface, 2),
        plant_count=plant_count,
        yield_kg=round(estimate_yield(yield_kg_m2, surface), 1),
        seeds_needed=stock.needed,
        seed_stock=stock if seed_stock_g is not None else None,
    )
