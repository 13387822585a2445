"""Weight and price conversions for gold and silver."""
from typing import Optional, Union

from vault.models.subscription import MetalType, WeightUnit

OZ_IN_GRAMS = 31.1034768  # troy ounce

# Absolute tolerance when comparing weights that went through float conversions
WEIGHT_TOLERANCE = 1e-4

UnitLike = Union[WeightUnit, str]
MetalLike = Union[MetalType, str]


def _unit(value: UnitLike) -> WeightUnit:
    return value if isinstance(value, WeightUnit) else WeightUnit(value)


def _metal(value: MetalLike) -> MetalType:
    return value if isinstance(value, MetalType) else MetalType(value)


def convert_weight(value: float, from_unit: UnitLike, to_unit: UnitLike) -> float:
    source, target = _unit(from_unit), _unit(to_unit)
    if source == target:
        return value
    if source == WeightUnit.OUNCE:
        return value * OZ_IN_GRAMS
    return value / OZ_IN_GRAMS


def base_unit(metal: MetalLike) -> WeightUnit:
    """Unit the price feed quotes in: gold per gram, silver per troy ounce"""
    return WeightUnit.GRAM if _metal(metal) == MetalType.GOLD else WeightUnit.OUNCE


def to_reporting_unit(value: float, unit: UnitLike, metal: MetalLike) -> float:
    """Withdrawn totals are kept in grams for gold and troy ounces for silver"""
    return convert_weight(value, unit, base_unit(metal))


def price_per_unit(base_price: Optional[float], metal: MetalLike, unit: UnitLike) -> Optional[float]:
    """Convert a per-base-unit quote into a price for ``unit``; None when unusable"""
    if base_price is None or base_price <= 0:
        return None
    # price per target unit = price per base unit * base units in one target unit
    return base_price * convert_weight(1.0, unit, base_unit(metal))


def weight_for_amount(amount: float, unit_price: Optional[float]) -> Optional[float]:
    if unit_price is None or unit_price <= 0 or amount <= 0:
        return None
    return amount / unit_price


def within_balance(requested: float, available: float) -> bool:
    return requested <= available + WEIGHT_TOLERANCE
