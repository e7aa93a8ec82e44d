"""
Moteur de conversion d'unités (UOM).

Convertit une quantité saisie par l'acheteur dans l'unité de base du produit.
Aucune dépendance : pas de session, pas d'effet de bord.

Règles :
- table statique (from, to, facteur) par dimension (masse, volume, longueur, comptage)
- une entrée identité (facteur 1) pour chaque unité supportée, y compris
  les unités de saisie qui ne sont pas unités de base (TON, CENTIMETER...)
- arithmétique Decimal exacte, jamais de float binaire
- pas de règle => UnitMismatch
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import NamedTuple, Union

from orderdesk.app.db.models.core_types import BaseUom, Uom
from orderdesk.services.exceptions import UnitMismatch

Quantity = Union[Decimal, int, str, float]

# Précision interne large : les facteurs x1000000 / x0.001 restent exacts
INTERNAL_PRECISION = 50

# échelle des colonnes quantité (Numeric(20, 6))
QTY_QUANTUM = Decimal("0.000001")


class ConversionRule(NamedTuple):
    from_unit: Uom
    to_unit: Uom
    factor: Decimal


DIMENSIONS: dict[Uom, str] = {
    Uom.gram: "mass",
    Uom.kilogram: "mass",
    Uom.ton: "mass",
    Uom.milliliter: "volume",
    Uom.liter: "volume",
    Uom.meter: "length",
    Uom.centimeter: "length",
    Uom.kilometer: "length",
    Uom.piece: "count",
}

CONVERSION_RULES: tuple[ConversionRule, ...] = (
    # ---------- masse ----------
    ConversionRule(Uom.gram, Uom.gram, Decimal("1")),
    ConversionRule(Uom.kilogram, Uom.gram, Decimal("1000")),
    ConversionRule(Uom.ton, Uom.gram, Decimal("1000000")),
    ConversionRule(Uom.kilogram, Uom.kilogram, Decimal("1")),
    ConversionRule(Uom.gram, Uom.kilogram, Decimal("0.001")),
    ConversionRule(Uom.ton, Uom.kilogram, Decimal("1000")),
    ConversionRule(Uom.ton, Uom.ton, Decimal("1")),
    # ---------- volume ----------
    ConversionRule(Uom.milliliter, Uom.milliliter, Decimal("1")),
    ConversionRule(Uom.liter, Uom.milliliter, Decimal("1000")),
    ConversionRule(Uom.liter, Uom.liter, Decimal("1")),
    ConversionRule(Uom.milliliter, Uom.liter, Decimal("0.001")),
    # ---------- longueur ----------
    ConversionRule(Uom.meter, Uom.meter, Decimal("1")),
    ConversionRule(Uom.centimeter, Uom.meter, Decimal("0.01")),
    ConversionRule(Uom.kilometer, Uom.meter, Decimal("1000")),
    ConversionRule(Uom.centimeter, Uom.centimeter, Decimal("1")),
    ConversionRule(Uom.kilometer, Uom.kilometer, Decimal("1")),
    # ---------- comptage ----------
    ConversionRule(Uom.piece, Uom.piece, Decimal("1")),
)

_RULES: dict[tuple[Uom, Uom], Decimal] = {
    (rule.from_unit, rule.to_unit): rule.factor for rule in CONVERSION_RULES
}


def _as_uom(unit: Uom | BaseUom | str) -> Uom:
    try:
        return Uom(getattr(unit, "value", unit))
    except ValueError:
        raise UnitMismatch(unit, "a supported unit") from None


def to_decimal(quantity: Quantity) -> Decimal:
    if isinstance(quantity, Decimal):
        return quantity
    if isinstance(quantity, float):
        # passe par str() pour ne pas hériter de l'erreur binaire du float
        return Decimal(str(quantity))
    return Decimal(quantity)


def dimension_of(unit: Uom | BaseUom | str) -> str:
    return DIMENSIONS[_as_uom(unit)]


def get_conversion_factor(requested_unit: Uom | str, base_unit: BaseUom | str) -> Decimal:
    requested = _as_uom(requested_unit)
    base = _as_uom(base_unit)

    factor = _RULES.get((requested, base))
    if factor is None:
        raise UnitMismatch(requested_unit, base_unit)
    return factor


def is_compatible(requested_unit: Uom | str, base_unit: BaseUom | str) -> bool:
    try:
        get_conversion_factor(requested_unit, base_unit)
    except UnitMismatch:
        return False
    return True


def convert_to_base(quantity: Quantity, requested_unit: Uom | str, base_unit: BaseUom | str) -> Decimal:
    """Retourne quantity * facteur, exact (Decimal)."""
    factor = get_conversion_factor(requested_unit, base_unit)
    with localcontext() as ctx:
        ctx.prec = INTERNAL_PRECISION
        return to_decimal(quantity) * factor


def quantize_base(quantity: Decimal) -> Decimal:
    """Arrondit une quantité de base à l'échelle stockée (6 décimales)."""
    return quantity.quantize(QTY_QUANTUM, rounding=ROUND_HALF_UP)


def compatible_units(base_unit: BaseUom | str) -> list[Uom]:
    base = _as_uom(base_unit)
    return [rule.from_unit for rule in CONVERSION_RULES if rule.to_unit == base]


def format_quantity(
    quantity_in_base: Quantity,
    base_unit: BaseUom | str,
    display_unit: Uom | str | None = None,
) -> tuple[Decimal, str]:
    """
    Exprime une quantité de base dans une unité d'affichage.
    Sans règle connue, on reste dans l'unité de base.
    """
    base = _as_uom(base_unit)
    qty = to_decimal(quantity_in_base)
    if display_unit is None:
        return qty, base.value

    try:
        factor = get_conversion_factor(display_unit, base)
    except UnitMismatch:
        return qty, base.value

    with localcontext() as ctx:
        ctx.prec = INTERNAL_PRECISION
        return qty / factor, _as_uom(display_unit).value
