from decimal import Decimal

import pytest

from orderdesk.app.db.models.core_types import BaseUom, Uom
from orderdesk.services import uom
from orderdesk.services.exceptions import UnitMismatch


@pytest.mark.parametrize(
    "quantity, unit, base, expected",
    [
        ("2", Uom.kilogram, BaseUom.gram, Decimal("2000")),
        ("1.5", Uom.ton, BaseUom.gram, Decimal("1500000")),
        ("250", Uom.gram, BaseUom.kilogram, Decimal("0.25")),
        ("0.000001", Uom.kilogram, BaseUom.gram, Decimal("0.001")),
        ("3.3", Uom.liter, BaseUom.milliliter, Decimal("3300")),
        ("1", Uom.milliliter, BaseUom.liter, Decimal("0.001")),
        ("123.456789", Uom.centimeter, BaseUom.meter, Decimal("1.23456789")),
        ("0.1", Uom.kilometer, BaseUom.meter, Decimal("100")),
        ("7", Uom.piece, BaseUom.piece, Decimal("7")),
    ],
)
def test_convert_to_base_is_exact(quantity, unit, base, expected):
    assert uom.convert_to_base(quantity, unit, base) == expected


def test_convert_to_base_has_no_float_drift():
    # 0.1 + 0.2 en float = 0.30000000000000004 ; ici on reste exact
    assert uom.convert_to_base(0.3, Uom.centimeter, BaseUom.meter) == Decimal("0.003")
    assert uom.convert_to_base(Decimal("0.1") + Decimal("0.2"), Uom.kilogram, BaseUom.gram) == Decimal("300")


def test_zero_and_extreme_quantities_convert():
    assert uom.convert_to_base(0, Uom.ton, BaseUom.gram) == 0
    assert uom.convert_to_base("1E+12", Uom.ton, BaseUom.gram) == Decimal("1E+18")
    assert uom.convert_to_base("0.000001", Uom.gram, BaseUom.kilogram) == Decimal("1E-9")


@pytest.mark.parametrize(
    "unit, base",
    [
        (Uom.kilogram, BaseUom.milliliter),
        (Uom.liter, BaseUom.gram),
        (Uom.piece, BaseUom.meter),
        (Uom.meter, BaseUom.piece),
        (Uom.kilometer, BaseUom.liter),
    ],
)
def test_incompatible_units_raise_unit_mismatch(unit, base):
    assert not uom.is_compatible(unit, base)
    with pytest.raises(UnitMismatch):
        uom.convert_to_base(1, unit, base)


def test_unknown_unit_is_rejected():
    assert not uom.is_compatible("FURLONG", BaseUom.meter)
    with pytest.raises(UnitMismatch):
        uom.convert_to_base(1, "FURLONG", BaseUom.meter)


def test_every_unit_has_identity_rule():
    for unit in Uom:
        assert uom.get_conversion_factor(unit, unit) == Decimal("1")


def test_every_rule_stays_within_one_dimension():
    for rule in uom.CONVERSION_RULES:
        assert uom.dimension_of(rule.from_unit) == uom.dimension_of(rule.to_unit)


def test_compatible_units_for_gram():
    assert set(uom.compatible_units(BaseUom.gram)) == {Uom.gram, Uom.kilogram, Uom.ton}


def test_format_quantity():
    assert uom.format_quantity(Decimal("2500"), BaseUom.gram, Uom.kilogram) == (Decimal("2.5"), "KILOGRAM")
    assert uom.format_quantity(Decimal("2500"), BaseUom.gram) == (Decimal("2500"), "GRAM")
    # pas de règle : on reste en unité de base
    assert uom.format_quantity(Decimal("5"), BaseUom.gram, Uom.liter) == (Decimal("5"), "GRAM")
