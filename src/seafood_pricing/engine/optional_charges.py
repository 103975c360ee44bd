"""
Computed optional charges (Prod A/B, Descaling, Portion Skin On/Off).

These charges live in the same list as user-entered charges and are
added/removed by toggle transitions. Names embed the flat rate; Prod A/B and
Descaling values are scaled from per kg of raw material to per kg of product
using the yield.
"""
from typing import Iterable

from .models import OptionalCharge

PROD_AB = 'Prod A/B'
DESCALING = 'Descaling'
PORTION_SKIN_ON = 'Portion Skin On'
PORTION_SKIN_OFF = 'Portion Skin Off'

PORTIONS_PRODUCT = 'Portions'

# toggle attribute -> charge name
COMPUTED_CHARGES = {
    'prod_ab': PROD_AB,
    'descaling': DESCALING,
    'portion_skin_on': PORTION_SKIN_ON,
    'portion_skin_off': PORTION_SKIN_OFF,
}

YIELD_SCALED = {PROD_AB, DESCALING}


def yield_scaled_value(flat_rate: float, yield_value: float) -> float:
    """(rate / yield) x 100; the flat rate itself when no yield is set."""
    if yield_value and yield_value > 0:
        return (flat_rate / yield_value) * 100
    return flat_rate


def charge_label(charge_name: str, flat_rate: float, currency: str) -> str:
    """Display name for a computed charge; always shows the flat rate."""
    if charge_name in YIELD_SCALED:
        return f"{charge_name} ({currency}{flat_rate:.2f} per kg RM)"
    return f"{charge_name} ({currency}{flat_rate:.2f} per kg)"


def build_charge(charge_name: str, flat_rate: float, yield_value: float, currency: str) -> OptionalCharge:
    value = yield_scaled_value(flat_rate, yield_value) if charge_name in YIELD_SCALED else flat_rate
    return OptionalCharge(name=charge_label(charge_name, flat_rate, currency), value=value)


def add_charge(charges: Iterable[OptionalCharge], charge: OptionalCharge) -> tuple[OptionalCharge, ...]:
    """Append a charge unless one with the exact same name is already present."""
    charges = tuple(charges)
    if any(c.name == charge.name for c in charges):
        return charges
    return charges + (charge,)


def remove_charges(charges: Iterable[OptionalCharge], name_part: str) -> tuple[OptionalCharge, ...]:
    """Drop every charge whose name contains name_part."""
    return tuple(c for c in charges if name_part not in c.name)
