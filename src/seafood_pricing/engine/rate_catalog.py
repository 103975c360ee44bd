"""
Rate Catalog - Read-only lookups over a factory's rate tables.

Resolution rules:
1. Base and packaging rates are exact matches on every key column
2. Charge rates are matched in two passes (with subtype, then without)
3. Inside a pass, rows matching productType and product exactly win over
   wildcard ("*") rows; otherwise the first qualifying row in table order wins
4. A miss on every pass falls back to the hard-coded charge table
"""
import logging
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .models import Factory, JobSpecification

logger = logging.getLogger(__name__)

WILDCARD = '*'

# Default charge rates used when the factory table has no qualifying row
FALLBACK_CHARGE_RATES = {
    'Prod A/B': 1.00,
    'Descaling': 1.50,
    'Portion Skin On': 2.50,
    'Portion Skin Off': 3.00,
}


@dataclass(frozen=True)
class PackagingMatch:
    """A resolved packaging row."""
    rate: float
    transport_mode: str


def unique_values(series: pd.Series) -> list[str]:
    """Distinct non-empty values, sorted ascending."""
    values = {str(v) for v in series if v is not None and str(v) != ''}
    return sorted(values)


def resolve_selection(candidates: list[str], current: str) -> str:
    """
    Pick the selection for a dependent list.

    A single candidate is auto-selected; a current value that is no longer
    offered is cleared.
    """
    if len(candidates) == 1:
        return candidates[0]
    if current not in candidates:
        return ''
    return current


class RateCatalog:
    """
    Lookup structure over one factory's rate tables.

    The factory tables are never mutated, so a catalog can be shared
    between callers. Only the tables are held, not the factory itself.
    """

    def __init__(self, factory: Factory):
        self.rate_data = factory.rate_data
        self.packaging_data = factory.packaging_data
        self.charge_rates = factory.charge_rates

    def find_base_rate(self, product: str, trim_type: str, rm_spec: str) -> Optional[float]:
        """Base processing rate per kg, or None when no row matches."""
        df = self.rate_data
        match = df[
            (df['product'] == product) &
            (df['trim_type'] == trim_type) &
            (df['rm_spec'] == rm_spec)
        ]
        if match.empty:
            logger.debug("No rate data for %s / %s / %s", product, trim_type, rm_spec)
            return None
        rate = float(match.iloc[0]['rate_per_kg'])
        logger.debug("Base rate for %s / %s / %s = %s", product, trim_type, rm_spec, rate)
        return rate

    def find_packaging(
        self,
        product: str,
        product_type: str,
        box_qty: str,
        packaging_type: str
    ) -> Optional[PackagingMatch]:
        """Packaging rate and transport mode, or None when no row matches."""
        df = self.packaging_data
        match = df[
            (df['product'] == product) &
            (df['prod_type'] == product_type) &
            (df['box_qty'] == str(box_qty)) &
            (df['pack'] == packaging_type)
        ]
        if match.empty:
            logger.debug(
                "No packaging data for %s / %s / %s / %s",
                product, product_type, box_qty, packaging_type
            )
            return None
        row = match.iloc[0]
        return PackagingMatch(rate=float(row['packaging_rate']), transport_mode=row['transport_mode'])

    def find_charge_rate(
        self,
        charge_name: str,
        product_type: str,
        product: str,
        subtype: Optional[str] = None
    ) -> float:
        """
        Resolve a named charge rate.

        Pass 1 requires the subtype (or wildcard subtype) when one is given;
        pass 2 drops the subtype constraint. Falls back to FALLBACK_CHARGE_RATES,
        then 0 for unknown names.
        """
        df = self.charge_rates
        candidates = df[
            (df['charge_name'] == charge_name) &
            ((df['product_type'] == product_type) | (df['product_type'] == WILDCARD)) &
            ((df['product'] == product) | (df['product'] == WILDCARD))
        ]

        passes = []
        if subtype:
            passes.append(candidates[
                (candidates['subtype'] == subtype) | (candidates['subtype'] == WILDCARD)
            ])
        passes.append(candidates)

        for rows in passes:
            if rows.empty:
                continue
            exact = rows[(rows['product_type'] == product_type) & (rows['product'] == product)]
            row = exact.iloc[0] if not exact.empty else rows.iloc[0]
            rate = float(row['rate_value'])
            logger.debug(
                "Charge rate for %s (%s, %s, %s) = %s",
                charge_name, product_type, product, subtype, rate
            )
            return rate

        rate = FALLBACK_CHARGE_RATES.get(charge_name, 0.0)
        logger.warning(
            "No charge rate for %s (%s, %s, %s), using fallback %s",
            charge_name, product_type, product, subtype, rate
        )
        return rate

    # Dependent selection lists

    def product_types(self) -> list[str]:
        return unique_values(self.packaging_data['prod_type'])

    def products(self, product_type: str) -> list[str]:
        """Products packed for the type plus every product with a processing rate."""
        if not product_type:
            return []
        packaging = self.packaging_data[self.packaging_data['prod_type'] == product_type]
        combined = pd.concat([packaging['product'], self.rate_data['product']], ignore_index=True)
        return unique_values(combined)

    def trim_types(self, product: str) -> list[str]:
        if not product:
            return []
        return unique_values(self.rate_data[self.rate_data['product'] == product]['trim_type'])

    def rm_specs(self, product: str, trim_type: str) -> list[str]:
        if not product or not trim_type:
            return []
        df = self.rate_data
        return unique_values(df[(df['product'] == product) & (df['trim_type'] == trim_type)]['rm_spec'])

    def box_quantities(self, product_type: str, product: str) -> list[str]:
        if not product_type or not product:
            return []
        df = self.packaging_data
        return unique_values(df[(df['prod_type'] == product_type) & (df['product'] == product)]['box_qty'])

    def packaging_types(self, product_type: str, product: str, box_qty: str) -> list[str]:
        if not product_type or not product or not box_qty:
            return []
        df = self.packaging_data
        return unique_values(df[
            (df['prod_type'] == product_type) &
            (df['product'] == product) &
            (df['box_qty'] == str(box_qty))
        ]['pack'])

    def resolve_selection(self, job: JobSpecification) -> JobSpecification:
        """
        Walk the dependent selections top-down, auto-selecting sole candidates
        and clearing values that are no longer offered.
        """
        product_type = resolve_selection(self.product_types(), job.product_type)
        product = resolve_selection(self.products(product_type), job.product)
        trim_type = resolve_selection(self.trim_types(product), job.trim_type)
        rm_spec = resolve_selection(self.rm_specs(product, trim_type), job.rm_spec)
        box_qty = resolve_selection(self.box_quantities(product_type, product), job.box_qty)
        packaging_type = resolve_selection(
            self.packaging_types(product_type, product, box_qty), job.packaging_type
        )

        packaging = None
        if box_qty and packaging_type:
            packaging = self.find_packaging(product, product_type, box_qty, packaging_type)

        return job.with_changes(
            product_type=product_type,
            product=product,
            trim_type=trim_type,
            rm_spec=rm_spec,
            box_qty=box_qty,
            packaging_type=packaging_type,
            transport_mode=packaging.transport_mode if packaging else '',
        )
