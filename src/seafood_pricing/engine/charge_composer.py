"""
Charge Composer - Builds the cost breakdown for a job line with traceability.

Composition order (kept fixed so traces read the same on every quote):
1. Filleting amount - base rate per kg, applied once per line
2. Packaging amount - packaging rate, applied once per line
3. Additional charges - filing rate + pallet + terminal (when toggled)
4. Freezing charge - fixed rate for frozen jobs with a freezing type
5. Optional charges total
6. Frozen flat fees - reception/dispatch per kg, storage per started week
7. Subtotal
8. Percentage fees - environmental/electricity over the subtotal
9. Total
10. Cost per kg
"""
import logging
import weakref
from typing import Iterable, Optional

from .models import (
    CostBreakdown,
    Factory,
    JobSpecification,
    OptionalCharge,
    QuoteLine,
    QuoteResult,
    ToggleState,
)
from .fee_engine import FeeEngine
from .rate_catalog import RateCatalog

logger = logging.getLogger(__name__)


def money(value: float, currency: str = "") -> str:
    return f"{currency}{value:.2f}"


class ChargeComposer:
    """
    Composes the cost breakdown for a job line.

    Stateless apart from the catalog cache, so one composer can serve any
    number of callers.
    """

    def __init__(self):
        # Entries go away with their factory
        self._catalogs: "weakref.WeakKeyDictionary[Factory, RateCatalog]" = weakref.WeakKeyDictionary()

    def catalog_for(self, factory: Factory) -> RateCatalog:
        catalog = self._catalogs.get(factory)
        if catalog is None:
            catalog = RateCatalog(factory)
            self._catalogs[factory] = catalog
        return catalog

    def compose(
        self,
        factory: Factory,
        job: JobSpecification,
        toggles: Optional[ToggleState] = None,
        optional_charges: Iterable[OptionalCharge] = ()
    ) -> CostBreakdown:
        """
        Compute the cost breakdown for one job line.

        Args:
            factory: Factory snapshot with rate tables
            job: The job specification
            toggles: Toggle state (defaults: pallet and terminal on)
            optional_charges: Computed and user-entered extra charges

        Returns:
            CostBreakdown with trace and warnings
        """
        toggles = toggles or ToggleState()
        catalog = self.catalog_for(factory)
        fees = FeeEngine(factory)
        currency = factory.currency
        breakdown = CostBreakdown()

        breakdown.add_trace(
            "Job", f"{job.product_type} {job.product} / {job.trim_type} / {job.rm_spec}",
            f"{job.quantity:g} kg"
        )

        # 1. Filleting
        base_rate = catalog.find_base_rate(job.product, job.trim_type, job.rm_spec)
        if base_rate is None:
            base_rate = 0.0
            breakdown.add_warning(
                f"No rate data for {job.product} / {job.trim_type} / {job.rm_spec}"
            )
            breakdown.add_trace("Filleting", "No base rate found, using 0", money(0.0, currency))
        else:
            breakdown.add_trace("Filleting", "Base rate per kg", money(base_rate, currency))
        breakdown.filleting_amount = base_rate

        # 2. Packaging
        packaging = None
        if job.box_qty or job.packaging_type:
            packaging = catalog.find_packaging(job.product, job.product_type, job.box_qty, job.packaging_type)
            if packaging is None:
                breakdown.add_warning(
                    f"No packaging data for {job.product_type} {job.product} "
                    f"/ {job.box_qty} / {job.packaging_type}"
                )
        if packaging is not None:
            breakdown.packaging_amount = packaging.rate
            breakdown.transport_mode = packaging.transport_mode
            breakdown.add_trace(
                "Packaging", f"{job.packaging_type} x{job.box_qty} ({packaging.transport_mode})",
                money(packaging.rate, currency)
            )
        else:
            breakdown.add_trace("Packaging", "No packaging rate, using 0", money(0.0, currency))

        # 3. Additional charges
        pallet = factory.pallet_charge if toggles.pallet_charge else 0.0
        terminal = factory.terminal_charge if toggles.terminal_charge else 0.0
        breakdown.additional_charges = float(job.filing_rate or 0) + pallet + terminal
        breakdown.add_trace(
            "Additional Charges",
            f"Filing {money(job.filing_rate or 0, currency)} + pallet {money(pallet, currency)} "
            f"+ terminal {money(terminal, currency)}",
            money(breakdown.additional_charges, currency)
        )

        # 4. Freezing
        if job.is_frozen and job.freezing_type:
            breakdown.freezing_charge = job.freezing_rate
            breakdown.add_trace("Freezing", job.freezing_type, money(breakdown.freezing_charge, currency))

        # 5. Optional charges
        charges = list(optional_charges)
        breakdown.optional_total = sum(float(c.value or 0) for c in charges)
        if charges:
            breakdown.add_trace(
                "Optional Charges", ", ".join(c.name for c in charges),
                money(breakdown.optional_total, currency)
            )

        # 6. Frozen flat fees
        flat = fees.flat_fees(job, toggles)
        breakdown.reception_fee_amount = flat.reception
        breakdown.dispatch_fee_amount = flat.dispatch
        breakdown.storage_charge = flat.storage
        breakdown.storage_weeks = flat.storage_weeks
        breakdown.frozen_flat_fees = flat.total
        if job.is_frozen:
            breakdown.add_trace(
                "Frozen Fees",
                f"Reception {money(flat.reception, currency)} + dispatch {money(flat.dispatch, currency)}"
                + (f" + storage {breakdown.storage_label}" if flat.storage_weeks else ""),
                money(flat.total, currency)
            )

        # 7. Subtotal
        breakdown.subtotal = (
            breakdown.filleting_amount
            + breakdown.packaging_amount
            + breakdown.additional_charges
            + breakdown.optional_total
            + breakdown.freezing_charge
            + breakdown.frozen_flat_fees
        )
        breakdown.add_trace("Subtotal", "Sum of charges", money(breakdown.subtotal, currency))

        # 8. Percentage fees
        percentage = fees.percentage_fees(job, toggles, breakdown.subtotal)
        breakdown.environmental_fee_amount = percentage.environmental
        breakdown.electricity_fee_amount = percentage.electricity
        breakdown.percentage_fees = percentage.total
        if job.is_frozen:
            breakdown.add_trace(
                "Percentage Fees",
                f"Environmental {factory.environmental_fee_percentage:.1f}% "
                f"+ electricity {factory.electricity_fee_percentage:.1f}%",
                money(percentage.total, currency)
            )

        # 9. Total
        breakdown.total = breakdown.subtotal + breakdown.percentage_fees

        # 10. Cost per kg
        quantity = float(job.quantity or 0)
        breakdown.cost_per_kg = breakdown.total / quantity if quantity > 0 else 0.0
        breakdown.add_trace(
            "Total", f"{money(breakdown.cost_per_kg, currency)}/kg",
            money(breakdown.total, currency)
        )

        logger.debug(
            "Composed %s %s for factory %s: total=%s",
            job.product_type, job.product, factory.id, breakdown.total,
            extra={"factory_id": factory.id}
        )
        return breakdown

    def compose_quote(self, factory: Factory, lines: Iterable) -> QuoteResult:
        """
        Compose several job lines into one quote.

        Each line is a JobLine or a (job, toggles, optional_charges) tuple.
        """
        result = QuoteResult(factory_id=factory.id, currency=factory.currency, total=0.0, lines=[])
        result.add_trace("Factory", f"{factory.name} ({factory.location})", factory.id)

        for index, line in enumerate(lines, start=1):
            if isinstance(line, tuple):
                job, toggles, charges = line
            else:
                job, toggles, charges = line.job, line.toggles, line.optional_charges

            breakdown = self.compose(factory, job, toggles, charges)
            label = job.description or f"{job.product} {job.trim_type} {job.rm_spec}".strip()
            result.lines.append(QuoteLine(job=job, breakdown=breakdown, label=label))
            result.total += breakdown.total
            result.add_trace(f"Line {index}", label, money(breakdown.total, factory.currency))

            # Bubble up line warnings
            for warning in breakdown.warnings:
                if warning not in result.warnings:
                    result.add_warning(warning)

        result.add_trace("Total", f"{len(result.lines)} lines", money(result.total, factory.currency))
        return result
