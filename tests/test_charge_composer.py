import gc
import pytest
import sys
import os
import weakref

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from seafood_pricing.engine.charge_composer import ChargeComposer, money
from seafood_pricing.engine.fee_engine import FeeEngine, billable_weeks
from seafood_pricing.engine.models import Factory, OptionalCharge, ToggleState

FROZEN_FEES = ToggleState(reception_fee=True, dispatch_fee=True, environmental_fee=True)


@pytest.fixture
def composer():
    return ChargeComposer()


def test_fresh_job_breakdown(composer, factory, fresh_job):
    """Fresh Salmon A 1-2kg, 100 kg, Box x10 with pallet and terminal on."""
    b = composer.compose(factory, fresh_job)

    assert b.filleting_amount == pytest.approx(5.0)
    assert b.packaging_amount == pytest.approx(1.0)
    assert b.additional_charges == pytest.approx(5.0)
    assert b.freezing_charge == 0.0
    assert b.frozen_flat_fees == 0.0
    assert b.percentage_fees == 0.0
    assert b.total == pytest.approx(11.0)
    assert b.cost_per_kg == pytest.approx(0.11)
    assert b.transport_mode == "Truck"
    assert b.warnings == []


def test_frozen_job_breakdown(composer, factory, frozen_job):
    """Tunnel freezing with reception, dispatch and environmental fees."""
    b = composer.compose(factory, frozen_job, FROZEN_FEES)

    assert b.freezing_charge == pytest.approx(1.65)
    subtotal_before_fees = b.filleting_amount + b.packaging_amount + b.additional_charges + b.freezing_charge
    assert subtotal_before_fees == pytest.approx(12.65)

    assert b.reception_fee_amount == pytest.approx(50.0)
    assert b.dispatch_fee_amount == pytest.approx(30.0)
    assert b.frozen_flat_fees == pytest.approx(80.0)
    assert b.subtotal == pytest.approx(92.65)
    assert b.environmental_fee_amount == pytest.approx(9.265)
    assert b.electricity_fee_amount == 0.0
    assert b.percentage_fees == pytest.approx(9.265)
    assert b.total == pytest.approx(101.915)
    assert b.cost_per_kg == pytest.approx(1.01915)


def test_fresh_job_ignores_frozen_fee_toggles(composer, factory, fresh_job):
    toggles = FROZEN_FEES.with_changes(electricity_fee=True)
    b = composer.compose(factory, fresh_job.with_changes(freezing_type="Tunnel Freezing"), toggles)

    assert b.freezing_charge == 0.0
    assert b.frozen_flat_fees == 0.0
    assert b.percentage_fees == 0.0
    assert b.total == pytest.approx(11.0)


def test_gyro_freezing_rate(composer, factory, frozen_job):
    b = composer.compose(factory, frozen_job.with_changes(freezing_type="GyroFreezing"))
    assert b.freezing_charge == pytest.approx(2.0)


@pytest.mark.parametrize("weeks, billed, label", [
    (1.4, 2, "2 weeks"),
    (1.0, 1, "1 week"),
    (3.0, 3, "3 weeks"),
    (0, 1, "1 week"),
])
def test_storage_bills_started_weeks(composer, factory, frozen_job, weeks, billed, label):
    job = frozen_job.with_changes(is_storage_required=True, number_of_weeks=weeks)
    b = composer.compose(factory, job, ToggleState())

    assert b.storage_weeks == billed
    assert b.storage_charge == pytest.approx(billed * factory.storage_rate)
    assert b.storage_label == label
    assert b.to_dict()["storageLabel"] == label


def test_no_storage_without_requirement(composer, factory, frozen_job):
    b = composer.compose(factory, frozen_job.with_changes(number_of_weeks=4))
    assert b.storage_charge == 0.0
    assert b.storage_label == ""


def test_pallet_and_terminal_toggles(composer, factory, fresh_job):
    b = composer.compose(factory, fresh_job.with_changes(filing_rate=0.4),
                         ToggleState(pallet_charge=False, terminal_charge=True))
    assert b.additional_charges == pytest.approx(3.4)


def test_optional_charges_are_summed(composer, factory, fresh_job):
    charges = [OptionalCharge("Prod A/B ($1.00 per kg RM)", 2.0), OptionalCharge("Custom label", 0.5)]
    b = composer.compose(factory, fresh_job, optional_charges=charges)

    assert b.optional_total == pytest.approx(2.5)
    assert b.total == pytest.approx(13.5)


def test_zero_quantity_cost_per_kg(composer, factory, fresh_job):
    b = composer.compose(factory, fresh_job.with_changes(quantity=0))
    assert b.total == pytest.approx(11.0)
    assert b.cost_per_kg == 0.0


def test_missing_rate_and_packaging_warn(composer, factory):
    from seafood_pricing.engine.models import JobSpecification
    job = JobSpecification(product_type="Fresh", product="Cod", trim_type="A", rm_spec="1-2kg",
                           quantity=10, box_qty="10", packaging_type="Box")
    b = composer.compose(factory, job)

    assert b.filleting_amount == 0.0
    assert b.packaging_amount == 0.0
    assert len(b.warnings) == 2
    assert "No rate data for Cod / A / 1-2kg" in b.warnings


def test_compose_is_deterministic(composer, factory, frozen_job):
    job = frozen_job.with_changes(is_storage_required=True, number_of_weeks=2.5)
    first = composer.compose(factory, job, FROZEN_FEES)
    second = composer.compose(factory, job, FROZEN_FEES)

    assert first.to_dict() == second.to_dict()
    assert first.get_trace_text() == second.get_trace_text()


def test_trace_records_each_step(composer, factory, frozen_job):
    b = composer.compose(factory, frozen_job, FROZEN_FEES)
    steps = [t.step for t in b.trace]

    for step in ("Filleting", "Packaging", "Additional Charges", "Freezing",
                 "Frozen Fees", "Subtotal", "Percentage Fees", "Total"):
        assert step in steps, f"missing trace step {step}"
    assert "→ Filleting: Base rate per kg = $5.00" in b.get_trace_text()


def test_compose_quote_sums_lines(composer, factory, fresh_job, frozen_job):
    result = composer.compose_quote(factory, [
        (fresh_job, ToggleState(), ()),
        (frozen_job, FROZEN_FEES, ()),
    ])

    assert len(result.lines) == 2
    assert result.total == pytest.approx(11.0 + 101.915)
    assert result.currency == "$"
    assert result.lines[0].label == "Salmon A 1-2kg"


def test_compose_quote_trace_text(composer, factory, fresh_job):
    result = composer.compose_quote(factory, [(fresh_job, None, ()), (fresh_job, None, ())])

    assert result.get_trace_text().splitlines() == [
        "• Factory: Nordfisk (Aalesund) = F1",
        "• Line 1: Salmon A 1-2kg = $11.00",
        "• Line 2: Salmon A 1-2kg = $11.00",
        "• Total: 2 lines = $22.00",
    ]


def test_compose_quote_bubbles_warnings(composer, factory, fresh_job):
    bad = fresh_job.with_changes(trim_type="Z")
    result = composer.compose_quote(factory, [(bad, None, ()), (bad, None, ())])
    assert result.warnings == ["No rate data for Salmon / Z / 1-2kg"]


def test_billable_weeks():
    assert billable_weeks(0.1) == 1
    assert billable_weeks(2) == 2
    assert billable_weeks(2.01) == 3


def test_fee_engine_percentages_use_subtotal(factory, frozen_job):
    fees = FeeEngine(factory).percentage_fees(frozen_job, ToggleState(environmental_fee=True), 200.0)
    assert fees.environmental == pytest.approx(20.0)
    assert fees.total == pytest.approx(20.0)


def test_money_formatting():
    assert money(3.456, "$") == "$3.46"
    assert money(0) == "0.00"


def test_unset_factory_fees_count_as_zero(composer, factory, frozen_job):
    """Fee fields delivered as null by the persistence layer price as 0."""
    sparse = Factory.from_records(
        id="F2",
        name="Sparse",
        rate_data=factory.rate_data.to_dict("records"),
        packaging_data=factory.packaging_data.to_dict("records"),
        pallet_charge=2.0,
        terminal_charge=3.0,
        reception_fee=None,
        dispatch_fee=0.3,
        environmental_fee_percentage=10.0,
        electricity_fee_percentage=None,
        storage_rate=float("nan"),
    )
    toggles = FROZEN_FEES.with_changes(electricity_fee=True)

    b = composer.compose(sparse, frozen_job.with_changes(is_storage_required=True), toggles)

    assert sparse.reception_fee == 0.0
    assert sparse.electricity_fee_percentage == 0.0
    assert b.reception_fee_amount == 0.0
    assert b.storage_charge == 0.0
    assert b.subtotal == pytest.approx(42.65)
    assert b.electricity_fee_amount == 0.0
    assert b.total == pytest.approx(46.915)


def test_catalog_cache_releases_unused_factories(composer, factory, fresh_job):
    temp = Factory.from_records(id="T1", name="Temp", rate_data=factory.rate_data.to_dict("records"))
    composer.compose(temp, fresh_job)
    composer.compose(factory, fresh_job)
    assert composer.catalog_for(temp) is composer.catalog_for(temp), "catalog should be reused"

    ref = weakref.ref(temp)
    del temp
    gc.collect()

    assert ref() is None
    assert len(composer._catalogs) == 1
