import pytest
import sys
import os
from concurrent.futures import ThreadPoolExecutor

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from seafood_pricing.engine.charge_composer import ChargeComposer
from seafood_pricing.engine.job_line import JobLine, LineState, ToggleMachine
from seafood_pricing.engine.models import FREEZING_FEE_TOGGLES, JobSpecification, OptionalCharge, ToggleState
from seafood_pricing.engine.rate_catalog import RateCatalog
from seafood_pricing.errors import ToggleRejected


@pytest.fixture
def portions_job():
    return JobSpecification(
        product_type="Fresh",
        product="Portions",
        trim_type="Portion",
        rm_spec="150g",
        quantity=50,
        box_qty="5",
        packaging_type="Tray",
    )


def charge_names(line):
    return [c.name for c in line.optional_charges]


# Portion skin options

def test_portions_line_starts_with_skin_on(factory, portions_job):
    """Portions always carries exactly one skin option, Skin On by default."""
    line = JobLine(factory, portions_job)

    assert line.toggles.portion_skin_on is True
    assert line.toggles.portion_skin_off is False
    assert line.optional_charges == (OptionalCharge("Portion Skin On ($2.50 per kg)", 2.5),)
    assert line.breakdown.optional_total == pytest.approx(2.5)


def test_portion_skin_options_are_exclusive(factory, portions_job):
    line = JobLine(factory, portions_job)
    line.toggle("portionSkinOff", True)

    assert line.toggles.portion_skin_on is False
    assert line.toggles.portion_skin_off is True
    assert charge_names(line) == ["Portion Skin Off ($3.00 per kg)"]
    assert line.breakdown.optional_total == pytest.approx(3.0)


def test_last_portion_skin_option_cannot_be_disabled(factory, portions_job):
    line = JobLine(factory, portions_job)
    before = line.state

    with pytest.raises(ToggleRejected) as exc:
        line.toggle("portionSkinOn", False)

    assert "must be selected for Portions" in exc.value.reason
    assert exc.value.toggle == "portion_skin_on"
    assert line.state is before, "rejected toggle must leave the line untouched"


def test_portion_skin_can_be_disabled_for_other_products(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    line.toggle("portionSkinOn", True)
    assert charge_names(line) == ["Portion Skin On ($2.50 per kg)"]

    line.toggle("portionSkinOn", False)
    assert line.toggles.portion_skin_on is False
    assert line.optional_charges == ()


def test_explicit_skin_choice_survives_job_updates(factory, portions_job):
    line = JobLine(factory, portions_job)
    line.toggle("portionSkinOff", True)
    line.update_job(quantity=75)

    assert line.toggles.portion_skin_off is True
    assert line.toggles.portion_skin_on is False
    assert charge_names(line) == ["Portion Skin Off ($3.00 per kg)"]


def test_leaving_portions_drops_skin_charges(factory, portions_job):
    line = JobLine(factory, portions_job)
    line.add_optional_charge("Ice", 0.2)
    line.update_job(product="Salmon", trim_type="A", rm_spec="1-2kg")

    assert line.toggles.portion_skin_on is False
    assert line.toggles.portion_skin_off is False
    assert charge_names(line) == ["Ice"]


def test_switching_to_portions_enables_skin_on(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    line.update_job(product="Portions", trim_type="Portion", rm_spec="150g")

    assert line.toggles.portion_skin_on is True
    assert charge_names(line) == ["Portion Skin On ($2.50 per kg)"]


# Yield-scaled charges

def test_prod_ab_rejected_without_yield(factory, fresh_job):
    line = JobLine(factory, fresh_job)

    with pytest.raises(ToggleRejected) as exc:
        line.toggle("prodAB", True)

    assert exc.value.reason == "Please set a yield value before enabling Prod A/B charge."
    assert line.toggles.prod_ab is False
    assert line.optional_charges == ()


def test_prod_ab_scaled_by_yield(factory, fresh_job):
    """flatRate 1.00 at 50% yield is 2.00 per kg of product."""
    line = JobLine(factory, fresh_job)
    line.update_job(yield_value=50)
    line.toggle("prodAB", True)

    assert line.optional_charges == (OptionalCharge("Prod A/B ($1.00 per kg RM)", 2.0),)
    assert line.breakdown.total == pytest.approx(13.0)

    line.toggle("prodAB", False)
    assert line.optional_charges == ()
    assert line.breakdown.total == pytest.approx(11.0)


def test_descaling_uses_factory_rate(fresh_job):
    from seafood_pricing.engine.models import Factory
    factory = Factory.from_records(
        id="F9",
        name="Rated",
        charge_rates=[{"chargeName": "Descaling", "productType": "*", "product": "*", "rateValue": 1.2}],
    )
    line = JobLine(factory, fresh_job.with_changes(yield_value=60))
    line.toggle("descaling", True)

    assert line.optional_charges[0].name == "Descaling ($1.20 per kg RM)"
    assert line.optional_charges[0].value == pytest.approx(2.0)


def test_toggling_same_value_is_a_noop(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    before = line.state
    line.toggle("palletCharge", True)
    assert line.state is before


def test_unknown_toggle_name(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    with pytest.raises(KeyError):
        line.toggle("glazing", True)


def test_snake_case_toggle_names(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    line.toggle("pallet_charge", False)
    assert line.breakdown.additional_charges == pytest.approx(3.0)


# Toggles given at construction

def test_requested_skin_on_adds_its_charge(factory, fresh_job):
    line = JobLine(factory, fresh_job, ToggleState(portion_skin_on=True))

    assert line.toggles.portion_skin_on is True
    assert charge_names(line) == ["Portion Skin On ($2.50 per kg)"]
    assert line.breakdown.optional_total == pytest.approx(2.5)


def test_requested_skin_options_stay_exclusive(factory, portions_job):
    """Asking for both skin options keeps only Skin On."""
    line = JobLine(factory, portions_job, ToggleState(portion_skin_on=True, portion_skin_off=True))

    assert line.toggles.portion_skin_on is True
    assert line.toggles.portion_skin_off is False
    assert charge_names(line) == ["Portion Skin On ($2.50 per kg)"]


def test_requested_skin_off_replaces_default(factory, portions_job):
    line = JobLine(factory, portions_job, ToggleState(portion_skin_off=True))

    assert line.toggles.portion_skin_on is False
    assert charge_names(line) == ["Portion Skin Off ($3.00 per kg)"]


def test_requested_prod_ab_needs_yield(factory, fresh_job):
    with pytest.raises(ToggleRejected) as exc:
        JobLine(factory, fresh_job, ToggleState(prod_ab=True))
    assert exc.value.toggle == "prod_ab"

    line = JobLine(factory, fresh_job.with_changes(yield_value=50), ToggleState(prod_ab=True, pallet_charge=False))
    assert line.toggles.prod_ab is True
    assert line.toggles.pallet_charge is False
    assert line.optional_charges == (OptionalCharge("Prod A/B ($1.00 per kg RM)", 2.0),)


# Storage and freezing cascades

def test_storage_forces_fee_toggles(factory, frozen_job):
    line = JobLine(factory, frozen_job)
    line.update_job(is_storage_required=True, number_of_weeks=1.4)

    for name in FREEZING_FEE_TOGGLES:
        assert getattr(line.toggles, name) is True, f"{name} should follow storage"
    assert line.breakdown.storage_label == "2 weeks"

    line.update_job(is_storage_required=False)
    for name in FREEZING_FEE_TOGGLES:
        assert getattr(line.toggles, name) is False, f"{name} should follow storage"
    assert line.breakdown.storage_charge == 0.0


def test_storage_rejected_for_fresh_jobs(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    with pytest.raises(ToggleRejected):
        line.update_job(is_storage_required=True)
    assert line.job.is_storage_required is False


def test_leaving_frozen_resets_freezing_fields(factory, frozen_job):
    line = JobLine(factory, frozen_job)
    line.update_job(is_storage_required=True, number_of_weeks=3)
    line.update_job(product_type="Fresh")

    assert line.job.freezing_type == ""
    assert line.job.is_storage_required is False
    assert line.job.number_of_weeks == 1.0
    assert not any(getattr(line.toggles, name) for name in FREEZING_FEE_TOGGLES)
    assert line.breakdown.total == pytest.approx(11.0)


def test_freezing_type_only_applies_to_frozen(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    line.update_job(freezing_type="TunnelFreezing")
    assert line.job.freezing_type == ""

    line.update_job(product_type="Frozen", freezing_type="GyroFreezing")
    assert line.job.freezing_type == "Gyro Freezing"
    assert line.breakdown.freezing_charge == pytest.approx(2.0)


@pytest.mark.parametrize("changes", [
    {"yield_value": 101},
    {"yield_value": -1},
    {"number_of_weeks": -0.5},
])
def test_update_job_validates_ranges(factory, fresh_job, changes):
    line = JobLine(factory, fresh_job)
    before = line.state
    with pytest.raises(ValueError):
        line.update_job(**changes)
    assert line.state is before


# User-entered charges and selection

def test_user_charges_added_and_removed(factory, fresh_job):
    line = JobLine(factory, fresh_job)
    line.add_optional_charge("Extra ice", "1.5")
    line.add_optional_charge("Labels", 0.25)
    assert line.breakdown.optional_total == pytest.approx(1.75)

    line.remove_optional_charge("Extra ice")
    assert charge_names(line) == ["Labels"]


def test_select_resolves_dependent_fields(factory):
    line = JobLine(factory, JobSpecification(product_type="Fresh", product="Salmon", trim_type="A", quantity=100))
    job = line.select()

    assert job.rm_spec == "1-2kg"
    assert job.box_qty == "10"
    assert job.packaging_type == "Box"
    assert job.transport_mode == "Truck"
    assert line.breakdown.total == pytest.approx(11.0)


# Pure transitions

def test_machine_transitions_do_not_modify_input(factory, portions_job):
    machine = ToggleMachine(RateCatalog(factory))
    state = machine.apply_portion_rule(LineState(job=portions_job, toggles=ToggleState()))

    switched = machine.toggle(state, "portionSkinOff", True)

    assert state.toggles.portion_skin_on is True
    assert switched.toggles.portion_skin_off is True
    assert switched is not state


def test_concurrent_toggles_keep_line_consistent(factory, fresh_job):
    composer = ChargeComposer()
    line = JobLine(factory, fresh_job, composer=composer)

    def flip(i):
        line.toggle("palletCharge", i % 2 == 0)
        line.toggle("terminalCharge", i % 3 == 0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(flip, range(200)))

    expected = composer.compose(factory, line.job, line.toggles, line.optional_charges)
    assert line.breakdown.to_dict() == expected.to_dict()
