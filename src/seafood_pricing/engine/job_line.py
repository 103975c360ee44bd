"""
Job Line - Toggle state machine for one quote line.

A job line owns its JobSpecification, ToggleState and optional charges.
Every transition builds the complete new state first and only then commits
it, so a rejected request leaves the line exactly as it was. Transitions on
one line are serialized by a per-line lock; separate lines share nothing but
the read-only factory tables.
"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional

from ..errors import ToggleRejected
from .charge_composer import ChargeComposer
from .models import (
    FREEZING_FEE_TOGGLES,
    CostBreakdown,
    Factory,
    JobSpecification,
    OptionalCharge,
    ProductType,
    ToggleState,
    canonical_freezing_type,
)
from .optional_charges import (
    COMPUTED_CHARGES,
    PORTION_SKIN_OFF,
    PORTION_SKIN_ON,
    PORTIONS_PRODUCT,
    add_charge,
    build_charge,
    remove_charges,
)
from .rate_catalog import RateCatalog

logger = logging.getLogger(__name__)

_default_composer = ChargeComposer()


@dataclass(frozen=True)
class LineState:
    """Snapshot of everything a job line can change."""
    job: JobSpecification
    toggles: ToggleState
    optional_charges: tuple[OptionalCharge, ...] = ()


class ToggleMachine:
    """
    Pure transitions over LineState.

    Each method returns a new LineState or raises ToggleRejected; inputs are
    never modified.
    """

    def __init__(self, catalog: RateCatalog, currency: str = "$"):
        self.catalog = catalog
        self.currency = currency

    def toggle(self, state: LineState, name: str, enabled: bool) -> LineState:
        field_name = ToggleState.field_name(name)
        enabled = bool(enabled)

        if state.toggles.is_enabled(field_name) == enabled:
            return state

        if field_name in ('prod_ab', 'descaling'):
            return self._toggle_yield_charge(state, field_name, enabled)
        if field_name in ('portion_skin_on', 'portion_skin_off'):
            return self._toggle_portion_skin(state, field_name, enabled)

        return replace(state, toggles=state.toggles.with_changes(**{field_name: enabled}))

    def _toggle_yield_charge(self, state: LineState, field_name: str, enabled: bool) -> LineState:
        charge_name = COMPUTED_CHARGES[field_name]
        job = state.job

        if not enabled:
            return replace(
                state,
                toggles=state.toggles.with_changes(**{field_name: False}),
                optional_charges=remove_charges(state.optional_charges, charge_name),
            )

        if not job.yield_value or job.yield_value <= 0:
            raise ToggleRejected(field_name, f"Please set a yield value before enabling {charge_name} charge.")

        flat_rate = self.catalog.find_charge_rate(charge_name, job.product_type, job.product)
        charge = build_charge(charge_name, flat_rate, job.yield_value, self.currency)
        return replace(
            state,
            toggles=state.toggles.with_changes(**{field_name: True}),
            optional_charges=add_charge(state.optional_charges, charge),
        )

    def _toggle_portion_skin(self, state: LineState, field_name: str, enabled: bool) -> LineState:
        other_field = 'portion_skin_off' if field_name == 'portion_skin_on' else 'portion_skin_on'
        charge_name = COMPUTED_CHARGES[field_name]
        other_charge = COMPUTED_CHARGES[other_field]

        if not enabled:
            if state.job.product == PORTIONS_PRODUCT and not getattr(state.toggles, other_field):
                raise ToggleRejected(
                    field_name,
                    "One of Portion Skin On / Portion Skin Off must be selected for Portions."
                )
            return replace(
                state,
                toggles=state.toggles.with_changes(**{field_name: False}),
                optional_charges=remove_charges(state.optional_charges, charge_name),
            )

        return self._enable_portion_skin(state, field_name, other_field, charge_name, other_charge)

    def _enable_portion_skin(
        self,
        state: LineState,
        field_name: str,
        other_field: str,
        charge_name: str,
        other_charge: str
    ) -> LineState:
        charges = state.optional_charges
        if getattr(state.toggles, other_field):
            charges = remove_charges(charges, other_charge)

        rate = self.catalog.find_charge_rate(charge_name, state.job.product_type, PORTIONS_PRODUCT)
        charges = add_charge(charges, build_charge(charge_name, rate, state.job.yield_value, self.currency))
        return replace(
            state,
            toggles=state.toggles.with_changes(**{field_name: True, other_field: False}),
            optional_charges=charges,
        )

    def apply_portion_rule(self, state: LineState, previous_product: Optional[str] = None) -> LineState:
        """
        Keep the portion skin toggles consistent with the product.

        Portions always has exactly one skin option (Skin On by default).
        Moving away from Portions switches both off and drops their charges.
        """
        toggles = state.toggles
        if state.job.product == PORTIONS_PRODUCT:
            if not toggles.portion_skin_on and not toggles.portion_skin_off:
                return self._enable_portion_skin(
                    state, 'portion_skin_on', 'portion_skin_off', PORTION_SKIN_ON, PORTION_SKIN_OFF
                )
            return state

        if previous_product == PORTIONS_PRODUCT:
            return replace(
                state,
                toggles=toggles.with_changes(portion_skin_on=False, portion_skin_off=False),
                optional_charges=remove_charges(state.optional_charges, 'Portion Skin'),
            )
        return state

    def set_product_type(self, state: LineState, product_type: str) -> LineState:
        job = state.job.with_changes(product_type=product_type)
        toggles = state.toggles
        if product_type != ProductType.FROZEN.value:
            job = job.with_changes(freezing_type='', is_storage_required=False, number_of_weeks=1.0)
            toggles = toggles.with_changes(**{name: False for name in FREEZING_FEE_TOGGLES})
        return replace(state, job=job, toggles=toggles)

    def set_storage_required(self, state: LineState, required: bool) -> LineState:
        required = bool(required)
        if required and not state.job.is_frozen:
            raise ToggleRejected('isStorageRequired', "Storage is only available for Frozen products.")
        return replace(
            state,
            job=state.job.with_changes(is_storage_required=required),
            toggles=state.toggles.with_changes(**{name: required for name in FREEZING_FEE_TOGGLES}),
        )

    def set_freezing_type(self, state: LineState, freezing_type: Optional[str]) -> LineState:
        if not state.job.is_frozen:
            return replace(state, job=state.job.with_changes(freezing_type=''))
        return replace(state, job=state.job.with_changes(freezing_type=canonical_freezing_type(freezing_type)))

    def update_job(self, state: LineState, **changes) -> LineState:
        """
        Apply job field changes, running the cascades for product type,
        product, storage and freezing type in that order.
        """
        if 'yield_value' in changes:
            yield_value = float(changes['yield_value'] or 0)
            if not 0 <= yield_value <= 100:
                raise ValueError("yield_value must be between 0 and 100")
            changes['yield_value'] = yield_value
        if 'number_of_weeks' in changes:
            weeks = float(changes['number_of_weeks'] or 0)
            if weeks < 0:
                raise ValueError("number_of_weeks must not be negative")
            changes['number_of_weeks'] = weeks
        if 'quantity' in changes:
            changes['quantity'] = float(changes['quantity'] or 0)

        product_type = changes.pop('product_type', None)
        storage = changes.pop('is_storage_required', None)
        freezing_type = changes.pop('freezing_type', None)
        previous_product = state.job.product

        if product_type is not None:
            state = self.set_product_type(state, product_type)
        if changes:
            state = replace(state, job=state.job.with_changes(**changes))
        if storage is not None:
            state = self.set_storage_required(state, storage)
        if freezing_type is not None:
            state = self.set_freezing_type(state, freezing_type)
        return self.apply_portion_rule(state, previous_product)


class JobLine:
    """
    A quote line owned by a single caller.

    The cost breakdown is recomputed after every committed transition.
    Computed toggles passed at construction are applied like interactive
    toggles, so an unmet precondition raises ToggleRejected here too.
    """

    def __init__(
        self,
        factory: Factory,
        job: Optional[JobSpecification] = None,
        toggles: Optional[ToggleState] = None,
        optional_charges: tuple[OptionalCharge, ...] = (),
        composer: Optional[ChargeComposer] = None
    ):
        self.factory = factory
        self.composer = composer or _default_composer
        self.machine = ToggleMachine(self.composer.catalog_for(factory), factory.currency)
        self._lock = threading.Lock()

        requested = toggles or ToggleState()
        state = LineState(
            job=job or JobSpecification(),
            toggles=requested.with_changes(**{name: False for name in COMPUTED_CHARGES}),
            optional_charges=tuple(optional_charges),
        )
        state = self.machine.apply_portion_rule(state)
        # Computed toggles go through the same transitions as interactive ones;
        # Skin On is replayed last so it wins when both skin options are requested.
        for name in ('prod_ab', 'descaling', 'portion_skin_off', 'portion_skin_on'):
            if requested.is_enabled(name):
                try:
                    state = self.machine.toggle(state, name, True)
                except ToggleRejected as e:
                    logger.warning("Toggle rejected: %s", e, extra={"factory_id": factory.id})
                    raise
        self._state = state
        self._breakdown = self._compose(self._state)

    @property
    def state(self) -> LineState:
        return self._state

    @property
    def job(self) -> JobSpecification:
        return self._state.job

    @property
    def toggles(self) -> ToggleState:
        return self._state.toggles

    @property
    def optional_charges(self) -> tuple[OptionalCharge, ...]:
        return self._state.optional_charges

    @property
    def breakdown(self) -> CostBreakdown:
        return self._breakdown

    def _compose(self, state: LineState) -> CostBreakdown:
        return self.composer.compose(self.factory, state.job, state.toggles, state.optional_charges)

    def _commit(self, transition, *args, **kwargs) -> LineState:
        with self._lock:
            try:
                new_state = transition(self._state, *args, **kwargs)
            except ToggleRejected as e:
                logger.warning("Toggle rejected: %s", e, extra={"factory_id": self.factory.id})
                raise
            if new_state is not self._state:
                self._breakdown = self._compose(new_state)
                self._state = new_state
            return self._state

    def toggle(self, name: str, enabled: bool) -> ToggleState:
        """Switch a named toggle. Raises ToggleRejected with the state unchanged."""
        return self._commit(self.machine.toggle, name, enabled).toggles

    def update_job(self, **changes) -> JobSpecification:
        return self._commit(self.machine.update_job, **changes).job

    def select(self) -> JobSpecification:
        """Re-resolve the dependent selections against the factory tables."""
        def transition(state: LineState) -> LineState:
            previous_product = state.job.product
            resolved = self.machine.catalog.resolve_selection(state.job)
            if resolved.product_type != state.job.product_type:
                state = self.machine.set_product_type(state, resolved.product_type)
            state = replace(state, job=resolved.with_changes(
                freezing_type=state.job.freezing_type,
                is_storage_required=state.job.is_storage_required,
                number_of_weeks=state.job.number_of_weeks,
            ))
            return self.machine.apply_portion_rule(state, previous_product)
        return self._commit(transition).job

    def add_optional_charge(self, name: str, value: float) -> tuple[OptionalCharge, ...]:
        """Add a user-entered charge (kept verbatim)."""
        def transition(state: LineState) -> LineState:
            charge = OptionalCharge(name=name, value=float(value))
            return replace(state, optional_charges=state.optional_charges + (charge,))
        return self._commit(transition).optional_charges

    def remove_optional_charge(self, name: str) -> tuple[OptionalCharge, ...]:
        """Remove user-entered charges with exactly this name."""
        def transition(state: LineState) -> LineState:
            return replace(state, optional_charges=tuple(c for c in state.optional_charges if c.name != name))
        return self._commit(transition).optional_charges
