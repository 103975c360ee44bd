"""
Fee Engine - Flat and percentage fees for frozen jobs.

Fresh jobs never carry these fees. For frozen jobs:
- reception and dispatch fees are per kg of quantity, each behind its toggle
- storage is billed per started week when storage is required
- environmental and electricity fees are percentages of the subtotal
"""
import math
from dataclasses import dataclass

from .models import Factory, JobSpecification, ToggleState


@dataclass(frozen=True)
class FlatFees:
    reception: float = 0.0
    dispatch: float = 0.0
    storage: float = 0.0
    storage_weeks: int = 0

    @property
    def total(self) -> float:
        return self.reception + self.dispatch + self.storage


@dataclass(frozen=True)
class PercentageFees:
    environmental: float = 0.0
    electricity: float = 0.0

    @property
    def total(self) -> float:
        return self.environmental + self.electricity


def billable_weeks(number_of_weeks: float) -> int:
    """Whole weeks billed for storage; part weeks round up and 0 bills as one week."""
    return math.ceil(float(number_of_weeks or 1))


class FeeEngine:
    """Computes the frozen-only fees for a job line."""

    def __init__(self, factory: Factory):
        self.factory = factory

    def flat_fees(self, job: JobSpecification, toggles: ToggleState) -> FlatFees:
        if not job.is_frozen:
            return FlatFees()

        quantity = float(job.quantity or 0)
        reception = self.factory.reception_fee * quantity if toggles.reception_fee else 0.0
        dispatch = self.factory.dispatch_fee * quantity if toggles.dispatch_fee else 0.0

        storage = 0.0
        weeks = 0
        if job.is_storage_required:
            weeks = billable_weeks(job.number_of_weeks)
            storage = weeks * self.factory.storage_rate

        return FlatFees(reception=reception, dispatch=dispatch, storage=storage, storage_weeks=weeks)

    def percentage_fees(self, job: JobSpecification, toggles: ToggleState, subtotal: float) -> PercentageFees:
        if not job.is_frozen:
            return PercentageFees()

        environmental = 0.0
        if toggles.environmental_fee:
            environmental = subtotal * (self.factory.environmental_fee_percentage / 100)

        electricity = 0.0
        if toggles.electricity_fee:
            electricity = subtotal * (self.factory.electricity_fee_percentage / 100)

        return PercentageFees(environmental=environmental, electricity=electricity)
