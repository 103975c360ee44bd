"""Engine subpackage - rate resolution, charge composition and toggle state."""
from .charge_composer import ChargeComposer
from .fee_engine import FeeEngine
from .job_line import JobLine, LineState, ToggleMachine
from .models import (
    CostBreakdown,
    Factory,
    JobSpecification,
    OptionalCharge,
    ProductType,
    QuoteResult,
    ToggleState,
)
from .rate_catalog import RateCatalog

__all__ = [
    'ChargeComposer', 'FeeEngine', 'JobLine', 'LineState', 'ToggleMachine',
    'CostBreakdown', 'Factory', 'JobSpecification', 'OptionalCharge', 'ProductType',
    'QuoteResult', 'ToggleState', 'RateCatalog',
]
