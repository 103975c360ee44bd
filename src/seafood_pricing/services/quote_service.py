"""
Quote Service - Entry point for pricing job lines against loaded factories.

Factories are loaded once (from the configured data directory unless given
explicitly) and shared read-only between every line and quote.
"""
import logging
from typing import Iterable, Optional

from ..config.settings import Settings, get_settings
from ..data.factory_loader import load_factories
from ..engine.charge_composer import ChargeComposer
from ..engine.job_line import JobLine
from ..engine.models import (
    CostBreakdown,
    Factory,
    JobSpecification,
    OptionalCharge,
    QuoteResult,
    ToggleState,
)
from ..engine.rate_catalog import RateCatalog
from ..errors import UnknownFactory

logger = logging.getLogger(__name__)


class QuoteService:
    """Service for composing cost breakdowns and multi-line quotes."""

    def __init__(self, factories: Optional[dict[str, Factory]] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._factories = factories
        self.composer = ChargeComposer()

    @property
    def factories(self) -> dict[str, Factory]:
        if self._factories is None:
            self._factories = load_factories(self.settings.data_dir, self.settings)
        return self._factories

    def list_factories(self) -> list[Factory]:
        return sorted(self.factories.values(), key=lambda f: f.name)

    def get_factory(self, factory_id: str) -> Factory:
        factory = self.factories.get(str(factory_id))
        if factory is None:
            raise UnknownFactory(factory_id)
        return factory

    def catalog(self, factory_id: str) -> RateCatalog:
        return self.composer.catalog_for(self.get_factory(factory_id))

    def new_line(
        self,
        factory_id: str,
        job: Optional[JobSpecification] = None,
        toggles: Optional[ToggleState] = None,
        optional_charges: Iterable[OptionalCharge] = ()
    ) -> JobLine:
        """Start a job line; dependent selections are resolved against the factory tables."""
        line = JobLine(
            self.get_factory(factory_id),
            job=job,
            toggles=toggles,
            optional_charges=tuple(optional_charges),
            composer=self.composer,
        )
        line.select()
        return line

    def lines_from_enquiry(self, factory_id: str, items: Iterable[dict]) -> list[JobLine]:
        """One job line per enquiry item."""
        return [self.new_line(factory_id, JobSpecification.from_enquiry_item(item)) for item in items]

    def compose(
        self,
        factory_id: str,
        job: JobSpecification,
        toggles: Optional[ToggleState] = None,
        optional_charges: Iterable[OptionalCharge] = ()
    ) -> CostBreakdown:
        return self.composer.compose(self.get_factory(factory_id), job, toggles, optional_charges)

    def compose_quote(self, factory_id: str, lines: Iterable) -> QuoteResult:
        factory = self.get_factory(factory_id)
        result = self.composer.compose_quote(factory, lines)
        logger.info(
            "Quoted %d lines for factory %s: total=%.2f", len(result.lines), factory.id, result.total,
            extra={"factory_id": factory.id}
        )
        return result
