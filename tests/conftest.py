import os
import sys

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from seafood_pricing.config.settings import reset_settings
from seafood_pricing.engine.models import Factory, JobSpecification


SALMON_RATES = [
    {"product": "Salmon", "trimType": "A", "rmSpec": "1-2kg", "ratePerKg": 5.0},
    {"product": "Salmon", "trimType": "D", "rmSpec": "2-3kg", "ratePerKg": 6.5},
    {"product": "Portions", "trimType": "Portion", "rmSpec": "150g", "ratePerKg": 8.0},
]

SALMON_PACKAGING = [
    {"prodType": "Fresh", "product": "Salmon", "boxQty": "10", "pack": "Box",
     "transportMode": "Truck", "packagingRate": 1.0},
    {"prodType": "Frozen", "product": "Salmon", "boxQty": "10", "pack": "Box",
     "transportMode": "Truck", "packagingRate": 1.0},
    {"prodType": "Fresh", "product": "Portions", "boxQty": "5", "pack": "Tray",
     "transportMode": "Air", "packagingRate": 0.75},
]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Every test starts from default settings."""
    for name in ('SEAFOOD_PRICING_DATA_DIR', 'SEAFOOD_PRICING_LOG_LEVEL',
                 'SEAFOOD_PRICING_LOG_JSON', 'SEAFOOD_PRICING_CURRENCY'):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def factory():
    """Factory with the worked-example tables and no charge rates."""
    return Factory.from_records(
        id="F1",
        name="Nordfisk",
        location="Aalesund",
        rate_data=SALMON_RATES,
        packaging_data=SALMON_PACKAGING,
        pallet_charge=2.0,
        terminal_charge=3.0,
        reception_fee=0.5,
        dispatch_fee=0.3,
        environmental_fee_percentage=10.0,
        electricity_fee_percentage=0.0,
        storage_rate=4.0,
    )


@pytest.fixture
def fresh_job():
    return JobSpecification(
        product_type="Fresh",
        product="Salmon",
        trim_type="A",
        rm_spec="1-2kg",
        quantity=100,
        box_qty="10",
        packaging_type="Box",
    )


@pytest.fixture
def frozen_job(fresh_job):
    return fresh_job.with_changes(product_type="Frozen", freezing_type="Tunnel Freezing")
