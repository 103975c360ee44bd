"""
Factory Loader - Reads factory rate data from workbooks or CSV directories.

Two layouts are supported:
- a workbook with sheets "Factory" (one row of scalar fields), "Rates",
  "Packaging" and "Charge Rates"
- a directory with factory.csv, rates.csv, packaging.csv and charge_rates.csv

Only the factory sheet/file is required; missing rate tables load empty.
Every cell is read as text and normalized by the Factory model, so row
order and values such as box quantities survive untouched.
"""
import logging
import zipfile
from pathlib import Path
from typing import Optional

import pandas as pd

from ..config.settings import Settings, get_settings
from ..engine.models import FEE_FIELDS, Factory, normalize_column_name
from ..errors import FactoryDataError

logger = logging.getLogger(__name__)

FACTORY_SHEET = 'Factory'
TABLE_SHEETS = {
    'rate_data': 'Rates',
    'packaging_data': 'Packaging',
    'charge_rates': 'Charge Rates',
}

FACTORY_FILE = 'factory.csv'
TABLE_FILES = {
    'rate_data': 'rates.csv',
    'packaging_data': 'packaging.csv',
    'charge_rates': 'charge_rates.csv',
}


def _text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ''
    return str(value).strip()


def _scalar(value, column: str, source: Path) -> float:
    text = _text(value)
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        raise FactoryDataError(f"{source}: {column} must be numeric, got '{text}'")


def factory_from_frames(
    factory_df: pd.DataFrame,
    tables: dict[str, Optional[pd.DataFrame]],
    source: Path,
    default_currency: str = "$"
) -> Factory:
    """
    Build a Factory from its scalar row and rate tables.

    Raises:
        FactoryDataError: when the factory row or its id is missing
    """
    if factory_df is None or factory_df.empty:
        raise FactoryDataError(f"{source}: factory row is missing")

    factory_df = factory_df.rename(columns={c: normalize_column_name(c) for c in factory_df.columns})
    if 'id' not in factory_df.columns:
        raise FactoryDataError(f"{source}: required column 'id' is missing")
    if len(factory_df) > 1:
        logger.warning("%s: %d factory rows, using the first", source, len(factory_df))

    row = factory_df.iloc[0]
    factory_id = _text(row.get('id'))
    if not factory_id:
        raise FactoryDataError(f"{source}: factory id is empty")

    scalars = {name: _scalar(row.get(name), name, source) for name in FEE_FIELDS}

    factory = Factory(
        id=factory_id,
        name=_text(row.get('name')) or factory_id,
        location=_text(row.get('location')),
        currency=_text(row.get('currency')) or default_currency,
        rate_data=tables.get('rate_data'),
        packaging_data=tables.get('packaging_data'),
        charge_rates=tables.get('charge_rates'),
        **scalars
    )

    logger.info(
        "Loaded factory %s from %s (%d rates, %d packaging rows, %d charge rates)",
        factory.id, source.name, len(factory.rate_data), len(factory.packaging_data), len(factory.charge_rates),
        extra={"factory_id": factory.id}
    )
    return factory


def load_factory_workbook(path: Path, settings: Optional[Settings] = None) -> Factory:
    """Load a factory from an Excel workbook."""
    settings = settings or get_settings()
    path = Path(path)
    if not path.exists():
        raise FactoryDataError(f"Factory workbook not found: {path}")

    try:
        sheets = pd.read_excel(path, sheet_name=None, dtype=str, engine='openpyxl')
    except (ValueError, OSError, zipfile.BadZipFile) as e:
        raise FactoryDataError(f"{path}: failed to read workbook ({e})") from e

    by_name = {name.strip().lower(): df for name, df in sheets.items()}
    factory_df = by_name.get(FACTORY_SHEET.lower())
    if factory_df is None:
        raise FactoryDataError(f"{path}: sheet '{FACTORY_SHEET}' is missing")

    tables = {key: by_name.get(sheet.lower()) for key, sheet in TABLE_SHEETS.items()}
    return factory_from_frames(factory_df, tables, path, settings.default_currency)


def _read_csv(path: Path) -> pd.DataFrame:
    try:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except (ValueError, OSError) as e:
        raise FactoryDataError(f"{path}: failed to read CSV ({e})") from e


def load_factory_dir(path: Path, settings: Optional[Settings] = None) -> Factory:
    """Load a factory from a directory of CSV files."""
    settings = settings or get_settings()
    path = Path(path)
    factory_file = path / FACTORY_FILE
    if not factory_file.exists():
        raise FactoryDataError(f"{path}: {FACTORY_FILE} not found")

    tables = {}
    for key, filename in TABLE_FILES.items():
        table_path = path / filename
        tables[key] = _read_csv(table_path) if table_path.exists() else None

    return factory_from_frames(_read_csv(factory_file), tables, path, settings.default_currency)


def load_factories(data_dir: Optional[Path] = None, settings: Optional[Settings] = None) -> dict[str, Factory]:
    """
    Load every factory under a data directory.

    Picks up each *.xlsx workbook and each sub-directory holding factory.csv,
    in name order. A later factory with the same id replaces an earlier one.
    """
    settings = settings or get_settings()
    data_dir = Path(data_dir or settings.data_dir)
    if not data_dir.is_dir():
        raise FactoryDataError(f"Factory data directory not found: {data_dir}")

    factories = {}
    for entry in sorted(data_dir.iterdir()):
        if entry.is_file() and entry.suffix.lower() == '.xlsx' and not entry.name.startswith('~$'):
            factory = load_factory_workbook(entry, settings)
        elif entry.is_dir() and (entry / FACTORY_FILE).exists():
            factory = load_factory_dir(entry, settings)
        else:
            continue

        if factory.id in factories:
            logger.warning("Factory %s defined more than once, using %s", factory.id, entry.name)
        factories[factory.id] = factory

    logger.info("Loaded %d factories from %s", len(factories), data_dir)
    return factories
